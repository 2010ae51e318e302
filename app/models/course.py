from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    slug: str
    title: str
    price: int = 0  # minor currency units
    discount_price: int = 0
    is_published: bool = False

    @property
    def effective_price(self) -> int:
        """What a buyer pays: the discount price when one is set."""
        if 0 < self.discount_price < self.price:
            return self.discount_price
        return self.price

    @property
    def is_free(self) -> bool:
        return self.effective_price == 0

    @staticmethod
    def new(
        *,
        slug: str,
        title: str,
        price: int = 0,
        discount_price: int = 0,
        is_published: bool = True,
    ) -> Course:
        return Course(
            id=uuid4(),
            slug=slug,
            title=title,
            price=price,
            discount_price=discount_price,
            is_published=is_published,
        )


@dataclass(frozen=True, slots=True)
class Lesson:
    id: UUID
    course_id: UUID
    title: str
    position: int

    @staticmethod
    def new(*, course_id: UUID, title: str, position: int) -> Lesson:
        return Lesson(id=uuid4(), course_id=course_id, title=title, position=position)
