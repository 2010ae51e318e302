"""Read side of the course and product catalog.

Catalog CRUD belongs to another service; this repo only exposes what the
pipeline reads (prices, publication state, lesson membership, files).
add_* exist so dev seeding and tests can populate the in-memory store.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from app.models.course import Course, Lesson
from app.models.product import Product


class CatalogRepo(Protocol):
    async def get_course(self, course_id: UUID) -> Course | None: ...
    async def get_lesson(self, lesson_id: UUID) -> Lesson | None: ...
    async def lesson_ids(self, course_id: UUID) -> frozenset[UUID]: ...
    async def get_product(self, product_id: UUID) -> Product | None: ...
    async def add_course(self, course: Course) -> None: ...
    async def add_lesson(self, lesson: Lesson) -> None: ...
    async def add_product(self, product: Product) -> None: ...


class InMemoryCatalogRepo:
    def __init__(self) -> None:
        self._courses: dict[UUID, Course] = {}
        self._lessons: dict[UUID, Lesson] = {}
        self._products: dict[UUID, Product] = {}

    async def get_course(self, course_id: UUID) -> Course | None:
        return self._courses.get(course_id)

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        return self._lessons.get(lesson_id)

    async def lesson_ids(self, course_id: UUID) -> frozenset[UUID]:
        return frozenset(
            lesson.id for lesson in self._lessons.values() if lesson.course_id == course_id
        )

    async def get_product(self, product_id: UUID) -> Product | None:
        return self._products.get(product_id)

    async def add_course(self, course: Course) -> None:
        self._courses[course.id] = course

    async def add_lesson(self, lesson: Lesson) -> None:
        self._lessons[lesson.id] = lesson

    async def add_product(self, product: Product) -> None:
        self._products[product.id] = product
