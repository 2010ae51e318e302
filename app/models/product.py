from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from uuid import UUID, uuid4


class Visibility(StrEnum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True, slots=True)
class ProductFile:
    """A deliverable attached to a product.

    Private files are only reachable through a signed URL minted from
    ``object_key``; public files are served from ``url`` directly.
    """

    name: str
    object_key: str
    url: str = ""
    visibility: Visibility = Visibility.PRIVATE
    size_bytes: int = 0


@dataclass(frozen=True, slots=True)
class Product:
    id: UUID
    slug: str
    title: str
    price: int = 0
    discount_price: int = 0
    is_published: bool = False
    files: tuple[ProductFile, ...] = field(default_factory=tuple)

    @property
    def effective_price(self) -> int:
        if 0 < self.discount_price < self.price:
            return self.discount_price
        return self.price

    @staticmethod
    def new(
        *,
        slug: str,
        title: str,
        price: int = 0,
        discount_price: int = 0,
        is_published: bool = True,
        files: tuple[ProductFile, ...] = (),
    ) -> Product:
        return Product(
            id=uuid4(),
            slug=slug,
            title=title,
            price=price,
            discount_price=discount_price,
            is_published=is_published,
            files=files,
        )


@dataclass(frozen=True, slots=True)
class CartItem:
    product_id: UUID
    price: int  # unit price captured when the item was added


@dataclass(frozen=True, slots=True)
class Cart:
    user_id: UUID
    items: tuple[CartItem, ...] = ()

    @property
    def subtotal(self) -> int:
        return sum(item.price for item in self.items)

    @property
    def is_empty(self) -> bool:
        return not self.items
