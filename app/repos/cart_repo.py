from __future__ import annotations

from typing import Protocol
from uuid import UUID

from app.models.product import Cart, CartItem


class CartRepo(Protocol):
    async def get(self, user_id: UUID) -> Cart: ...
    async def add_item(self, user_id: UUID, item: CartItem, now: int) -> Cart: ...
    async def remove_item(self, user_id: UUID, product_id: UUID) -> Cart: ...
    async def clear(self, user_id: UUID) -> None: ...


class InMemoryCartRepo:
    def __init__(self) -> None:
        self._items: dict[UUID, list[CartItem]] = {}

    async def get(self, user_id: UUID) -> Cart:
        return Cart(user_id=user_id, items=tuple(self._items.get(user_id, [])))

    async def add_item(self, user_id: UUID, item: CartItem, now: int) -> Cart:
        items = self._items.setdefault(user_id, [])
        # A product sits in the cart at most once.
        if all(existing.product_id != item.product_id for existing in items):
            items.append(item)
        return await self.get(user_id)

    async def remove_item(self, user_id: UUID, product_id: UUID) -> Cart:
        items = self._items.get(user_id, [])
        self._items[user_id] = [i for i in items if i.product_id != product_id]
        return await self.get(user_id)

    async def clear(self, user_id: UUID) -> None:
        self._items.pop(user_id, None)
