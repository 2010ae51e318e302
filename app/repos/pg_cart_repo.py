"""PostgreSQL implementation of CartRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import CartItemRow
from app.models.product import Cart, CartItem


class PgCartRepo:
    """Satisfies the CartRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, user_id: UUID) -> Cart:
        stmt = (
            select(CartItemRow)
            .where(CartItemRow.user_id == user_id)
            .order_by(CartItemRow.added_at)
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return Cart(
            user_id=user_id,
            items=tuple(CartItem(product_id=r.product_id, price=r.price) for r in rows),
        )

    async def add_item(self, user_id: UUID, item: CartItem, now: int) -> Cart:
        stmt = (
            insert(CartItemRow)
            .values(
                user_id=user_id,
                product_id=item.product_id,
                price=item.price,
                added_at=now,
            )
            .on_conflict_do_nothing(index_elements=["user_id", "product_id"])
        )
        await self._session.execute(stmt)
        return await self.get(user_id)

    async def remove_item(self, user_id: UUID, product_id: UUID) -> Cart:
        stmt = delete(CartItemRow).where(
            CartItemRow.user_id == user_id, CartItemRow.product_id == product_id
        )
        await self._session.execute(stmt)
        return await self.get(user_id)

    async def clear(self, user_id: UUID) -> None:
        await self._session.execute(
            delete(CartItemRow).where(CartItemRow.user_id == user_id)
        )
