"""PostgreSQL implementation of DigitalOrderRepo.

Line items and download tokens live in child tables keyed by order id;
every read assembles the full aggregate.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict, NotFound
from app.db.tables import DigitalOrderItemRow, DigitalOrderRow, DownloadTokenRow
from app.models.order import (
    BuyerInfo,
    DigitalOrder,
    DownloadToken,
    LineItem,
    PaymentMethod,
    PaymentStatus,
)


class PgDigitalOrderRepo:
    """Satisfies the DigitalOrderRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, order: DigitalOrder) -> None:
        info = order.buyer_info or BuyerInfo()
        self._session.add(
            DigitalOrderRow(
                id=order.id,
                buyer_id=order.buyer_id,
                total_amount=order.total_amount,
                payment_method=order.payment_method.value,
                payment_status=order.payment_status.value,
                transaction_id=order.transaction_id,
                buyer_name=info.name,
                buyer_email=info.email,
                buyer_phone=info.phone,
                tokens_issued=False,
                created_at=order.created_at,
            )
        )
        try:
            await self._session.flush()
        except IntegrityError:
            raise Conflict("transaction id already used") from None
        for position, item in enumerate(order.line_items):
            self._session.add(
                DigitalOrderItemRow(
                    order_id=order.id,
                    product_id=item.product_id,
                    position=position,
                    unit_price=item.unit_price,
                    title_snapshot=item.title_snapshot,
                )
            )
        await self._session.flush()

    async def get(self, order_id: UUID) -> DigitalOrder | None:
        row = await self._session.get(DigitalOrderRow, order_id, populate_existing=True)
        if row is None:
            return None
        return await self._assemble(row)

    async def list_for_buyer(self, buyer_id: UUID) -> list[DigitalOrder]:
        stmt = (
            select(DigitalOrderRow)
            .where(DigitalOrderRow.buyer_id == buyer_id)
            .order_by(DigitalOrderRow.created_at.desc())
        )
        rows = (await self._session.execute(stmt)).scalars().all()
        return [await self._assemble(r) for r in rows]

    async def list_all(self) -> list[DigitalOrder]:
        stmt = select(DigitalOrderRow).order_by(DigitalOrderRow.created_at.desc())
        rows = (await self._session.execute(stmt)).scalars().all()
        return [await self._assemble(r) for r in rows]

    async def transition(
        self,
        order_id: UUID,
        expected: PaymentStatus,
        target: PaymentStatus,
        transaction_id: str | None = None,
    ) -> DigitalOrder | None:
        values: dict = {"payment_status": target.value}
        if transaction_id:
            values["transaction_id"] = transaction_id
        stmt = (
            update(DigitalOrderRow)
            .where(DigitalOrderRow.id == order_id)
            .where(DigitalOrderRow.payment_status == expected.value)
            .values(**values)
            .returning(DigitalOrderRow.id)
        )
        try:
            updated_id = (await self._session.execute(stmt)).scalar_one_or_none()
        except IntegrityError:
            raise Conflict("transaction id already used") from None
        if updated_id is None:
            return None  # concurrent update won the race
        return await self.get(order_id)

    async def attach_tokens(
        self, order_id: UUID, tokens: tuple[DownloadToken, ...]
    ) -> tuple[DigitalOrder, bool]:
        """Store tokens unless another request already did.

        The tokens_issued flag flips exactly once; the loser of a race
        gets the winner's tokens back.
        """
        claim = (
            update(DigitalOrderRow)
            .where(DigitalOrderRow.id == order_id)
            .where(DigitalOrderRow.tokens_issued.is_(False))
            .values(tokens_issued=True)
            .returning(DigitalOrderRow.id)
        )
        claimed = (await self._session.execute(claim)).scalar_one_or_none()
        if claimed is not None:
            for t in tokens:
                self._session.add(
                    DownloadTokenRow(
                        token=t.token,
                        order_id=order_id,
                        product_id=t.product_id,
                        expires_at=t.expires_at,
                        max_downloads=t.max_downloads,
                        downloads_used=t.downloads_used,
                    )
                )
            await self._session.flush()
        order = await self.get(order_id)
        if order is None:
            raise NotFound("order not found")
        return order, claimed is not None

    async def get_by_token(self, token: str) -> DigitalOrder | None:
        stmt = select(DownloadTokenRow.order_id).where(DownloadTokenRow.token == token)
        order_id = (await self._session.execute(stmt)).scalar_one_or_none()
        if order_id is None:
            return None
        return await self.get(order_id)

    async def consume_download(self, token: str, now: int) -> DownloadToken | None:
        """Single conditional UPDATE ... RETURNING; None when nothing was
        consumed (unknown, expired or exhausted)."""
        stmt = (
            update(DownloadTokenRow)
            .where(DownloadTokenRow.token == token)
            .where(DownloadTokenRow.expires_at > now)
            .where(DownloadTokenRow.downloads_used < DownloadTokenRow.max_downloads)
            .values(downloads_used=DownloadTokenRow.downloads_used + 1)
            .returning(
                DownloadTokenRow.product_id,
                DownloadTokenRow.token,
                DownloadTokenRow.expires_at,
                DownloadTokenRow.max_downloads,
                DownloadTokenRow.downloads_used,
            )
        )
        row = (await self._session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return DownloadToken(
            product_id=row.product_id,
            token=row.token,
            expires_at=row.expires_at,
            max_downloads=row.max_downloads,
            downloads_used=row.downloads_used,
        )

    async def _assemble(self, row: DigitalOrderRow) -> DigitalOrder:
        items_stmt = (
            select(DigitalOrderItemRow)
            .where(DigitalOrderItemRow.order_id == row.id)
            .order_by(DigitalOrderItemRow.position)
            .execution_options(populate_existing=True)
        )
        tokens_stmt = (
            select(DownloadTokenRow)
            .where(DownloadTokenRow.order_id == row.id)
            .execution_options(populate_existing=True)
        )
        items = (await self._session.execute(items_stmt)).scalars().all()
        tokens = (await self._session.execute(tokens_stmt)).scalars().all()
        buyer_info = None
        if row.buyer_name or row.buyer_email or row.buyer_phone:
            buyer_info = BuyerInfo(
                name=row.buyer_name, email=row.buyer_email, phone=row.buyer_phone
            )
        return DigitalOrder(
            id=row.id,
            buyer_id=row.buyer_id,
            line_items=tuple(
                LineItem(
                    product_id=i.product_id,
                    unit_price=i.unit_price,
                    title_snapshot=i.title_snapshot,
                )
                for i in items
            ),
            total_amount=row.total_amount,
            payment_method=PaymentMethod(row.payment_method),
            transaction_id=row.transaction_id,
            payment_status=PaymentStatus(row.payment_status),
            buyer_info=buyer_info,
            download_tokens=tuple(
                DownloadToken(
                    product_id=t.product_id,
                    token=t.token,
                    expires_at=t.expires_at,
                    max_downloads=t.max_downloads,
                    downloads_used=t.downloads_used,
                )
                for t in tokens
            ),
            created_at=row.created_at,
        )
