"""PostgreSQL implementation of OrderRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict
from app.db.tables import ACTIVE_ORDER_INDEX, OrderRow
from app.models.order import ACTIVE_STATUSES, Order, PaymentMethod, PaymentStatus
from app.repos.order_repo import ACTIVE_ORDER_CONFLICT


class PgOrderRepo:
    """Satisfies the OrderRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def add(self, order: Order) -> None:
        self._session.add(
            OrderRow(
                id=order.id,
                buyer_id=order.buyer_id,
                course_id=order.course_id,
                amount=order.amount,
                payment_method=order.payment_method.value,
                payment_status=order.payment_status.value,
                transaction_id=order.transaction_id,
                payment_number=order.payment_number,
                payment_proof_ref=order.payment_proof_ref,
                created_at=order.created_at,
            )
        )
        try:
            await self._session.flush()
        except IntegrityError as e:
            if ACTIVE_ORDER_INDEX in str(e.orig):
                raise Conflict(ACTIVE_ORDER_CONFLICT) from None
            raise Conflict("transaction id already used") from None

    async def get(self, order_id: UUID) -> Order | None:
        row = await self._session.get(OrderRow, order_id)
        if row is None:
            return None
        return _row_to_order(row)

    async def list_for_buyer(self, buyer_id: UUID) -> list[Order]:
        stmt = (
            select(OrderRow)
            .where(OrderRow.buyer_id == buyer_id)
            .order_by(OrderRow.created_at.desc())
        )
        return [_row_to_order(r) for r in (await self._session.execute(stmt)).scalars()]

    async def list_all(self) -> list[Order]:
        stmt = select(OrderRow).order_by(OrderRow.created_at.desc())
        return [_row_to_order(r) for r in (await self._session.execute(stmt)).scalars()]

    async def find_active(self, buyer_id: UUID, course_id: UUID) -> Order | None:
        stmt = (
            select(OrderRow)
            .where(OrderRow.buyer_id == buyer_id)
            .where(OrderRow.course_id == course_id)
            .where(OrderRow.payment_status.in_([s.value for s in ACTIVE_STATUSES]))
            .limit(1)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_order(row)

    async def transition(
        self,
        order_id: UUID,
        expected: PaymentStatus,
        target: PaymentStatus,
        transaction_id: str | None = None,
    ) -> Order | None:
        """Compare-and-set on payment_status. None when the stored status
        no longer matches ``expected`` (a concurrent update won)."""
        values: dict = {"payment_status": target.value}
        if transaction_id:
            values["transaction_id"] = transaction_id
        stmt = (
            update(OrderRow)
            .where(OrderRow.id == order_id)
            .where(OrderRow.payment_status == expected.value)
            .values(**values)
            .returning(OrderRow.id)
        )
        try:
            updated_id = (await self._session.execute(stmt)).scalar_one_or_none()
        except IntegrityError:
            raise Conflict("transaction id already used") from None
        if updated_id is None:
            return None  # concurrent update won the race
        row = await self._session.get(OrderRow, order_id, populate_existing=True)
        if row is None:
            return None
        return _row_to_order(row)


def _row_to_order(row: OrderRow) -> Order:
    return Order(
        id=row.id,
        buyer_id=row.buyer_id,
        course_id=row.course_id,
        amount=row.amount,
        payment_method=PaymentMethod(row.payment_method),
        transaction_id=row.transaction_id,
        payment_status=PaymentStatus(row.payment_status),
        payment_number=row.payment_number,
        payment_proof_ref=row.payment_proof_ref,
        created_at=row.created_at,
    )
