from __future__ import annotations

import dataclasses
from typing import Protocol
from uuid import UUID

from app.core.errors import Conflict
from app.models.order import ACTIVE_STATUSES, Order, PaymentStatus

ACTIVE_ORDER_CONFLICT = "an order for this course is already pending or paid"


class OrderRepo(Protocol):
    async def add(self, order: Order) -> None: ...
    async def get(self, order_id: UUID) -> Order | None: ...
    async def list_for_buyer(self, buyer_id: UUID) -> list[Order]: ...
    async def list_all(self) -> list[Order]: ...
    async def find_active(self, buyer_id: UUID, course_id: UUID) -> Order | None: ...
    async def transition(
        self,
        order_id: UUID,
        expected: PaymentStatus,
        target: PaymentStatus,
        transaction_id: str | None = None,
    ) -> Order | None: ...


class InMemoryOrderRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Order] = {}

    def _check_transaction_id(self, transaction_id: str, order_id: UUID) -> None:
        for other in self._by_id.values():
            if other.transaction_id == transaction_id and other.id != order_id:
                raise Conflict("transaction id already used")

    async def add(self, order: Order) -> None:
        self._check_transaction_id(order.transaction_id, order.id)
        if order.payment_status in ACTIVE_STATUSES and await self.find_active(
            order.buyer_id, order.course_id
        ):
            raise Conflict(ACTIVE_ORDER_CONFLICT)
        self._by_id[order.id] = order

    async def get(self, order_id: UUID) -> Order | None:
        return self._by_id.get(order_id)

    async def list_for_buyer(self, buyer_id: UUID) -> list[Order]:
        orders = [o for o in self._by_id.values() if o.buyer_id == buyer_id]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def list_all(self) -> list[Order]:
        return sorted(self._by_id.values(), key=lambda o: o.created_at, reverse=True)

    async def find_active(self, buyer_id: UUID, course_id: UUID) -> Order | None:
        for order in self._by_id.values():
            if (
                order.buyer_id == buyer_id
                and order.course_id == course_id
                and order.payment_status in ACTIVE_STATUSES
            ):
                return order
        return None

    async def transition(
        self,
        order_id: UUID,
        expected: PaymentStatus,
        target: PaymentStatus,
        transaction_id: str | None = None,
    ) -> Order | None:
        """Compare-and-set on payment_status. None when the stored status
        no longer matches ``expected`` (a concurrent update won)."""
        order = self._by_id.get(order_id)
        if order is None or order.payment_status != expected:
            return None
        changes: dict = {"payment_status": target}
        if transaction_id:
            self._check_transaction_id(transaction_id, order_id)
            changes["transaction_id"] = transaction_id
        updated = dataclasses.replace(order, **changes)
        self._by_id[order_id] = updated
        return updated
