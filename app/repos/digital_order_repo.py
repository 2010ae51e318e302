from __future__ import annotations

import dataclasses
from typing import Protocol
from uuid import UUID

from app.core.errors import Conflict
from app.models.order import DigitalOrder, DownloadToken, PaymentStatus


class DigitalOrderRepo(Protocol):
    async def add(self, order: DigitalOrder) -> None: ...
    async def get(self, order_id: UUID) -> DigitalOrder | None: ...
    async def list_for_buyer(self, buyer_id: UUID) -> list[DigitalOrder]: ...
    async def list_all(self) -> list[DigitalOrder]: ...
    async def transition(
        self,
        order_id: UUID,
        expected: PaymentStatus,
        target: PaymentStatus,
        transaction_id: str | None = None,
    ) -> DigitalOrder | None: ...
    async def attach_tokens(
        self, order_id: UUID, tokens: tuple[DownloadToken, ...]
    ) -> tuple[DigitalOrder, bool]: ...
    async def get_by_token(self, token: str) -> DigitalOrder | None: ...
    async def consume_download(self, token: str, now: int) -> DownloadToken | None: ...


class InMemoryDigitalOrderRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, DigitalOrder] = {}
        self._order_by_token: dict[str, UUID] = {}

    def _check_transaction_id(self, transaction_id: str, order_id: UUID) -> None:
        for other in self._by_id.values():
            if other.transaction_id == transaction_id and other.id != order_id:
                raise Conflict("transaction id already used")

    async def add(self, order: DigitalOrder) -> None:
        self._check_transaction_id(order.transaction_id, order.id)
        self._by_id[order.id] = order

    async def get(self, order_id: UUID) -> DigitalOrder | None:
        return self._by_id.get(order_id)

    async def list_for_buyer(self, buyer_id: UUID) -> list[DigitalOrder]:
        orders = [o for o in self._by_id.values() if o.buyer_id == buyer_id]
        return sorted(orders, key=lambda o: o.created_at, reverse=True)

    async def list_all(self) -> list[DigitalOrder]:
        return sorted(self._by_id.values(), key=lambda o: o.created_at, reverse=True)

    async def transition(
        self,
        order_id: UUID,
        expected: PaymentStatus,
        target: PaymentStatus,
        transaction_id: str | None = None,
    ) -> DigitalOrder | None:
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

    async def attach_tokens(
        self, order_id: UUID, tokens: tuple[DownloadToken, ...]
    ) -> tuple[DigitalOrder, bool]:
        """Store tokens unless the order already has some.

        Returns the stored order and whether this call attached them.
        """
        order = self._by_id[order_id]
        if order.download_tokens:
            return order, False
        updated = dataclasses.replace(order, download_tokens=tokens)
        self._by_id[order_id] = updated
        for t in tokens:
            self._order_by_token[t.token] = order_id
        return updated, True

    async def get_by_token(self, token: str) -> DigitalOrder | None:
        order_id = self._order_by_token.get(token)
        if order_id is None:
            return None
        return self._by_id.get(order_id)

    async def consume_download(self, token: str, now: int) -> DownloadToken | None:
        """Increment downloads_used if the token is unexpired and has quota.

        Returns the updated token, or None when nothing was consumed.
        """
        order = await self.get_by_token(token)
        if order is None:
            return None
        updated_tokens = []
        consumed = None
        for t in order.download_tokens:
            if (
                t.token == token
                and not t.is_expired(now)
                and t.downloads_used < t.max_downloads
            ):
                t = dataclasses.replace(t, downloads_used=t.downloads_used + 1)
                consumed = t
            updated_tokens.append(t)
        if consumed is not None:
            self._by_id[order.id] = dataclasses.replace(
                order, download_tokens=tuple(updated_tokens)
            )
        return consumed
