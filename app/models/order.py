"""Ledger records: course Orders and DigitalOrders.

PAYMENT STATUS STATE MACHINE
------------------------------
Every status decision in the service goes through _TRANSITIONS:

    pending ──▶ paid      (terminal)
        │
        └─────▶ failed    (terminal)

Setting an order to the status it already has is not a transition; the
ledger treats it as an idempotent no-op so that a retried admin click
or a duplicated payment callback observes the existing grant instead of
raising.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from uuid import UUID, uuid4


class PaymentStatus(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PaymentMethod(StrEnum):
    BKASH = "bkash"
    NAGAD = "nagad"
    UPAY = "upay"
    ROCKET = "rocket"
    CELLFIN = "cellfin"
    FREE = "free"

    @classmethod
    def _missing_(cls, value):
        # Wallet names arrive as branded ("Nagad", "bKash").
        if isinstance(value, str):
            return cls.__members__.get(value.strip().upper())
        return None


_TRANSITIONS: dict[PaymentStatus, frozenset[PaymentStatus]] = {
    PaymentStatus.PENDING: frozenset({PaymentStatus.PAID, PaymentStatus.FAILED}),
    PaymentStatus.PAID: frozenset(),
    PaymentStatus.FAILED: frozenset(),
}

# Statuses that block a second order for the same course.
ACTIVE_STATUSES = frozenset({PaymentStatus.PENDING, PaymentStatus.PAID})


def can_transition(current: PaymentStatus, target: PaymentStatus) -> bool:
    return target in _TRANSITIONS[current]


def is_terminal(status: PaymentStatus) -> bool:
    return not _TRANSITIONS[status]


@dataclass(frozen=True, slots=True)
class Order:
    id: UUID
    buyer_id: UUID
    course_id: UUID
    amount: int
    payment_method: PaymentMethod
    transaction_id: str
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_number: str | None = None
    payment_proof_ref: str = ""
    created_at: int = 0

    @staticmethod
    def new(
        *,
        buyer_id: UUID,
        course_id: UUID,
        amount: int,
        payment_method: PaymentMethod,
        transaction_id: str,
        created_at: int,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        payment_number: str | None = None,
        payment_proof_ref: str = "",
    ) -> Order:
        return Order(
            id=uuid4(),
            buyer_id=buyer_id,
            course_id=course_id,
            amount=amount,
            payment_method=payment_method,
            transaction_id=transaction_id,
            payment_status=payment_status,
            payment_number=payment_number,
            payment_proof_ref=payment_proof_ref,
            created_at=created_at,
        )


@dataclass(frozen=True, slots=True)
class LineItem:
    product_id: UUID
    unit_price: int
    title_snapshot: str


@dataclass(frozen=True, slots=True)
class DownloadToken:
    product_id: UUID
    token: str
    expires_at: int
    max_downloads: int = 5
    downloads_used: int = 0

    @property
    def downloads_remaining(self) -> int:
        return max(0, self.max_downloads - self.downloads_used)

    def is_expired(self, now: int) -> bool:
        return now >= self.expires_at


@dataclass(frozen=True, slots=True)
class BuyerInfo:
    name: str | None = None
    email: str | None = None
    phone: str | None = None


@dataclass(frozen=True, slots=True)
class DigitalOrder:
    id: UUID
    buyer_id: UUID
    line_items: tuple[LineItem, ...]
    total_amount: int
    payment_method: PaymentMethod
    transaction_id: str
    payment_status: PaymentStatus = PaymentStatus.PENDING
    buyer_info: BuyerInfo | None = None
    download_tokens: tuple[DownloadToken, ...] = field(default_factory=tuple)
    created_at: int = 0

    def token_for(self, product_id: UUID) -> DownloadToken | None:
        for token in self.download_tokens:
            if token.product_id == product_id:
                return token
        return None

    @staticmethod
    def new(
        *,
        buyer_id: UUID,
        line_items: tuple[LineItem, ...],
        total_amount: int,
        payment_method: PaymentMethod,
        transaction_id: str,
        created_at: int,
        payment_status: PaymentStatus = PaymentStatus.PENDING,
        buyer_info: BuyerInfo | None = None,
    ) -> DigitalOrder:
        return DigitalOrder(
            id=uuid4(),
            buyer_id=buyer_id,
            line_items=line_items,
            total_amount=total_amount,
            payment_method=payment_method,
            transaction_id=transaction_id,
            payment_status=payment_status,
            buyer_info=buyer_info,
            created_at=created_at,
        )
