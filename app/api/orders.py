"""Course orders.

- POST  /v1/orders               buy a course (free courses enroll at once)
- GET   /v1/orders/mine          the caller's orders
- GET   /v1/orders/{id}          owner or admin
- GET   /v1/orders               admin: every order
- PATCH /v1/orders/{id}/status   admin: record the payment outcome

Setting ``paid`` enrolls the buyer in the same transaction.  Repeating
the same status is accepted and changes nothing.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel, Field

from app.api.dependencies import require_role, require_user
from app.models.order import Order, PaymentMethod, PaymentStatus
from app.models.principal import Principal
from app.models.progress import Enrollment
from app.services.work import work_scope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/orders", tags=["orders"])


class OrderIn(BaseModel):
    course_id: UUID
    payment_method: PaymentMethod | None = None
    payment_number: str | None = Field(default=None, max_length=64)
    transaction_id: str | None = Field(default=None, max_length=255)
    payment_proof_ref: str | None = None


class OrderOut(BaseModel):
    id: UUID
    buyer_id: UUID
    course_id: UUID
    amount: int
    payment_method: PaymentMethod
    payment_number: str | None
    payment_status: PaymentStatus
    transaction_id: str
    payment_proof_ref: str
    created_at: int

    @staticmethod
    def from_order(order: Order) -> OrderOut:
        return OrderOut(
            id=order.id,
            buyer_id=order.buyer_id,
            course_id=order.course_id,
            amount=order.amount,
            payment_method=order.payment_method,
            payment_number=order.payment_number,
            payment_status=order.payment_status,
            transaction_id=order.transaction_id,
            payment_proof_ref=order.payment_proof_ref,
            created_at=order.created_at,
        )


class EnrollmentOut(BaseModel):
    id: UUID
    student_id: UUID
    course_id: UUID
    progress_percent: int
    completed: bool
    created_at: int

    @staticmethod
    def from_enrollment(enrollment: Enrollment) -> EnrollmentOut:
        return EnrollmentOut(
            id=enrollment.id,
            student_id=enrollment.student_id,
            course_id=enrollment.course_id,
            progress_percent=enrollment.progress_percent,
            completed=enrollment.completed,
            created_at=enrollment.created_at,
        )


class OrderCreatedOut(BaseModel):
    order: OrderOut
    enrollment: EnrollmentOut | None = None


class StatusIn(BaseModel):
    payment_status: PaymentStatus
    transaction_id: str | None = Field(default=None, max_length=255)


@router.post("", response_model=OrderCreatedOut, status_code=status.HTTP_201_CREATED)
async def create_order(
    body: OrderIn,
    principal: Annotated[Principal, Depends(require_role("student"))],
) -> OrderCreatedOut:
    async with work_scope() as work:
        order, enrollment = await work.ledger().record_course_order(
            principal.id,
            body.course_id,
            payment_method=body.payment_method,
            payment_number=body.payment_number,
            transaction_id=body.transaction_id,
            payment_proof_ref=body.payment_proof_ref,
        )
    return OrderCreatedOut(
        order=OrderOut.from_order(order),
        enrollment=EnrollmentOut.from_enrollment(enrollment) if enrollment else None,
    )


@router.get("/mine", response_model=list[OrderOut])
async def my_orders(
    principal: Annotated[Principal, Depends(require_user)],
) -> list[OrderOut]:
    async with work_scope() as work:
        orders = await work.ledger().list_orders_for_buyer(principal.id)
    return [OrderOut.from_order(o) for o in orders]


@router.get("/{order_id}", response_model=OrderOut)
async def get_order(
    order_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> OrderOut:
    async with work_scope() as work:
        order = await work.ledger().get_order(order_id, principal)
    return OrderOut.from_order(order)


@router.get("", response_model=list[OrderOut])
async def list_orders(
    _admin: Annotated[Principal, Depends(require_role("admin"))],
) -> list[OrderOut]:
    async with work_scope() as work:
        orders = await work.ledger().list_all_orders()
    return [OrderOut.from_order(o) for o in orders]


@router.patch("/{order_id}/status", response_model=OrderOut)
async def update_order_status(
    order_id: UUID,
    body: StatusIn,
    admin: Annotated[Principal, Depends(require_role("admin"))],
) -> OrderOut:
    async with work_scope() as work:
        order = await work.ledger().set_order_status(
            order_id, body.payment_status, body.transaction_id
        )
    logger.info(
        "Admin=%s set order=%s to %s",
        admin.user_id,
        order_id,
        body.payment_status,
        extra={"order_id": str(order_id)},
    )
    return OrderOut.from_order(order)
