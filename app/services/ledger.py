"""Entitlement ledger: the record of what was bought and whether it was paid.

Every payment status change goes through the transition table in
app.models.order and is applied as a compare-and-set on the stored status.
The transition into ``paid`` and the resulting grant run inside the same
unit of work, so either both are committed or neither is.

Re-setting an order to the status it already has is a no-op that returns
the stored order.  For ``paid`` the granter is re-driven, which creates
nothing new but heals a grant lost to an earlier crash.
"""

from __future__ import annotations

import logging
import uuid
from uuid import UUID

from app.core.clock import Clock, utc_now
from app.core.errors import Conflict, Forbidden, InvalidInput, NotFound
from app.core.metrics import PAYMENT_TRANSITIONS
from app.models.order import (
    BuyerInfo,
    DigitalOrder,
    LineItem,
    Order,
    PaymentMethod,
    PaymentStatus,
    can_transition,
    is_terminal,
)
from app.models.principal import Principal
from app.models.progress import Enrollment
from app.repos.order_repo import ACTIVE_ORDER_CONFLICT
from app.repos.registry import Repos
from app.services.access_granter import AccessGranter

logger = logging.getLogger(__name__)


class EntitlementLedger:
    def __init__(
        self, repos: Repos, granter: AccessGranter, *, clock: Clock = utc_now
    ) -> None:
        self._repos = repos
        self._granter = granter
        self._clock = clock

    # ------------------------------------------------------------------
    # Course orders
    # ------------------------------------------------------------------

    async def record_course_order(
        self,
        buyer_id: UUID,
        course_id: UUID,
        *,
        payment_method: PaymentMethod | None = None,
        payment_number: str | None = None,
        transaction_id: str | None = None,
        payment_proof_ref: str | None = None,
    ) -> tuple[Order, Enrollment | None]:
        course = await self._repos.catalog.get_course(course_id)
        if course is None or not course.is_published:
            raise NotFound("course not found")

        if await self._repos.enrollments.get(buyer_id, course_id) is not None:
            raise Conflict("already enrolled in this course")
        if await self._repos.orders.find_active(buyer_id, course_id) is not None:
            raise Conflict(ACTIVE_ORDER_CONFLICT)

        if course.is_free:
            order = Order.new(
                buyer_id=buyer_id,
                course_id=course_id,
                amount=0,
                payment_method=PaymentMethod.FREE,
                transaction_id=f"free_{buyer_id}_{course_id}",
                payment_status=PaymentStatus.PAID,
                created_at=self._clock(),
            )
            await self._repos.orders.add(order)
            PAYMENT_TRANSITIONS.labels(order_kind="course", status="paid").inc()
            grant = await self._granter.on_paid(order)
            logger.info(
                "Free course order=%s recorded as paid",
                order.id,
                extra={"order_id": str(order.id), "course_id": str(course_id)},
            )
            return order, grant.enrollment

        if payment_method is None or payment_method == PaymentMethod.FREE:
            raise InvalidInput("payment method is required for paid courses")
        if not transaction_id or not transaction_id.strip():
            raise InvalidInput("transaction id is required for paid courses")
        if not payment_number or not payment_number.strip():
            raise InvalidInput("payment number is required for paid courses")

        order = Order.new(
            buyer_id=buyer_id,
            course_id=course_id,
            amount=course.effective_price,
            payment_method=payment_method,
            transaction_id=transaction_id.strip(),
            payment_number=payment_number.strip(),
            payment_proof_ref=payment_proof_ref or "",
            created_at=self._clock(),
        )
        await self._repos.orders.add(order)
        logger.info(
            "Pending course order=%s amount=%d via %s",
            order.id,
            order.amount,
            payment_method,
            extra={"order_id": str(order.id), "course_id": str(course_id)},
        )
        return order, None

    async def set_order_status(
        self,
        order_id: UUID,
        status: PaymentStatus,
        transaction_id: str | None = None,
    ) -> Order:
        order = await self._repos.orders.get(order_id)
        if order is None:
            raise NotFound("order not found")

        if order.payment_status == status:
            if status == PaymentStatus.PAID:
                await self._granter.on_paid(order)
            return order

        if is_terminal(order.payment_status):
            raise Conflict(
                f"order is already {order.payment_status}; its payment status is final"
            )

        if not can_transition(order.payment_status, status):
            raise Conflict(
                f"cannot change payment status from {order.payment_status} to {status}"
            )

        updated = await self._repos.orders.transition(
            order_id, order.payment_status, status, transaction_id
        )
        if updated is None:
            # Lost a race; accept the winner's result when it is ours too.
            current = await self._repos.orders.get(order_id)
            if current is None or current.payment_status != status:
                raise Conflict("order status changed concurrently")
            if status == PaymentStatus.PAID:
                await self._granter.on_paid(current)
            return current

        PAYMENT_TRANSITIONS.labels(order_kind="course", status=status.value).inc()
        logger.info(
            "Order=%s %s -> %s",
            order_id,
            order.payment_status,
            status,
            extra={"order_id": str(order_id)},
        )
        if status == PaymentStatus.PAID:
            await self._granter.on_paid(updated)
        return updated

    async def get_order(self, order_id: UUID, requester: Principal) -> Order:
        order = await self._repos.orders.get(order_id)
        if order is None:
            raise NotFound("order not found")
        if not requester.owns_or_admin(order.buyer_id):
            raise Forbidden("not authorized to view this order")
        return order

    async def list_orders_for_buyer(self, buyer_id: UUID) -> list[Order]:
        return await self._repos.orders.list_for_buyer(buyer_id)

    async def list_all_orders(self) -> list[Order]:
        return await self._repos.orders.list_all()

    # ------------------------------------------------------------------
    # Digital orders
    # ------------------------------------------------------------------

    async def record_cart_order(
        self,
        buyer_id: UUID,
        *,
        payment_method: PaymentMethod | None = None,
        transaction_id: str | None = None,
        buyer_info: BuyerInfo | None = None,
    ) -> DigitalOrder:
        cart = await self._repos.carts.get(buyer_id)
        if cart.is_empty:
            raise InvalidInput("cart is empty")

        line_items = []
        for item in cart.items:
            product = await self._repos.catalog.get_product(item.product_id)
            if product is None or not product.is_published:
                raise NotFound(f"product {item.product_id} is no longer available")
            line_items.append(
                LineItem(
                    product_id=product.id,
                    unit_price=item.price,
                    title_snapshot=product.title,
                )
            )
        total = cart.subtotal

        if total == 0:
            order = DigitalOrder.new(
                buyer_id=buyer_id,
                line_items=tuple(line_items),
                total_amount=0,
                payment_method=PaymentMethod.FREE,
                transaction_id=f"free_{buyer_id}_{uuid.uuid4().hex}",
                payment_status=PaymentStatus.PAID,
                buyer_info=buyer_info,
                created_at=self._clock(),
            )
            await self._repos.digital_orders.add(order)
            PAYMENT_TRANSITIONS.labels(order_kind="digital", status="paid").inc()
            await self._granter.on_paid(order)
            await self._repos.carts.clear(buyer_id)
            logger.info(
                "Free digital order=%s recorded as paid, cart cleared",
                order.id,
                extra={"order_id": str(order.id)},
            )
            return await self._stored_digital(order.id)

        if payment_method is None or payment_method == PaymentMethod.FREE:
            raise InvalidInput("payment method is required for paid orders")
        if not transaction_id or not transaction_id.strip():
            raise InvalidInput("transaction id is required for paid orders")

        order = DigitalOrder.new(
            buyer_id=buyer_id,
            line_items=tuple(line_items),
            total_amount=total,
            payment_method=payment_method,
            transaction_id=transaction_id.strip(),
            buyer_info=buyer_info,
            created_at=self._clock(),
        )
        await self._repos.digital_orders.add(order)
        logger.info(
            "Pending digital order=%s amount=%d items=%d",
            order.id,
            total,
            len(line_items),
            extra={"order_id": str(order.id)},
        )
        return order

    async def set_digital_order_status(
        self,
        order_id: UUID,
        status: PaymentStatus,
        transaction_id: str | None = None,
    ) -> DigitalOrder:
        order = await self._repos.digital_orders.get(order_id)
        if order is None:
            raise NotFound("order not found")

        if order.payment_status == status:
            if status == PaymentStatus.PAID:
                return await self._grant_digital(order)
            return order

        if is_terminal(order.payment_status):
            raise Conflict(
                f"order is already {order.payment_status}; its payment status is final"
            )

        if not can_transition(order.payment_status, status):
            raise Conflict(
                f"cannot change payment status from {order.payment_status} to {status}"
            )

        updated = await self._repos.digital_orders.transition(
            order_id, order.payment_status, status, transaction_id
        )
        if updated is None:
            current = await self._repos.digital_orders.get(order_id)
            if current is None or current.payment_status != status:
                raise Conflict("order status changed concurrently")
            if status == PaymentStatus.PAID:
                return await self._grant_digital(current)
            return current

        PAYMENT_TRANSITIONS.labels(order_kind="digital", status=status.value).inc()
        logger.info(
            "Digital order=%s %s -> %s",
            order_id,
            order.payment_status,
            status,
            extra={"order_id": str(order_id)},
        )
        if status != PaymentStatus.PAID:
            return updated

        result = await self._grant_digital(updated)
        # The pending checkout left the cart alone; drop what was bought.
        for item in updated.line_items:
            await self._repos.carts.remove_item(updated.buyer_id, item.product_id)
        return result

    async def _grant_digital(self, order: DigitalOrder) -> DigitalOrder:
        await self._granter.on_paid(order)
        return await self._stored_digital(order.id)

    async def _stored_digital(self, order_id: UUID) -> DigitalOrder:
        stored = await self._repos.digital_orders.get(order_id)
        if stored is None:
            raise NotFound("order not found")
        return stored

    async def get_digital_order(
        self, order_id: UUID, requester: Principal
    ) -> DigitalOrder:
        order = await self._repos.digital_orders.get(order_id)
        if order is None:
            raise NotFound("order not found")
        if not requester.owns_or_admin(order.buyer_id):
            raise Forbidden("not authorized to view this order")
        return order

    async def list_digital_orders_for_buyer(self, buyer_id: UUID) -> list[DigitalOrder]:
        return await self._repos.digital_orders.list_for_buyer(buyer_id)

    async def list_all_digital_orders(self) -> list[DigitalOrder]:
        return await self._repos.digital_orders.list_all()
