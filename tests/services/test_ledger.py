"""Entitlement ledger: order intake, payment transitions and their grants."""

from __future__ import annotations

import asyncio
import dataclasses
from uuid import uuid4

import pytest

from app.core.errors import Conflict, Forbidden, InvalidInput, NotFound
from app.models.order import Order, PaymentMethod, PaymentStatus
from app.models.principal import Principal
from app.models.product import CartItem
from app.repos.registry import Repos
from app.services.access_granter import AccessGranter
from app.services.jobs import JobDispatcher
from app.services.ledger import EntitlementLedger
from app.services.task_queue import EMAIL_DISPATCH, task_queue
from tests.conftest import NOW, seed_course, seed_product, seed_user


def _ledger(repos: Repos) -> tuple[EntitlementLedger, JobDispatcher]:
    jobs = JobDispatcher(task_queue)
    granter = AccessGranter(repos, jobs, clock=lambda: NOW)
    return EntitlementLedger(repos, granter, clock=lambda: NOW), jobs


def _pay_details(tx: str = "TX-1001") -> dict:
    return {
        "payment_method": PaymentMethod.BKASH,
        "payment_number": "01700000000",
        "transaction_id": tx,
    }


# ---- course orders ----


def test_free_course_enrolls_immediately(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(price=0)
    ledger, jobs = _ledger(repos)

    order, enrollment = asyncio.run(ledger.record_course_order(student.id, course.id))

    assert order.payment_status == PaymentStatus.PAID
    assert order.payment_method == PaymentMethod.FREE
    assert order.amount == 0
    assert order.transaction_id == f"free_{student.id}_{course.id}"
    assert enrollment is not None
    assert enrollment.student_id == student.id
    assert [j.queue for j in jobs.pending] == [EMAIL_DISPATCH]


def test_paid_course_order_is_pending_at_effective_price(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(price=1000, discount_price=800)
    ledger, jobs = _ledger(repos)

    order, enrollment = asyncio.run(
        ledger.record_course_order(student.id, course.id, **_pay_details())
    )

    assert order.payment_status == PaymentStatus.PENDING
    assert order.amount == 800
    assert enrollment is None
    assert asyncio.run(repos.enrollments.get(student.id, course.id)) is None
    assert jobs.pending == ()


@pytest.mark.parametrize(
    "missing",
    ["payment_method", "transaction_id", "payment_number"],
)
def test_paid_course_requires_payment_details(repos: Repos, missing: str) -> None:
    student = seed_user()
    course, _ = seed_course(price=1000)
    ledger, _ = _ledger(repos)
    details = _pay_details()
    details[missing] = None

    with pytest.raises(InvalidInput):
        asyncio.run(ledger.record_course_order(student.id, course.id, **details))


def test_free_method_is_rejected_for_paid_course(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(price=1000)
    ledger, _ = _ledger(repos)
    details = _pay_details()
    details["payment_method"] = PaymentMethod.FREE

    with pytest.raises(InvalidInput, match="payment method"):
        asyncio.run(ledger.record_course_order(student.id, course.id, **details))


def test_unpublished_course_is_not_found(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(published=False)
    ledger, _ = _ledger(repos)

    with pytest.raises(NotFound):
        asyncio.run(ledger.record_course_order(student.id, course.id))


def test_second_order_for_same_course_conflicts(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(price=1000)
    ledger, _ = _ledger(repos)
    asyncio.run(ledger.record_course_order(student.id, course.id, **_pay_details("A")))

    with pytest.raises(Conflict, match="pending or paid"):
        asyncio.run(
            ledger.record_course_order(student.id, course.id, **_pay_details("B"))
        )


def test_store_rejects_second_active_order_for_same_course(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(price=1000)

    def pending(tx: str) -> Order:
        return Order.new(
            buyer_id=student.id,
            course_id=course.id,
            amount=1000,
            payment_method=PaymentMethod.BKASH,
            transaction_id=tx,
            created_at=NOW,
        )

    asyncio.run(repos.orders.add(pending("A")))
    # An order that slipped past the ledger's own check is still refused.
    with pytest.raises(Conflict, match="pending or paid"):
        asyncio.run(repos.orders.add(pending("B")))
    failed = dataclasses.replace(pending("C"), payment_status=PaymentStatus.FAILED)
    asyncio.run(repos.orders.add(failed))

    assert len(asyncio.run(repos.orders.list_for_buyer(student.id))) == 2


def test_concurrent_orders_for_same_course_record_one(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(price=1000)
    ledger, _ = _ledger(repos)

    async def race():
        return await asyncio.gather(
            ledger.record_course_order(student.id, course.id, **_pay_details("A")),
            ledger.record_course_order(student.id, course.id, **_pay_details("B")),
            return_exceptions=True,
        )

    results = asyncio.run(race())

    assert sum(isinstance(r, Conflict) for r in results) == 1
    assert len(asyncio.run(repos.orders.list_for_buyer(student.id))) == 1


def test_already_enrolled_conflicts(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(price=0)
    ledger, _ = _ledger(repos)
    asyncio.run(ledger.record_course_order(student.id, course.id))

    with pytest.raises(Conflict, match="already enrolled"):
        asyncio.run(ledger.record_course_order(student.id, course.id))


def test_failed_order_allows_a_new_attempt(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(price=1000)
    ledger, _ = _ledger(repos)

    async def scenario():
        first, _ = await ledger.record_course_order(
            student.id, course.id, **_pay_details("A")
        )
        await ledger.set_order_status(first.id, PaymentStatus.FAILED)
        return await ledger.record_course_order(
            student.id, course.id, **_pay_details("B")
        )

    second, _ = asyncio.run(scenario())
    assert second.payment_status == PaymentStatus.PENDING


def test_duplicate_transaction_id_conflicts(repos: Repos) -> None:
    alice = seed_user("alice@example.com")
    bob = seed_user("bob@example.com")
    course, _ = seed_course(price=1000)
    ledger, _ = _ledger(repos)
    asyncio.run(ledger.record_course_order(alice.id, course.id, **_pay_details("SAME")))

    with pytest.raises(Conflict, match="transaction id"):
        asyncio.run(
            ledger.record_course_order(bob.id, course.id, **_pay_details("SAME"))
        )


# ---- course status transitions ----


def test_paid_transition_grants_enrollment_once(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(price=1000)
    ledger, jobs = _ledger(repos)

    async def scenario():
        order, _ = await ledger.record_course_order(
            student.id, course.id, **_pay_details()
        )
        await ledger.set_order_status(order.id, PaymentStatus.PAID)
        return await ledger.set_order_status(order.id, PaymentStatus.PAID)

    order = asyncio.run(scenario())

    assert order.payment_status == PaymentStatus.PAID
    enrollments = asyncio.run(repos.enrollments.list_for_student(student.id))
    assert len(enrollments) == 1
    # Only the first transition created the grant, so one email.
    assert [j.queue for j in jobs.pending] == [EMAIL_DISPATCH]


def test_paid_transition_can_record_transaction_id(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(price=1000)
    ledger, _ = _ledger(repos)

    async def scenario():
        order, _ = await ledger.record_course_order(
            student.id, course.id, **_pay_details("ORIGINAL")
        )
        return await ledger.set_order_status(order.id, PaymentStatus.PAID, "CONFIRMED")

    assert asyncio.run(scenario()).transaction_id == "CONFIRMED"


def test_failed_is_terminal(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(price=1000)
    ledger, _ = _ledger(repos)

    async def scenario():
        order, _ = await ledger.record_course_order(
            student.id, course.id, **_pay_details()
        )
        await ledger.set_order_status(order.id, PaymentStatus.FAILED)
        await ledger.set_order_status(order.id, PaymentStatus.PAID)

    with pytest.raises(Conflict, match="already failed"):
        asyncio.run(scenario())
    assert asyncio.run(repos.enrollments.get(student.id, course.id)) is None


def test_paid_cannot_revert_to_pending(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(price=0)
    ledger, _ = _ledger(repos)

    async def scenario():
        order, _ = await ledger.record_course_order(student.id, course.id)
        await ledger.set_order_status(order.id, PaymentStatus.PENDING)

    with pytest.raises(Conflict, match="already paid"):
        asyncio.run(scenario())


def test_status_change_on_unknown_order_is_not_found(repos: Repos) -> None:
    ledger, _ = _ledger(repos)
    with pytest.raises(NotFound):
        asyncio.run(ledger.set_order_status(uuid4(), PaymentStatus.PAID))


def test_concurrent_paid_transitions_grant_once(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course(price=1000)
    ledger, jobs = _ledger(repos)

    async def scenario():
        order, _ = await ledger.record_course_order(
            student.id, course.id, **_pay_details()
        )
        return await asyncio.gather(
            *(ledger.set_order_status(order.id, PaymentStatus.PAID) for _ in range(5))
        )

    results = asyncio.run(scenario())

    assert all(o.payment_status == PaymentStatus.PAID for o in results)
    assert len(asyncio.run(repos.enrollments.list_for_student(student.id))) == 1
    assert len(jobs.pending) == 1


# ---- reads ----


def test_get_order_is_owner_or_admin(repos: Repos) -> None:
    owner = seed_user("owner@example.com")
    course, _ = seed_course(price=0)
    ledger, _ = _ledger(repos)
    order, _ = asyncio.run(ledger.record_course_order(owner.id, course.id))

    stranger = Principal(user_id=str(uuid4()), roles=frozenset({"student"}))
    admin = Principal(user_id=str(uuid4()), roles=frozenset({"admin"}))
    me = Principal(user_id=str(owner.id), roles=frozenset({"student"}))

    with pytest.raises(Forbidden):
        asyncio.run(ledger.get_order(order.id, stranger))
    assert asyncio.run(ledger.get_order(order.id, admin)).id == order.id
    assert asyncio.run(ledger.get_order(order.id, me)).id == order.id


# ---- digital orders ----


def test_checkout_with_empty_cart_is_rejected(repos: Repos) -> None:
    buyer = seed_user()
    ledger, _ = _ledger(repos)
    with pytest.raises(InvalidInput, match="cart is empty"):
        asyncio.run(ledger.record_cart_order(buyer.id))


def test_free_cart_is_paid_with_tokens_and_cleared(repos: Repos) -> None:
    buyer = seed_user()
    product = seed_product(price=0)
    ledger, jobs = _ledger(repos)

    async def scenario():
        await repos.carts.add_item(buyer.id, CartItem(product.id, 0), NOW)
        return await ledger.record_cart_order(buyer.id)

    order = asyncio.run(scenario())

    assert order.payment_status == PaymentStatus.PAID
    assert order.payment_method == PaymentMethod.FREE
    assert order.transaction_id.startswith(f"free_{buyer.id}_")
    assert len(order.download_tokens) == 1
    assert order.download_tokens[0].downloads_remaining == 5
    assert asyncio.run(repos.carts.get(buyer.id)).is_empty
    assert [j.queue for j in jobs.pending] == [EMAIL_DISPATCH]


def test_paid_cart_stays_pending_until_confirmed(repos: Repos) -> None:
    buyer = seed_user()
    ebook = seed_product(price=500, slug="ebook")
    course_pack = seed_product(price=300, slug="course-pack")
    ledger, _ = _ledger(repos)

    async def scenario():
        await repos.carts.add_item(buyer.id, CartItem(ebook.id, 500), NOW)
        await repos.carts.add_item(buyer.id, CartItem(course_pack.id, 300), NOW)
        pending = await ledger.record_cart_order(
            buyer.id, payment_method=PaymentMethod.NAGAD, transaction_id="NG-1"
        )
        cart_before = await repos.carts.get(buyer.id)
        paid = await ledger.set_digital_order_status(pending.id, PaymentStatus.PAID)
        cart_after = await repos.carts.get(buyer.id)
        return pending, cart_before, paid, cart_after

    pending, cart_before, paid, cart_after = asyncio.run(scenario())

    assert pending.payment_status == PaymentStatus.PENDING
    assert pending.total_amount == 800
    assert pending.download_tokens == ()
    assert len(cart_before.items) == 2
    assert paid.payment_status == PaymentStatus.PAID
    assert {t.product_id for t in paid.download_tokens} == {ebook.id, course_pack.id}
    assert all(t.expires_at == NOW + 7 * 86_400 for t in paid.download_tokens)
    assert cart_after.is_empty


def test_repaying_digital_order_keeps_original_tokens(repos: Repos) -> None:
    buyer = seed_user()
    product = seed_product(price=500)
    ledger, jobs = _ledger(repos)

    async def scenario():
        await repos.carts.add_item(buyer.id, CartItem(product.id, 500), NOW)
        order = await ledger.record_cart_order(
            buyer.id, payment_method=PaymentMethod.BKASH, transaction_id="BK-1"
        )
        first = await ledger.set_digital_order_status(order.id, PaymentStatus.PAID)
        second = await ledger.set_digital_order_status(order.id, PaymentStatus.PAID)
        return first, second

    first, second = asyncio.run(scenario())
    assert first.download_tokens == second.download_tokens
    assert len(jobs.pending) == 1


def test_failed_digital_order_stays_failed(repos: Repos) -> None:
    buyer = seed_user()
    product = seed_product(price=500)
    ledger, jobs = _ledger(repos)

    async def scenario():
        await repos.carts.add_item(buyer.id, CartItem(product.id, 500), NOW)
        order = await ledger.record_cart_order(
            buyer.id, payment_method=PaymentMethod.BKASH, transaction_id="BK-2"
        )
        await ledger.set_digital_order_status(order.id, PaymentStatus.FAILED)
        return order

    order = asyncio.run(scenario())
    with pytest.raises(Conflict, match="already failed"):
        asyncio.run(ledger.set_digital_order_status(order.id, PaymentStatus.PAID))

    stored = asyncio.run(repos.digital_orders.get(order.id))
    assert stored.payment_status == PaymentStatus.FAILED
    assert stored.download_tokens == ()
    assert jobs.pending == ()


def test_unpublished_product_blocks_checkout(repos: Repos) -> None:
    buyer = seed_user()
    product = seed_product(price=500, published=False)
    ledger, _ = _ledger(repos)

    async def scenario():
        await repos.carts.add_item(buyer.id, CartItem(product.id, 500), NOW)
        await ledger.record_cart_order(
            buyer.id, payment_method=PaymentMethod.BKASH, transaction_id="BK-2"
        )

    with pytest.raises(NotFound, match="no longer available"):
        asyncio.run(scenario())
