from __future__ import annotations

import pytest

from app.models.course import Course
from app.models.order import (
    DownloadToken,
    PaymentMethod,
    PaymentStatus,
    can_transition,
    is_terminal,
)
from app.models.progress import percent_complete
from app.models.user import User

# ---- payment status state machine ----


@pytest.mark.parametrize(
    "current, target, allowed",
    [
        (PaymentStatus.PENDING, PaymentStatus.PAID, True),
        (PaymentStatus.PENDING, PaymentStatus.FAILED, True),
        (PaymentStatus.PENDING, PaymentStatus.PENDING, False),
        (PaymentStatus.PAID, PaymentStatus.PENDING, False),
        (PaymentStatus.PAID, PaymentStatus.FAILED, False),
        (PaymentStatus.FAILED, PaymentStatus.PAID, False),
    ],
)
def test_can_transition(current, target, allowed) -> None:
    assert can_transition(current, target) is allowed


def test_paid_and_failed_are_terminal() -> None:
    assert not is_terminal(PaymentStatus.PENDING)
    assert is_terminal(PaymentStatus.PAID)
    assert is_terminal(PaymentStatus.FAILED)


# ---- payment method ----


@pytest.mark.parametrize("raw", ["bkash", "bKash", "BKASH", " Bkash "])
def test_payment_method_accepts_branded_names(raw: str) -> None:
    assert PaymentMethod(raw) is PaymentMethod.BKASH


def test_unknown_payment_method_is_rejected() -> None:
    with pytest.raises(ValueError):
        PaymentMethod("paypal")


# ---- pricing ----


@pytest.mark.parametrize(
    "price, discount, expected",
    [
        (1000, 0, 1000),
        (1000, 700, 700),
        (1000, 1000, 1000),
        (1000, 1200, 1000),
        (0, 0, 0),
    ],
)
def test_effective_price(price: int, discount: int, expected: int) -> None:
    course = Course.new(slug="c", title="C", price=price, discount_price=discount)
    assert course.effective_price == expected
    assert course.is_free is (expected == 0)


# ---- progress ----


@pytest.mark.parametrize(
    "completed, total, expected",
    [
        (0, 4, 0),
        (1, 3, 33),
        (2, 3, 67),
        (1, 8, 13),
        (3, 8, 38),
        (4, 4, 100),
        (5, 4, 100),
        (0, 0, 0),
        (3, 0, 0),
    ],
)
def test_percent_complete(completed: int, total: int, expected: int) -> None:
    assert percent_complete(completed, total) == expected


# ---- download token ----


def test_download_token_remaining_and_expiry() -> None:
    token = DownloadToken(
        product_id=None,  # type: ignore[arg-type]
        token="t",
        expires_at=100,
        max_downloads=5,
        downloads_used=7,
    )
    assert token.downloads_remaining == 0
    assert not token.is_expired(99)
    assert token.is_expired(100)


def test_user_display_name_falls_back_to_email() -> None:
    assert User.new(email=" Grace@Example.com ").display_name == "grace"
    assert User.new(email="g@example.com", name="Grace").display_name == "Grace"
