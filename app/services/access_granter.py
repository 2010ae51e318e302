"""Turn a paid ledger entry into access.

Course order  → one Enrollment for (buyer, course)
Digital order → one DownloadToken per line item

on_paid() is safe to call any number of times for the same order: the
enrollment insert is insert-if-absent on the (student, course) pair and
tokens are attached only to an order that has none.  Only the call that
actually created the grant queues a confirmation email.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from typing import Literal
from uuid import UUID

from app.core.clock import Clock, utc_now
from app.core.config import SETTINGS, Settings
from app.core.metrics import GRANTS
from app.models.order import DigitalOrder, DownloadToken, Order
from app.models.progress import Enrollment
from app.repos.registry import Repos
from app.services import email_client as emails
from app.services.jobs import JobDispatcher
from app.services.task_queue import EMAIL_DISPATCH

logger = logging.getLogger(__name__)

_SECONDS_PER_DAY = 86_400


@dataclass(frozen=True, slots=True)
class Grant:
    kind: Literal["enrollment", "download_tokens"]
    created: bool
    enrollment: Enrollment | None = None
    download_tokens: tuple[DownloadToken, ...] = ()


def new_download_token() -> str:
    """24 random bytes, hex encoded."""
    return secrets.token_hex(24)


class AccessGranter:
    def __init__(
        self,
        repos: Repos,
        jobs: JobDispatcher,
        *,
        settings: Settings = SETTINGS,
        clock: Clock = utc_now,
    ) -> None:
        self._repos = repos
        self._jobs = jobs
        self._settings = settings
        self._clock = clock

    async def on_paid(self, order: Order | DigitalOrder) -> Grant:
        if isinstance(order, DigitalOrder):
            return await self._grant_downloads(order)
        return await self._grant_enrollment(order)

    async def _grant_enrollment(self, order: Order) -> Grant:
        enrollment, created = await self._repos.enrollments.add_if_absent(
            Enrollment.new(
                student_id=order.buyer_id,
                course_id=order.course_id,
                created_at=self._clock(),
            )
        )
        if not created:
            logger.info(
                "Enrollment already exists for order=%s",
                order.id,
                extra={"order_id": str(order.id)},
            )
            return Grant(kind="enrollment", created=False, enrollment=enrollment)

        GRANTS.labels(kind="enrollment").inc()
        logger.info(
            "Enrolled student=%s in course=%s (order=%s)",
            order.buyer_id,
            order.course_id,
            order.id,
            extra={
                "order_id": str(order.id),
                "student_id": str(order.buyer_id),
                "course_id": str(order.course_id),
            },
        )
        course = await self._repos.catalog.get_course(order.course_id)
        await self._queue_email(
            order.buyer_id,
            None,
            subject="Enrollment confirmed",
            template=emails.COURSE_PURCHASE,
            data={
                "course_title": course.title if course else "",
                "order_id": str(order.id),
            },
        )
        return Grant(kind="enrollment", created=True, enrollment=enrollment)

    async def _grant_downloads(self, order: DigitalOrder) -> Grant:
        if order.download_tokens:
            return Grant(
                kind="download_tokens", created=False, download_tokens=order.download_tokens
            )

        expires_at = (
            self._clock() + self._settings.download_token_ttl_days * _SECONDS_PER_DAY
        )
        tokens = tuple(
            DownloadToken(
                product_id=item.product_id,
                token=new_download_token(),
                expires_at=expires_at,
                max_downloads=self._settings.download_max_count,
            )
            for item in order.line_items
        )
        stored, created = await self._repos.digital_orders.attach_tokens(order.id, tokens)
        if not created:
            return Grant(
                kind="download_tokens", created=False, download_tokens=stored.download_tokens
            )

        GRANTS.labels(kind="download_tokens").inc()
        logger.info(
            "Issued %d download token(s) for digital order=%s",
            len(tokens),
            order.id,
            extra={"order_id": str(order.id)},
        )
        contact = order.buyer_info.email if order.buyer_info else None
        await self._queue_email(
            order.buyer_id,
            contact,
            subject="Your downloads are ready",
            template=emails.PRODUCT_PURCHASE,
            data={
                "order_id": str(order.id),
                "items": ", ".join(item.title_snapshot for item in order.line_items),
                "ttl_days": self._settings.download_token_ttl_days,
                "max_downloads": self._settings.download_max_count,
            },
        )
        return Grant(kind="download_tokens", created=True, download_tokens=tokens)

    async def _queue_email(
        self,
        user_id: UUID,
        address: str | None,
        *,
        subject: str,
        template: str,
        data: dict,
    ) -> None:
        user = await self._repos.users.get_by_id(user_id)
        to = address or (user.email if user else None)
        if not to:
            logger.warning("No email address for user=%s, skipping %s", user_id, template)
            return
        message = emails.EmailMessage(
            to=to,
            subject=subject,
            template=template,
            template_data={"name": user.display_name if user else to, **data},
        )
        self._jobs.defer(EMAIL_DISPATCH, message.to_payload())
