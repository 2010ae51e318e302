"""Transactional email.

Messages are structured (template name + data) so the queue payload stays
small and the wording lives in one place.  The worker renders and sends;
nothing on the request path ever waits on an email provider.

Providers:
  console  logs the message and keeps it in an outbox (dev, tests)
  ses      Amazon SES via boto3
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Protocol, runtime_checkable

import boto3

from app.core.config import SETTINGS, Settings
from app.core.errors import DependencyFailure, InvalidInput

logger = logging.getLogger(__name__)

COURSE_PURCHASE = "course_purchase_confirmation"
PRODUCT_PURCHASE = "product_purchase_confirmation"
CERTIFICATE_ISSUED = "certificate_issued"

_TEMPLATES: dict[str, str] = {
    COURSE_PURCHASE: (
        "Hi {name},\n\nYour enrollment in \"{course_title}\" is confirmed. "
        "You can start learning right away.\n\nOrder: {order_id}\n"
    ),
    PRODUCT_PURCHASE: (
        "Hi {name},\n\nThank you for your purchase. Your downloads are "
        "available from your order page for {ttl_days} days, up to "
        "{max_downloads} downloads per item.\n\nOrder: {order_id}\n"
        "Items: {items}\n"
    ),
    CERTIFICATE_ISSUED: (
        "Hi {name},\n\nCongratulations on completing \"{course_title}\"! "
        "Your certificate is ready: {certificate_url}\n"
    ),
}


@dataclass(frozen=True, slots=True)
class EmailMessage:
    to: str
    subject: str
    template: str
    template_data: dict = field(default_factory=dict)

    def to_payload(self) -> dict:
        return {
            "to": self.to,
            "subject": self.subject,
            "template": self.template,
            "template_data": self.template_data,
        }

    @staticmethod
    def from_payload(payload: dict) -> EmailMessage:
        try:
            return EmailMessage(
                to=payload["to"],
                subject=payload["subject"],
                template=payload["template"],
                template_data=dict(payload.get("template_data") or {}),
            )
        except KeyError as e:
            raise InvalidInput(f"email payload missing {e.args[0]}") from None


def render_body(message: EmailMessage) -> str:
    template = _TEMPLATES.get(message.template)
    if template is None:
        raise InvalidInput(f"unknown email template: {message.template}")
    try:
        return template.format(**message.template_data)
    except KeyError as e:
        raise InvalidInput(
            f"template {message.template} missing field {e.args[0]}"
        ) from None


@runtime_checkable
class EmailClient(Protocol):
    async def send(self, message: EmailMessage) -> None: ...


class ConsoleEmailClient:
    """Logs instead of sending.  ``outbox`` keeps every rendered message."""

    def __init__(self) -> None:
        self.outbox: list[tuple[EmailMessage, str]] = []
        self.fail_next = 0

    async def send(self, message: EmailMessage) -> None:
        body = render_body(message)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise DependencyFailure("email provider unavailable", dependency="email")
        self.outbox.append((message, body))
        logger.info("Email [%s] to %s: %s", message.template, message.to, message.subject)


class SesEmailClient:
    def __init__(self, settings: Settings) -> None:
        self._sender = settings.email_from
        self._timeout = settings.collaborator_timeout_seconds
        self._client = boto3.client("ses", region_name=settings.email_region)

    async def send(self, message: EmailMessage) -> None:
        body = render_body(message)
        params = {
            "Source": self._sender,
            "Destination": {"ToAddresses": [message.to]},
            "Message": {
                "Subject": {"Data": message.subject, "Charset": "UTF-8"},
                "Body": {"Text": {"Data": body, "Charset": "UTF-8"}},
            },
        }
        try:
            response = await asyncio.wait_for(
                asyncio.to_thread(self._client.send_email, **params),
                timeout=self._timeout,
            )
        except TimeoutError:
            logger.error("SES send timed out after %ss", self._timeout)
            raise DependencyFailure("email provider timed out", dependency="email") from None
        except Exception as e:
            logger.error("SES send failed: %s", e)
            raise DependencyFailure("email provider unavailable", dependency="email") from e
        logger.info("SES email sent: %s to %s", response.get("MessageId", ""), message.to)


def build_email_client(settings: Settings) -> EmailClient:
    if settings.email_provider == "ses":
        return SesEmailClient(settings)
    return ConsoleEmailClient()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

email_client: EmailClient = build_email_client(SETTINGS)
