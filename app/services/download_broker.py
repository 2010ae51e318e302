"""Secure access to purchased digital files.

resolve_download() lists what a paid order can fetch: one entry per line
item with its files and the token's remaining quota.  Private files get
a signed URL valid for SIGNED_URL_TTL_SECONDS (never past the token's own
expiry); public files keep their direct URL.  Once a token is expired or
used up its private files are left out of the listing.  Listing never
consumes quota.

record_download() meters one download against a token.  The increment
is a single conditional update (unexpired and below quota), so parallel
requests can never push downloads_used past max_downloads.

Both read in a short unit of work and talk to blob storage outside it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass
from uuid import UUID

from app.core.clock import Clock, utc_now
from app.core.config import SETTINGS, Settings
from app.core.errors import Expired, Forbidden, NotFound, QuotaExceeded
from app.core.metrics import DOWNLOADS
from app.models.order import DownloadToken, PaymentStatus
from app.models.principal import Principal
from app.models.product import Product, Visibility
from app.repos.registry import Repos, unit_of_work
from app.services.blob_storage import BlobStorage

logger = logging.getLogger(__name__)

UnitOfWork = Callable[[], AbstractAsyncContextManager[Repos]]


@dataclass(frozen=True, slots=True)
class FileLink:
    name: str
    url: str
    url_expires_at: int | None = None


@dataclass(frozen=True, slots=True)
class DownloadLink:
    product_id: UUID
    title: str
    files: tuple[FileLink, ...]
    token: str | None
    expires_at: int | None
    downloads_remaining: int


class DownloadBroker:
    def __init__(
        self,
        blob_storage: BlobStorage,
        *,
        uow: UnitOfWork = unit_of_work,
        settings: Settings = SETTINGS,
        clock: Clock = utc_now,
    ) -> None:
        self._blob = blob_storage
        self._uow = uow
        self._settings = settings
        self._clock = clock

    async def resolve_download(
        self, order_id: UUID, requester: Principal
    ) -> list[DownloadLink]:
        async with self._uow() as repos:
            order = await repos.digital_orders.get(order_id)
            if order is None:
                raise NotFound("order not found")
            if not requester.owns_or_admin(order.buyer_id):
                raise Forbidden("not authorized")
            if order.payment_status != PaymentStatus.PAID:
                raise Forbidden("order is not paid")
            products: dict[UUID, Product | None] = {
                item.product_id: await repos.catalog.get_product(item.product_id)
                for item in order.line_items
            }

        now = self._clock()
        links = []
        for item in order.line_items:
            product = products[item.product_id]
            token = order.token_for(item.product_id)
            usable = token is not None and _grants_access(token, now)
            files = []
            for f in product.files if product else ():
                if f.visibility != Visibility.PRIVATE:
                    files.append(FileLink(name=f.name, url=f.url))
                elif usable:
                    # Never outlive the token itself.
                    url_expires_at = min(
                        now + self._settings.signed_url_ttl_seconds, token.expires_at
                    )
                    url = await self._blob.sign_url(f.object_key, url_expires_at)
                    files.append(
                        FileLink(name=f.name, url=url, url_expires_at=url_expires_at)
                    )
            if token is not None and not usable:
                logger.info(
                    "Withholding private files of product=%s on order=%s: "
                    "token expired or used up",
                    item.product_id,
                    order_id,
                    extra={"order_id": str(order_id)},
                )
            links.append(
                DownloadLink(
                    product_id=item.product_id,
                    title=product.title if product else item.title_snapshot,
                    files=tuple(files),
                    token=token.token if token else None,
                    expires_at=token.expires_at if token else None,
                    downloads_remaining=token.downloads_remaining if token else 0,
                )
            )
        logger.info(
            "Resolved %d download link(s) for order=%s",
            len(links),
            order_id,
            extra={"order_id": str(order_id)},
        )
        return links

    async def record_download(self, token: str, requester: Principal) -> DownloadToken:
        now = self._clock()
        async with self._uow() as repos:
            order = await repos.digital_orders.get_by_token(token)
            if order is None:
                raise NotFound("download token not found")
            if not requester.owns_or_admin(order.buyer_id):
                raise Forbidden("not authorized")
            current = next(t for t in order.download_tokens if t.token == token)
            if current.is_expired(now):
                DOWNLOADS.labels(outcome="expired").inc()
                raise Expired("download link expired")

            consumed = await repos.digital_orders.consume_download(token, now)
            if consumed is None:
                DOWNLOADS.labels(outcome="quota_exceeded").inc()
                logger.warning(
                    "Download quota exhausted for order=%s",
                    order.id,
                    extra={"order_id": str(order.id)},
                )
                raise QuotaExceeded("download limit reached")

        DOWNLOADS.labels(outcome="ok").inc()
        logger.info(
            "Download recorded for order=%s (%d left)",
            order.id,
            consumed.downloads_remaining,
            extra={"order_id": str(order.id)},
        )
        return consumed


def _grants_access(token: DownloadToken, now: int) -> bool:
    return not token.is_expired(now) and token.downloads_remaining > 0
