"""Blob storage for certificates and private product files.

Two operations: ``put`` stores bytes under a key and returns a durable
URL; ``sign_url`` mints a GET URL for a private object that stops
working at ``expires_at`` (epoch seconds).

S3BlobStorage talks to any S3-compatible endpoint through boto3.  boto3
is blocking, so each call runs in a worker thread and is bounded by
COLLABORATOR_TIMEOUT_SECONDS.  Callers must never hold a database
transaction open across these calls.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol, runtime_checkable
from urllib.parse import quote

import boto3
from botocore.config import Config

from app.core.clock import utc_now
from app.core.config import SETTINGS, Settings
from app.core.errors import DependencyFailure
from app.models.product import Visibility

logger = logging.getLogger(__name__)


@runtime_checkable
class BlobStorage(Protocol):
    async def put(
        self,
        data: bytes,
        key: str,
        *,
        visibility: Visibility,
        content_type: str = "application/octet-stream",
    ) -> str: ...
    async def sign_url(self, key: str, expires_at: int) -> str: ...


class InMemoryBlobStorage:
    """Keeps objects in a dict; URLs use the memory:// scheme."""

    def __init__(self) -> None:
        self.objects: dict[str, tuple[bytes, Visibility, str]] = {}
        self.fail_next = 0  # number of upcoming put() calls that raise

    async def put(
        self,
        data: bytes,
        key: str,
        *,
        visibility: Visibility,
        content_type: str = "application/octet-stream",
    ) -> str:
        # Yield once, like a real upload, so concurrent callers interleave.
        await asyncio.sleep(0)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise DependencyFailure("blob upload failed", dependency="blob")
        self.objects[key] = (data, visibility, content_type)
        return f"memory://blobs/{quote(key)}"

    async def sign_url(self, key: str, expires_at: int) -> str:
        return f"memory://blobs/{quote(key)}?expires={expires_at}"


class S3BlobStorage:
    def __init__(self, settings: Settings) -> None:
        self._bucket = settings.blob_bucket
        self._public_base_url = settings.blob_public_base_url
        self._timeout = settings.collaborator_timeout_seconds
        self._client = boto3.client(
            "s3",
            endpoint_url=settings.blob_endpoint_url,
            region_name=settings.blob_region,
            config=Config(
                s3={"addressing_style": "virtual"},
                connect_timeout=settings.collaborator_timeout_seconds,
                read_timeout=settings.collaborator_timeout_seconds,
                retries={"max_attempts": 2},
            ),
        )

    def _public_url(self, key: str) -> str:
        if self._public_base_url:
            return f"{self._public_base_url.rstrip('/')}/{quote(key)}"
        endpoint = self._client.meta.endpoint_url.rstrip("/")
        return f"{endpoint}/{self._bucket}/{quote(key)}"

    async def _call(self, what: str, func, /, **kwargs):
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(func, **kwargs), timeout=self._timeout
            )
        except TimeoutError:
            logger.error("Blob %s timed out after %ss", what, self._timeout)
            raise DependencyFailure("blob storage timed out", dependency="blob") from None
        except Exception as e:
            logger.error("Blob %s failed: %s", what, e)
            raise DependencyFailure("blob storage unavailable", dependency="blob") from e

    async def put(
        self,
        data: bytes,
        key: str,
        *,
        visibility: Visibility,
        content_type: str = "application/octet-stream",
    ) -> str:
        extra = {"ContentType": content_type}
        if visibility == Visibility.PUBLIC:
            extra["ACL"] = "public-read"
        await self._call(
            "put",
            self._client.put_object,
            Bucket=self._bucket,
            Key=key,
            Body=data,
            **extra,
        )
        logger.info("Stored blob key=%s bytes=%d", key, len(data))
        if visibility == Visibility.PUBLIC:
            return self._public_url(key)
        return f"s3://{self._bucket}/{key}"

    async def sign_url(self, key: str, expires_at: int) -> str:
        return await self._call(
            "sign",
            self._client.generate_presigned_url,
            ClientMethod="get_object",
            Params={"Bucket": self._bucket, "Key": key.lstrip("/")},
            ExpiresIn=max(1, expires_at - utc_now()),
        )


def build_blob_storage(settings: Settings) -> BlobStorage:
    if settings.blob_bucket:
        return S3BlobStorage(settings)
    return InMemoryBlobStorage()


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

blob_storage: BlobStorage = build_blob_storage(SETTINGS)
