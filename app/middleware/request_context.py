"""Request context middleware: request ID, caller, and timing.

A purchase touches several log lines across the ledger, the granter and
the job dispatcher.  Each line carries the request_id (and, once the
bearer token has been validated, the user_id) so they can be stitched
back together in the aggregator.

Both values live in ContextVars rather than thread-locals: concurrent
requests share the event loop thread, but each asyncio task gets its
own copy of the context.
"""

from __future__ import annotations

import logging
import time
import uuid
from contextvars import ContextVar

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

request_id_var: ContextVar[str] = ContextVar("request_id", default="-")
user_id_var: ContextVar[str | None] = ContextVar("user_id", default=None)


_base_record_factory = logging.getLogRecordFactory()


def _context_record_factory(*args, **kwargs) -> logging.LogRecord:
    """Stamp the request context onto every LogRecord at creation, so
    records from named loggers carry it too."""
    record = _base_record_factory(*args, **kwargs)
    record.request_id = request_id_var.get()
    record.user_id = user_id_var.get()
    return record


_context_record_factory.installed = True  # type: ignore[attr-defined]
if not getattr(_base_record_factory, "installed", False):
    logging.setLogRecordFactory(_context_record_factory)


def bind_user(user_id: str) -> None:
    """Attach the authenticated caller to the current request's logs."""
    user_id_var.set(user_id)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """Assigns a request ID, times the request and logs one summary line.

    An incoming X-Request-ID header is reused so a caller (or the
    gateway) can correlate; otherwise a UUID is generated.  The ID is
    echoed back on the response.
    """

    async def dispatch(
        self, request: Request, call_next: RequestResponseEndpoint
    ) -> Response:
        req_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request_id_var.set(req_id)
        user_id_var.set(None)

        start = time.monotonic()
        response = await call_next(request)
        duration_ms = round((time.monotonic() - start) * 1000, 1)

        logger.info(
            "%s %s → %d (%.1fms)",
            request.method,
            request.url.path,
            response.status_code,
            duration_ms,
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": duration_ms,
            },
        )

        response.headers["X-Request-ID"] = req_id
        return response
