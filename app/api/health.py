"""Health, readiness and metrics endpoints.

LIVENESS vs READINESS
---------------------
  /health (liveness):
    "Is this process alive?"  Always 200 while the process can answer;
    the body reports each dependency and the background queue depths so
    an operator can see a backlog building up.

  /ready (readiness):
    "Can this instance take traffic?"  The database holds the ledger, so
    when one is configured and unreachable the instance answers 503 and
    the load balancer stops routing to it.  Redis is not critical: jobs
    that fail to publish are logged and can be re-driven.

  /metrics:
    Prometheus text exposition of everything in app.core.metrics.
    Restrict it at the ingress in production.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Response, status
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from app.core.metrics import QUEUE_DEPTH
from app.db import engine as db_engine
from app.db.redis import redis_pool
from app.services import task_queue as queues

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

_WATCHED_QUEUES = (queues.CERTIFICATE_ISSUANCE, queues.EMAIL_DISPATCH)


async def _queue_depths() -> dict[str, int]:
    depths: dict[str, int] = {}
    for name in _WATCHED_QUEUES:
        for queue_name in (name, queues.dead_letter_name(name)):
            depth = await queues.task_queue.queue_length(queue_name)
            QUEUE_DEPTH.labels(queue_name=queue_name).set(depth)
            depths[queue_name] = depth
    return depths


@router.get("/health")
async def health() -> dict:
    """Liveness probe plus dependency status.

    Returns 200 even when degraded; the status field carries the verdict.
    """
    checks: dict[str, str] = {}
    overall = "ok"

    if redis_pool is not None:
        try:
            await redis_pool.ping()  # type: ignore[misc]
            checks["redis"] = "ok"
        except Exception:
            logger.warning("Redis ping failed during health check")
            checks["redis"] = "degraded"
            overall = "degraded"
    else:
        checks["redis"] = "not_configured"

    if db_engine.engine is not None:
        if await db_engine.ping_database():
            checks["database"] = "ok"
        else:
            checks["database"] = "degraded"
            overall = "degraded"
    else:
        checks["database"] = "not_configured"

    try:
        depths = await _queue_depths()
    except Exception:
        logger.warning("Could not read task queue depth")
        depths = {}
        overall = "degraded"

    return {"status": overall, "checks": checks, "queues": depths}


@router.get("/ready")
async def ready() -> Response:
    """Readiness probe: 503 when the configured database is unreachable."""
    if db_engine.engine is not None and not await db_engine.ping_database():
        return Response(status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return Response(status_code=status.HTTP_200_OK)


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
