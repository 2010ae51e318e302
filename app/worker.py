"""Background worker process.

RUN:  python -m app.worker

Same image as the API, different command:
  api:    uvicorn app.main:app --host 0.0.0.0 --port 8000
  worker: python -m app.worker

THE WORKER LOOP
----------------
  1. Poll every registered queue (round-robin)
  2. Dequeue one task at a time
  3. Dispatch it to the registered handler
  4. On failure: requeue with attempts + 1, or dead-letter once
     TASK_MAX_ATTEMPTS is reached

Errors that another attempt cannot fix (unknown enrollment, course not
completed, malformed payload) are dead-lettered on the first try.
Everything else, DependencyFailure included, is retried.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Coroutine
from typing import Any
from uuid import UUID

from app.core.config import SETTINGS
from app.core.errors import DependencyFailure, PipelineError
from app.core.logging import setup_logging
from app.core.metrics import QUEUE_DEPTH, TASKS_PROCESSED
from app.services import blob_storage as blobs
from app.services import email_client as emails
from app.services.certificate_issuer import CertificateIssuer
from app.services.task_queue import (
    CERTIFICATE_ISSUANCE,
    EMAIL_DISPATCH,
    TaskQueue,
    task_queue,
)

TaskHandler = Callable[[dict], Coroutine[Any, Any, None]]

logger = logging.getLogger("worker")


# ---------------------------------------------------------------------------
# Handler registry
# ---------------------------------------------------------------------------

HANDLERS: dict[str, TaskHandler] = {}


def register_handler(queue: str):
    """Decorator: register a coroutine as the handler for a queue."""

    def decorator(func):
        HANDLERS[queue] = func
        return func

    return decorator


# ---------------------------------------------------------------------------
# Task handlers
# ---------------------------------------------------------------------------


@register_handler(CERTIFICATE_ISSUANCE)
async def handle_certificate_issuance(payload: dict) -> None:
    """Issue the certificate for a completed (student, course) pair."""
    issuer = CertificateIssuer(blobs.blob_storage, task_queue)
    await issuer.issue(UUID(payload["student_id"]), UUID(payload["course_id"]))


@register_handler(EMAIL_DISPATCH)
async def handle_email_dispatch(payload: dict) -> None:
    await emails.email_client.send(emails.EmailMessage.from_payload(payload))


# ---------------------------------------------------------------------------
# Processing
# ---------------------------------------------------------------------------


def _is_permanent(exc: Exception) -> bool:
    if isinstance(exc, DependencyFailure):
        return False
    return isinstance(exc, (PipelineError, KeyError, ValueError))


async def process_one(
    queue_name: str,
    *,
    queue: TaskQueue | None = None,
    max_attempts: int | None = None,
    timeout: int = 1,
) -> bool:
    """Run at most one task from ``queue_name``.  False when it was empty."""
    queue = queue or task_queue
    max_attempts = max_attempts or SETTINGS.task_max_attempts

    task = await queue.dequeue(queue_name, timeout=timeout)
    if task is None:
        return False

    log_extra = {"task_id": task.id, "queue": queue_name}
    handler = HANDLERS[queue_name]
    try:
        await handler(task.payload)
    except Exception as e:
        attempt = task.attempts + 1
        if _is_permanent(e) or attempt >= max_attempts:
            await queue.dead_letter(task)
            TASKS_PROCESSED.labels(queue=queue_name, result="dead_lettered").inc()
            logger.exception(
                "Task %s on [%s] dead-lettered after %d attempt(s)",
                task.id,
                queue_name,
                attempt,
                extra=log_extra,
            )
        else:
            await queue.requeue(task)
            TASKS_PROCESSED.labels(queue=queue_name, result="retried").inc()
            logger.warning(
                "Task %s on [%s] failed (attempt %d/%d), requeued: %s",
                task.id,
                queue_name,
                attempt,
                max_attempts,
                e,
                extra=log_extra,
            )
        return True

    TASKS_PROCESSED.labels(queue=queue_name, result="ok").inc()
    logger.info("Task %s on [%s] completed", task.id, queue_name, extra=log_extra)
    return True


async def run_worker() -> None:
    """Poll all registered queues and dispatch tasks to handlers."""
    queues = list(HANDLERS.keys())
    logger.info("Worker started, listening on queues: %s", queues)

    while True:
        for queue_name in queues:
            await process_one(queue_name)
            QUEUE_DEPTH.labels(queue_name=queue_name).set(
                await task_queue.queue_length(queue_name)
            )


if __name__ == "__main__":
    setup_logging(SETTINGS.log_level, json_format=SETTINGS.log_json)
    asyncio.run(run_worker())
