"""Publish background jobs only after the database commit.

Services call ``jobs.defer(queue, payload)`` while their unit of work is
open.  Nothing reaches the task queue until ``flush()`` runs after the
commit, so a rolled-back transaction never leaves a job behind that
refers to rows that do not exist.

Publishing is fire-and-forget: a failed enqueue is logged and counted,
never raised.  The durable state is already committed and every job is
idempotent, so the admin retry path can re-drive anything lost here.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from app.core.metrics import JOBS_PUBLISHED
from app.services.task_queue import TaskQueue

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class PendingJob:
    queue: str
    payload: dict


class JobDispatcher:
    def __init__(self, queue: TaskQueue) -> None:
        self._queue = queue
        self._pending: list[PendingJob] = []

    @property
    def pending(self) -> tuple[PendingJob, ...]:
        return tuple(self._pending)

    def defer(self, queue: str, payload: dict) -> None:
        self._pending.append(PendingJob(queue=queue, payload=payload))

    def discard(self) -> None:
        if self._pending:
            logger.info("Discarding %d unpublished job(s)", len(self._pending))
        self._pending.clear()

    async def flush(self) -> int:
        """Enqueue every deferred job; returns how many were published."""
        jobs, self._pending = self._pending, []
        published = 0
        for job in jobs:
            try:
                task = await self._queue.enqueue(job.queue, job.payload)
            except Exception:
                JOBS_PUBLISHED.labels(queue=job.queue, result="error").inc()
                logger.exception(
                    "Failed to publish job to [%s]",
                    job.queue,
                    extra={"queue": job.queue},
                )
                continue
            JOBS_PUBLISHED.labels(queue=job.queue, result="ok").inc()
            logger.info(
                "Published task %s to [%s]",
                task.id,
                job.queue,
                extra={"task_id": task.id, "queue": job.queue},
            )
            published += 1
        return published
