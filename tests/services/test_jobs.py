"""Jobs are published only after commit, and publishing never raises."""

from __future__ import annotations

import asyncio

import pytest

from app.services.jobs import JobDispatcher
from app.services.task_queue import (
    CERTIFICATE_ISSUANCE,
    EMAIL_DISPATCH,
    InMemoryTaskQueue,
    Task,
)
from app.services.work import work_scope
from tests.conftest import queued


class _FlakyQueue(InMemoryTaskQueue):
    """Fails every enqueue to one queue name."""

    def __init__(self, broken: str) -> None:
        super().__init__()
        self._broken = broken

    async def enqueue(self, queue: str, payload: dict) -> Task:
        if queue == self._broken:
            raise ConnectionError("redis down")
        return await super().enqueue(queue, payload)


def test_deferred_jobs_wait_for_flush() -> None:
    queue = InMemoryTaskQueue()
    jobs = JobDispatcher(queue)
    jobs.defer(EMAIL_DISPATCH, {"to": "a@example.com"})

    assert asyncio.run(queue.queue_length(EMAIL_DISPATCH)) == 0
    assert asyncio.run(jobs.flush()) == 1
    assert asyncio.run(queue.queue_length(EMAIL_DISPATCH)) == 1
    assert jobs.pending == ()


def test_discard_drops_pending_jobs() -> None:
    queue = InMemoryTaskQueue()
    jobs = JobDispatcher(queue)
    jobs.defer(CERTIFICATE_ISSUANCE, {"student_id": "s", "course_id": "c"})
    jobs.discard()

    assert asyncio.run(jobs.flush()) == 0
    assert asyncio.run(queue.queue_length(CERTIFICATE_ISSUANCE)) == 0


def test_failed_publish_is_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    queue = _FlakyQueue(broken=EMAIL_DISPATCH)
    jobs = JobDispatcher(queue)
    jobs.defer(EMAIL_DISPATCH, {"to": "a@example.com"})
    jobs.defer(CERTIFICATE_ISSUANCE, {"student_id": "s", "course_id": "c"})

    published = asyncio.run(jobs.flush())

    assert published == 1
    assert asyncio.run(queue.queue_length(CERTIFICATE_ISSUANCE)) == 1
    assert "Failed to publish job" in caplog.text


def test_work_scope_publishes_after_success() -> None:
    async def scenario():
        async with work_scope() as work:
            work.jobs.defer(EMAIL_DISPATCH, {"to": "a@example.com"})
            assert queued(EMAIL_DISPATCH) == []

    asyncio.run(scenario())
    assert queued(EMAIL_DISPATCH) == [{"to": "a@example.com"}]


def test_work_scope_drops_jobs_on_error() -> None:
    async def scenario():
        async with work_scope() as work:
            work.jobs.defer(EMAIL_DISPATCH, {"to": "a@example.com"})
            raise RuntimeError("boom")

    with pytest.raises(RuntimeError):
        asyncio.run(scenario())
    assert queued(EMAIL_DISPATCH) == []
