"""One request's worth of pipeline work: a unit of work plus its jobs.

    async with work_scope() as work:
        order = await work.ledger().set_order_status(...)
    # committed; deferred jobs (emails, certificates) published here

On an exception the transaction rolls back and deferred jobs are dropped,
so nothing is published for state that was never committed.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from app.repos.registry import Repos, unit_of_work
from app.services import task_queue as queues
from app.services.access_granter import AccessGranter
from app.services.cart_service import CartService
from app.services.jobs import JobDispatcher
from app.services.ledger import EntitlementLedger
from app.services.progress_tracker import ProgressTracker


@dataclass(frozen=True, slots=True)
class Work:
    repos: Repos
    jobs: JobDispatcher

    def ledger(self) -> EntitlementLedger:
        return EntitlementLedger(self.repos, AccessGranter(self.repos, self.jobs))

    def tracker(self) -> ProgressTracker:
        return ProgressTracker(self.repos, self.jobs)

    def carts(self) -> CartService:
        return CartService(self.repos)


@asynccontextmanager
async def work_scope() -> AsyncIterator[Work]:
    jobs = JobDispatcher(queues.task_queue)
    try:
        async with unit_of_work() as repos:
            yield Work(repos=repos, jobs=jobs)
    except BaseException:
        jobs.discard()
        raise
    await jobs.flush()
