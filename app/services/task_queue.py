"""Background task queue using Redis lists.

WHY BACKGROUND PROCESSING?
----------------------------
Rendering a certificate PDF, uploading it to blob storage and sending a
purchase email are slow and depend on services we do not control.  None
of them should decide whether a payment update or a lesson toggle
succeeds.  So:
  1. The API records the durable fact (order paid, course completed),
     commits, and only then ENQUEUES the follow-up work.
  2. A separate WORKER process dequeues and runs it, retrying on
     failure and parking exhausted tasks on a dead-letter list.

THE PRODUCER/CONSUMER PATTERN
-------------------------------
  Producer (API):    LPUSH task onto a Redis list → returns immediately
  Consumer (Worker): BRPOP from the list → processes task → loops

  HEAD-in, TAIL-out = FIFO: tasks run in the order they were enqueued.

RETRIES AND DEAD LETTERS
-------------------------
  Each task carries an ``attempts`` counter.  A failed task is pushed
  back with attempts + 1 until the worker's limit, then LPUSHed onto
  ``dead:<queue>`` for an operator to inspect.  Nothing consumes the
  dead-letter lists automatically.

DELIVERY GUARANTEE
-------------------
  AT-MOST-ONCE per pop: a worker that crashes mid-task loses that task.
  Every handler is idempotent ("check first, then act"), and the admin
  retry-missing endpoint re-enqueues certificates for completed
  enrollments that have none, which covers the lost-task case.
"""

from __future__ import annotations

import dataclasses
import json
import uuid
from dataclasses import dataclass
from typing import Protocol, runtime_checkable

from app.db.redis import redis_pool

CERTIFICATE_ISSUANCE = "certificate_issuance"
EMAIL_DISPATCH = "email_dispatch"


@dataclass(frozen=True, slots=True)
class Task:
    """A unit of background work.

    id:       Unique identifier for tracking and logging.
    queue:    Which queue this task belongs to.
    payload:  JSON-serializable data the handler needs.
    attempts: How many times a worker has already tried it.
    """

    id: str
    queue: str
    payload: dict
    attempts: int = 0


def dead_letter_name(queue: str) -> str:
    return f"dead:{queue}"


@runtime_checkable
class TaskQueue(Protocol):
    async def enqueue(self, queue: str, payload: dict) -> Task: ...
    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None: ...
    async def requeue(self, task: Task) -> Task: ...
    async def dead_letter(self, task: Task) -> None: ...
    async def queue_length(self, queue: str) -> int: ...


class InMemoryTaskQueue:
    """In-memory task queue for dev and tests; no Redis needed."""

    def __init__(self) -> None:
        self._queues: dict[str, list[Task]] = {}

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        self._queues.setdefault(queue, []).append(task)
        return task

    async def dequeue(self, queue: str, timeout: int = 0) -> Task | None:
        tasks = self._queues.get(queue, [])
        if tasks:
            return tasks.pop(0)  # FIFO: remove from front
        return None

    async def requeue(self, task: Task) -> Task:
        retried = dataclasses.replace(task, attempts=task.attempts + 1)
        self._queues.setdefault(task.queue, []).append(retried)
        return retried

    async def dead_letter(self, task: Task) -> None:
        self._queues.setdefault(dead_letter_name(task.queue), []).append(task)

    async def queue_length(self, queue: str) -> int:
        return len(self._queues.get(queue, []))


class RedisTaskQueue:
    """Redis-backed task queue using LPUSH/BRPOP."""

    _PREFIX = "tasks:"

    def __init__(self, redis_client) -> None:
        self._redis = redis_client

    async def _push(self, list_name: str, task: Task) -> None:
        task_json = json.dumps(
            {
                "id": task.id,
                "queue": task.queue,
                "payload": task.payload,
                "attempts": task.attempts,
            }
        )
        # LPUSH: add to the LEFT (head) of the list
        # Workers BRPOP from the RIGHT (tail) → FIFO order
        await self._redis.lpush(f"{self._PREFIX}{list_name}", task_json)

    async def enqueue(self, queue: str, payload: dict) -> Task:
        task = Task(id=str(uuid.uuid4()), queue=queue, payload=payload)
        await self._push(queue, task)
        return task

    async def dequeue(self, queue: str, timeout: int = 5) -> Task | None:
        # BRPOP waits up to `timeout` seconds; None means no task.
        result = await self._redis.brpop(f"{self._PREFIX}{queue}", timeout=timeout)
        if result is None:
            return None
        _, task_json = result
        data = json.loads(task_json)
        return Task(**data)

    async def requeue(self, task: Task) -> Task:
        retried = dataclasses.replace(task, attempts=task.attempts + 1)
        await self._push(task.queue, retried)
        return retried

    async def dead_letter(self, task: Task) -> None:
        await self._push(dead_letter_name(task.queue), task)

    async def queue_length(self, queue: str) -> int:
        return await self._redis.llen(f"{self._PREFIX}{queue}")


# ---------------------------------------------------------------------------
# Module-level singleton
# ---------------------------------------------------------------------------

if redis_pool is not None:
    task_queue: TaskQueue = RedisTaskQueue(redis_pool)
else:
    task_queue = InMemoryTaskQueue()
