from __future__ import annotations

import asyncio
import dataclasses
from collections.abc import AsyncIterator
from contextlib import AbstractAsyncContextManager, asynccontextmanager
from typing import Protocol
from uuid import UUID

from app.models.progress import Enrollment


class EnrollmentRepo(Protocol):
    async def get(self, student_id: UUID, course_id: UUID) -> Enrollment | None: ...
    async def list_for_student(self, student_id: UUID) -> list[Enrollment]: ...
    async def list_for_course(self, course_id: UUID) -> list[Enrollment]: ...
    async def list_completed(self) -> list[Enrollment]: ...
    async def add_if_absent(self, enrollment: Enrollment) -> tuple[Enrollment, bool]: ...
    async def save_progress(
        self, student_id: UUID, course_id: UUID, percent: int, completed: bool
    ) -> Enrollment | None: ...
    def lock_pair(
        self, student_id: UUID, course_id: UUID
    ) -> AbstractAsyncContextManager[None]: ...


class InMemoryEnrollmentRepo:
    def __init__(self) -> None:
        self._by_pair: dict[tuple[UUID, UUID], Enrollment] = {}
        # pair -> [lock, holders]; entries are dropped once nobody holds
        # or waits on them.
        self._locks: dict[tuple[UUID, UUID], list] = {}

    async def get(self, student_id: UUID, course_id: UUID) -> Enrollment | None:
        return self._by_pair.get((student_id, course_id))

    async def list_for_student(self, student_id: UUID) -> list[Enrollment]:
        found = [e for e in self._by_pair.values() if e.student_id == student_id]
        return sorted(found, key=lambda e: e.created_at, reverse=True)

    async def list_for_course(self, course_id: UUID) -> list[Enrollment]:
        return [e for e in self._by_pair.values() if e.course_id == course_id]

    async def list_completed(self) -> list[Enrollment]:
        return [e for e in self._by_pair.values() if e.completed]

    async def add_if_absent(self, enrollment: Enrollment) -> tuple[Enrollment, bool]:
        key = (enrollment.student_id, enrollment.course_id)
        existing = self._by_pair.get(key)
        if existing is not None:
            return existing, False
        self._by_pair[key] = enrollment
        return enrollment, True

    async def save_progress(
        self, student_id: UUID, course_id: UUID, percent: int, completed: bool
    ) -> Enrollment | None:
        current = self._by_pair.get((student_id, course_id))
        if current is None:
            return None
        updated = dataclasses.replace(
            current, progress_percent=percent, completed=completed
        )
        self._by_pair[(student_id, course_id)] = updated
        return updated

    @asynccontextmanager
    async def lock_pair(self, student_id: UUID, course_id: UUID) -> AsyncIterator[None]:
        key = (student_id, course_id)
        entry = self._locks.setdefault(key, [asyncio.Lock(), 0])
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._locks[key]
