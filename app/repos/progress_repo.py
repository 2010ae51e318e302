from __future__ import annotations

from typing import Protocol
from uuid import UUID

from app.models.progress import Progress


class ProgressRepo(Protocol):
    async def get(self, student_id: UUID, course_id: UUID) -> Progress | None: ...
    async def record_lesson(
        self,
        student_id: UUID,
        course_id: UUID,
        lesson_id: UUID,
        completed: bool,
        now: int,
    ) -> Progress: ...


class InMemoryProgressRepo:
    def __init__(self) -> None:
        self._by_pair: dict[tuple[UUID, UUID], Progress] = {}

    async def get(self, student_id: UUID, course_id: UUID) -> Progress | None:
        return self._by_pair.get((student_id, course_id))

    async def record_lesson(
        self,
        student_id: UUID,
        course_id: UUID,
        lesson_id: UUID,
        completed: bool,
        now: int,
    ) -> Progress:
        """Add or remove lesson_id from the completed set (created on first
        use) and mark it as the last watched lesson."""
        current = self._by_pair.get((student_id, course_id))
        lessons = current.completed_lesson_ids if current else frozenset()
        if completed:
            lessons = lessons | {lesson_id}
        else:
            lessons = lessons - {lesson_id}
        updated = Progress(
            student_id=student_id,
            course_id=course_id,
            completed_lesson_ids=lessons,
            last_watched_lesson_id=lesson_id,
        )
        self._by_pair[(student_id, course_id)] = updated
        return updated
