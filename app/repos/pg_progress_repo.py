"""PostgreSQL implementation of ProgressRepo.

The completed set is the completed_lessons child table; its composite
primary key gives add-to-set semantics for free.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import CompletedLessonRow, ProgressRow
from app.models.progress import Progress


class PgProgressRepo:
    """Satisfies the ProgressRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, student_id: UUID, course_id: UUID) -> Progress | None:
        stmt = (
            select(ProgressRow)
            .where(ProgressRow.student_id == student_id)
            .where(ProgressRow.course_id == course_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        lessons_stmt = (
            select(CompletedLessonRow.lesson_id)
            .where(CompletedLessonRow.student_id == student_id)
            .where(CompletedLessonRow.course_id == course_id)
        )
        lesson_ids = frozenset((await self._session.execute(lessons_stmt)).scalars())
        return Progress(
            student_id=student_id,
            course_id=course_id,
            completed_lesson_ids=lesson_ids,
            last_watched_lesson_id=row.last_watched_lesson_id,
        )

    async def record_lesson(
        self,
        student_id: UUID,
        course_id: UUID,
        lesson_id: UUID,
        completed: bool,
        now: int,
    ) -> Progress:
        upsert = (
            insert(ProgressRow)
            .values(
                student_id=student_id,
                course_id=course_id,
                last_watched_lesson_id=lesson_id,
                updated_at=now,
            )
            .on_conflict_do_update(
                index_elements=["student_id", "course_id"],
                set_={"last_watched_lesson_id": lesson_id, "updated_at": now},
            )
        )
        await self._session.execute(upsert)

        if completed:
            stmt = (
                insert(CompletedLessonRow)
                .values(
                    student_id=student_id,
                    course_id=course_id,
                    lesson_id=lesson_id,
                    completed_at=now,
                )
                .on_conflict_do_nothing()
            )
        else:
            stmt = (
                delete(CompletedLessonRow)
                .where(CompletedLessonRow.student_id == student_id)
                .where(CompletedLessonRow.course_id == course_id)
                .where(CompletedLessonRow.lesson_id == lesson_id)
            )
        await self._session.execute(stmt)

        progress = await self.get(student_id, course_id)
        if progress is None:
            return Progress(student_id=student_id, course_id=course_id)
        return progress
