"""PostgreSQL implementation of EnrollmentRepo."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict
from app.db.tables import EnrollmentRow
from app.models.progress import Enrollment


class PgEnrollmentRepo:
    """Satisfies the EnrollmentRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get(self, student_id: UUID, course_id: UUID) -> Enrollment | None:
        stmt = (
            select(EnrollmentRow)
            .where(EnrollmentRow.student_id == student_id)
            .where(EnrollmentRow.course_id == course_id)
            .execution_options(populate_existing=True)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_enrollment(row)

    async def list_for_student(self, student_id: UUID) -> list[Enrollment]:
        stmt = (
            select(EnrollmentRow)
            .where(EnrollmentRow.student_id == student_id)
            .order_by(EnrollmentRow.created_at.desc())
        )
        return [
            _row_to_enrollment(r) for r in (await self._session.execute(stmt)).scalars()
        ]

    async def list_for_course(self, course_id: UUID) -> list[Enrollment]:
        stmt = select(EnrollmentRow).where(EnrollmentRow.course_id == course_id)
        return [
            _row_to_enrollment(r) for r in (await self._session.execute(stmt)).scalars()
        ]

    async def list_completed(self) -> list[Enrollment]:
        stmt = select(EnrollmentRow).where(EnrollmentRow.completed.is_(True))
        return [
            _row_to_enrollment(r) for r in (await self._session.execute(stmt)).scalars()
        ]

    async def add_if_absent(self, enrollment: Enrollment) -> tuple[Enrollment, bool]:
        """INSERT ... ON CONFLICT DO NOTHING on the (student, course) pair.

        Returns the stored enrollment and whether this call created it.
        """
        stmt = (
            insert(EnrollmentRow)
            .values(
                id=enrollment.id,
                student_id=enrollment.student_id,
                course_id=enrollment.course_id,
                progress_percent=enrollment.progress_percent,
                completed=enrollment.completed,
                created_at=enrollment.created_at,
            )
            .on_conflict_do_nothing(index_elements=["student_id", "course_id"])
            .returning(EnrollmentRow.id)
        )
        inserted = (await self._session.execute(stmt)).scalar_one_or_none()
        if inserted is not None:
            return enrollment, True
        existing = await self.get(enrollment.student_id, enrollment.course_id)
        if existing is None:
            raise Conflict("enrollment changed concurrently")
        return existing, False

    async def save_progress(
        self, student_id: UUID, course_id: UUID, percent: int, completed: bool
    ) -> Enrollment | None:
        stmt = (
            update(EnrollmentRow)
            .where(EnrollmentRow.student_id == student_id)
            .where(EnrollmentRow.course_id == course_id)
            .values(progress_percent=percent, completed=completed)
            .returning(EnrollmentRow.id)
        )
        if (await self._session.execute(stmt)).scalar_one_or_none() is None:
            return None
        return await self.get(student_id, course_id)

    @asynccontextmanager
    async def lock_pair(self, student_id: UUID, course_id: UUID) -> AsyncIterator[None]:
        # Row lock held until the surrounding transaction ends.
        stmt = (
            select(EnrollmentRow.id)
            .where(EnrollmentRow.student_id == student_id)
            .where(EnrollmentRow.course_id == course_id)
            .with_for_update()
        )
        await self._session.execute(stmt)
        yield


def _row_to_enrollment(row: EnrollmentRow) -> Enrollment:
    return Enrollment(
        id=row.id,
        student_id=row.student_id,
        course_id=row.course_id,
        progress_percent=row.progress_percent,
        completed=row.completed,
        created_at=row.created_at,
    )
