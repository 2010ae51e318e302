from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Enrollment:
    """Access grant for one (student, course) pair.

    progress_percent and completed are written only by the progress
    tracker; completed is true exactly when progress_percent == 100.
    """

    id: UUID
    student_id: UUID
    course_id: UUID
    progress_percent: int = 0
    completed: bool = False
    created_at: int = 0

    @staticmethod
    def new(*, student_id: UUID, course_id: UUID, created_at: int) -> Enrollment:
        return Enrollment(
            id=uuid4(), student_id=student_id, course_id=course_id, created_at=created_at
        )


@dataclass(frozen=True, slots=True)
class Progress:
    """Which lessons a student has completed in a course.

    The completed set is the source of truth; the enrollment percentage
    is always recomputed from it.
    """

    student_id: UUID
    course_id: UUID
    completed_lesson_ids: frozenset[UUID] = frozenset()
    last_watched_lesson_id: UUID | None = None


def percent_complete(completed: int, total: int) -> int:
    """round(100 * completed / total), halves rounded up; 0 for empty courses."""
    if total <= 0:
        return 0
    completed = min(max(completed, 0), total)
    return (200 * completed + total) // (2 * total)
