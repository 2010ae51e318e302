"""Lesson progress and course completion.

The completed-lesson set is the source of truth.  After every change the
percentage is recomputed from that set intersected with the course's
current lessons, and written onto the enrollment only when it moved.

    percent = round_half_up(100 * |completed ∩ lessons| / |lessons|)

The enrollment's ``completed`` flag follows percent == 100.  Only the
update that flips it from false to true queues certificate issuance;
dropping below 100 clears the flag but never revokes a certificate.

Updates for one (student, course) pair are serialized by the enrollment
repo's lock_pair(), so two toggles arriving together cannot both see the
old percentage and both fire the completion job.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from uuid import UUID

from app.core.clock import Clock, utc_now
from app.core.errors import Forbidden, NotFound
from app.models.progress import Enrollment, Progress, percent_complete
from app.repos.registry import Repos
from app.services.jobs import JobDispatcher
from app.services.task_queue import CERTIFICATE_ISSUANCE

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class ProgressSnapshot:
    course_id: UUID
    completed_lesson_ids: frozenset[UUID]
    last_watched_lesson_id: UUID | None
    total_lessons: int
    progress_percent: int
    completed: bool


@dataclass(frozen=True, slots=True)
class RecomputeSummary:
    course_id: UUID
    total_lessons: int
    students: int
    updated: int
    newly_completed: int


class ProgressTracker:
    def __init__(
        self, repos: Repos, jobs: JobDispatcher, *, clock: Clock = utc_now
    ) -> None:
        self._repos = repos
        self._jobs = jobs
        self._clock = clock

    async def set_lesson_completion(
        self, student_id: UUID, course_id: UUID, lesson_id: UUID, completed: bool
    ) -> ProgressSnapshot:
        async with self._repos.enrollments.lock_pair(student_id, course_id):
            enrollment = await self._repos.enrollments.get(student_id, course_id)
            if enrollment is None:
                raise Forbidden("not enrolled in this course")

            lesson = await self._repos.catalog.get_lesson(lesson_id)
            if lesson is None or lesson.course_id != course_id:
                raise NotFound("lesson not found in this course")

            progress = await self._repos.progress.record_lesson(
                student_id, course_id, lesson_id, completed, self._clock()
            )
            lesson_ids = await self._repos.catalog.lesson_ids(course_id)
            snapshot, _ = await self._sync(enrollment, progress, lesson_ids)
            return snapshot

    async def get_progress(self, student_id: UUID, course_id: UUID) -> ProgressSnapshot:
        enrollment = await self._repos.enrollments.get(student_id, course_id)
        if enrollment is None:
            raise Forbidden("not enrolled in this course")
        lesson_ids = await self._repos.catalog.lesson_ids(course_id)
        progress = await self._repos.progress.get(student_id, course_id)
        if progress is None:
            progress = Progress(student_id=student_id, course_id=course_id)
        return _snapshot(enrollment, progress, lesson_ids)

    async def recompute_all(self, course_id: UUID) -> RecomputeSummary:
        """Re-derive every enrolled student's percent from their completed set."""
        if await self._repos.catalog.get_course(course_id) is None:
            raise NotFound("course not found")

        lesson_ids = await self._repos.catalog.lesson_ids(course_id)
        enrollments = await self._repos.enrollments.list_for_course(course_id)
        updated = newly_completed = 0
        for stale in enrollments:
            async with self._repos.enrollments.lock_pair(stale.student_id, course_id):
                enrollment = await self._repos.enrollments.get(stale.student_id, course_id)
                if enrollment is None:
                    continue
                progress = await self._repos.progress.get(stale.student_id, course_id)
                if progress is None:
                    progress = Progress(student_id=stale.student_id, course_id=course_id)
                snapshot, changed = await self._sync(enrollment, progress, lesson_ids)
            if changed:
                updated += 1
                if snapshot.completed and not enrollment.completed:
                    newly_completed += 1

        logger.info(
            "Recalculated course=%s: %d student(s), %d updated, %d newly completed",
            course_id,
            len(enrollments),
            updated,
            newly_completed,
            extra={"course_id": str(course_id)},
        )
        return RecomputeSummary(
            course_id=course_id,
            total_lessons=len(lesson_ids),
            students=len(enrollments),
            updated=updated,
            newly_completed=newly_completed,
        )

    async def _sync(
        self, enrollment: Enrollment, progress: Progress, lesson_ids: frozenset[UUID]
    ) -> tuple[ProgressSnapshot, bool]:
        """Write the recomputed percent onto the enrollment if it changed."""
        done = progress.completed_lesson_ids & lesson_ids
        percent = percent_complete(len(done), len(lesson_ids))
        completed = percent == 100
        if percent == enrollment.progress_percent and completed == enrollment.completed:
            return _snapshot(enrollment, progress, lesson_ids), False

        saved = await self._repos.enrollments.save_progress(
            enrollment.student_id, enrollment.course_id, percent, completed
        )
        if saved is None:
            raise Forbidden("not enrolled in this course")
        if completed and not enrollment.completed:
            logger.info(
                "Student=%s completed course=%s",
                enrollment.student_id,
                enrollment.course_id,
                extra={
                    "student_id": str(enrollment.student_id),
                    "course_id": str(enrollment.course_id),
                },
            )
            self._jobs.defer(
                CERTIFICATE_ISSUANCE,
                {
                    "student_id": str(enrollment.student_id),
                    "course_id": str(enrollment.course_id),
                },
            )
        return _snapshot(saved, progress, lesson_ids), True


def _snapshot(
    enrollment: Enrollment, progress: Progress, lesson_ids: frozenset[UUID]
) -> ProgressSnapshot:
    return ProgressSnapshot(
        course_id=enrollment.course_id,
        completed_lesson_ids=progress.completed_lesson_ids & lesson_ids,
        last_watched_lesson_id=progress.last_watched_lesson_id,
        total_lessons=len(lesson_ids),
        progress_percent=enrollment.progress_percent,
        completed=enrollment.completed,
    )
