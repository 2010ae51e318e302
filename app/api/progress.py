"""Lesson progress.

- GET   /v1/progress/course/{course_id}        the caller's progress
- PATCH /v1/progress/update                    mark a lesson (un)completed
- POST  /v1/progress/recalculate/{course_id}   instructor/admin: re-derive
                                                every student's percentage

Completing the last lesson queues certificate issuance; the response does
not wait for it.
"""

from __future__ import annotations

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from app.api.dependencies import require_any_role, require_user
from app.models.principal import Principal
from app.services.progress_tracker import ProgressSnapshot
from app.services.work import work_scope

router = APIRouter(prefix="/v1/progress", tags=["progress"])


class LessonProgressIn(BaseModel):
    course_id: UUID
    lesson_id: UUID
    completed: bool = True


class ProgressOut(BaseModel):
    course_id: UUID
    completed_lesson_ids: list[UUID]
    last_watched_lesson_id: UUID | None
    total_lessons: int
    progress_percent: int
    completed: bool

    @staticmethod
    def from_snapshot(snapshot: ProgressSnapshot) -> ProgressOut:
        return ProgressOut(
            course_id=snapshot.course_id,
            completed_lesson_ids=sorted(snapshot.completed_lesson_ids, key=str),
            last_watched_lesson_id=snapshot.last_watched_lesson_id,
            total_lessons=snapshot.total_lessons,
            progress_percent=snapshot.progress_percent,
            completed=snapshot.completed,
        )


class RecomputeOut(BaseModel):
    course_id: UUID
    total_lessons: int
    students: int
    updated: int
    newly_completed: int


@router.get("/course/{course_id}", response_model=ProgressOut)
async def get_course_progress(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressOut:
    async with work_scope() as work:
        snapshot = await work.tracker().get_progress(principal.id, course_id)
    return ProgressOut.from_snapshot(snapshot)


@router.patch("/update", response_model=ProgressOut)
async def update_lesson_progress(
    body: LessonProgressIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressOut:
    async with work_scope() as work:
        snapshot = await work.tracker().set_lesson_completion(
            principal.id, body.course_id, body.lesson_id, body.completed
        )
    return ProgressOut.from_snapshot(snapshot)


@router.post("/recalculate/{course_id}", response_model=RecomputeOut)
async def recalculate_course(
    course_id: UUID,
    _staff: Annotated[Principal, Depends(require_any_role({"instructor", "admin"}))],
) -> RecomputeOut:
    async with work_scope() as work:
        summary = await work.tracker().recompute_all(course_id)
    return RecomputeOut(
        course_id=summary.course_id,
        total_lessons=summary.total_lessons,
        students=summary.students,
        updated=summary.updated,
        newly_completed=summary.newly_completed,
    )
