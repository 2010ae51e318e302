from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from app.api.dependencies import require_user
from app.api.orders import EnrollmentOut
from app.models.principal import Principal
from app.services.work import work_scope

router = APIRouter(prefix="/v1/enrollments", tags=["enrollments"])


@router.get("/mine", response_model=list[EnrollmentOut])
async def my_enrollments(
    principal: Annotated[Principal, Depends(require_user)],
) -> list[EnrollmentOut]:
    async with work_scope() as work:
        enrollments = await work.repos.enrollments.list_for_student(principal.id)
    return [EnrollmentOut.from_enrollment(e) for e in enrollments]
