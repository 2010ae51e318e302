"""Course-completion certificates.

- GET  /v1/certificates/mine            the caller's certificates
- GET  /v1/certificates/{id}            public verification
- GET  /v1/certificates                 admin: every certificate
- POST /v1/certificates/issue           instructor/admin: issue now
- POST /v1/certificates/retry-missing   admin: queue every completed
                                         enrollment without a certificate

/issue waits on rendering and upload, so a blob or renderer failure
comes back as 502 here.  Background issuance only logs and retries.
"""

from __future__ import annotations

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from app.api.dependencies import (
    get_certificate_issuer,
    require_any_role,
    require_role,
    require_user,
)
from app.core.errors import NotFound
from app.models.certificate import Certificate
from app.models.principal import Principal
from app.services.certificate_issuer import CertificateIssuer
from app.services.task_queue import CERTIFICATE_ISSUANCE
from app.services.work import work_scope

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/certificates", tags=["certificates"])


class CertificateOut(BaseModel):
    id: UUID
    student_id: UUID
    course_id: UUID
    certificate_url: str
    issued_at: int

    @staticmethod
    def from_certificate(cert: Certificate) -> CertificateOut:
        return CertificateOut(
            id=cert.id,
            student_id=cert.student_id,
            course_id=cert.course_id,
            certificate_url=cert.certificate_url,
            issued_at=cert.issued_at,
        )


class CertificateVerificationOut(CertificateOut):
    student_name: str
    course_title: str


class IssueIn(BaseModel):
    student_id: UUID
    course_id: UUID


class RetryMissingOut(BaseModel):
    queued: int


@router.get("/mine", response_model=list[CertificateOut])
async def my_certificates(
    principal: Annotated[Principal, Depends(require_user)],
) -> list[CertificateOut]:
    async with work_scope() as work:
        certs = await work.repos.certificates.list_for_student(principal.id)
    return [CertificateOut.from_certificate(c) for c in certs]


@router.get("", response_model=list[CertificateOut])
async def list_certificates(
    _admin: Annotated[Principal, Depends(require_role("admin"))],
) -> list[CertificateOut]:
    async with work_scope() as work:
        certs = await work.repos.certificates.list_all()
    return [CertificateOut.from_certificate(c) for c in certs]


@router.get("/{certificate_id}", response_model=CertificateVerificationOut)
async def verify_certificate(certificate_id: UUID) -> CertificateVerificationOut:
    """Anyone holding a certificate id can check it is genuine."""
    async with work_scope() as work:
        cert = await work.repos.certificates.get_by_id(certificate_id)
        if cert is None:
            raise NotFound("certificate not found")
        student = await work.repos.users.get_by_id(cert.student_id)
        course = await work.repos.catalog.get_course(cert.course_id)
    return CertificateVerificationOut(
        **CertificateOut.from_certificate(cert).model_dump(),
        student_name=student.display_name if student else "",
        course_title=course.title if course else "",
    )


@router.post("/issue", response_model=CertificateOut)
async def issue_certificate(
    body: IssueIn,
    staff: Annotated[Principal, Depends(require_any_role({"instructor", "admin"}))],
    issuer: Annotated[CertificateIssuer, Depends(get_certificate_issuer)],
) -> CertificateOut:
    cert = await issuer.issue(body.student_id, body.course_id)
    logger.info(
        "Manual issuance by user=%s for student=%s course=%s",
        staff.user_id,
        body.student_id,
        body.course_id,
    )
    return CertificateOut.from_certificate(cert)


@router.post(
    "/retry-missing",
    response_model=RetryMissingOut,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retry_missing_certificates(
    _admin: Annotated[Principal, Depends(require_role("admin"))],
) -> RetryMissingOut:
    async with work_scope() as work:
        completed = await work.repos.enrollments.list_completed()
        for enrollment in completed:
            existing = await work.repos.certificates.get_for_pair(
                enrollment.student_id, enrollment.course_id
            )
            if existing is not None:
                continue
            work.jobs.defer(
                CERTIFICATE_ISSUANCE,
                {
                    "student_id": str(enrollment.student_id),
                    "course_id": str(enrollment.course_id),
                },
            )
        queued = len(work.jobs.pending)
    logger.info("Queued %d missing certificate(s) for issuance", queued)
    return RetryMissingOut(queued=queued)
