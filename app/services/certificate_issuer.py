"""Certificate issuance for completed enrollments.

issue() is idempotent and safe to run concurrently for the same pair:

  1. short unit of work: return the existing certificate if there is
     one; otherwise load the student and course and check completion
  2. outside any transaction: render the PDF, upload it
  3. short unit of work: insert-if-absent on (student, course)

Two racers may both render and upload; the unique pair lets exactly one
insert win and the other returns the winner's row.  The loser's upload
is left orphaned in blob storage.

Render and upload failures become DependencyFailure.  The worker logs
and retries them; the manual retry endpoint surfaces them as 502.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from uuid import UUID

from app.core.clock import Clock, utc_now
from app.core.errors import Conflict, DependencyFailure, NotFound
from app.core.metrics import CERTIFICATES
from app.models.certificate import Certificate
from app.models.product import Visibility
from app.repos.registry import Repos, unit_of_work
from app.services import email_client as emails
from app.services.blob_storage import BlobStorage
from app.services.certificate_renderer import render_certificate
from app.services.jobs import JobDispatcher
from app.services.task_queue import EMAIL_DISPATCH, TaskQueue

logger = logging.getLogger(__name__)

UnitOfWork = Callable[[], AbstractAsyncContextManager[Repos]]
Renderer = Callable[..., bytes]


def certificate_key(student_id: UUID, course_id: UUID, issued_at: int) -> str:
    return f"certificates/{student_id}-{course_id}-{issued_at}.pdf"


class CertificateIssuer:
    def __init__(
        self,
        blob_storage: BlobStorage,
        queue: TaskQueue,
        *,
        uow: UnitOfWork = unit_of_work,
        renderer: Renderer = render_certificate,
        clock: Clock = utc_now,
    ) -> None:
        self._blob = blob_storage
        self._queue = queue
        self._uow = uow
        self._render = renderer
        self._clock = clock

    async def issue(self, student_id: UUID, course_id: UUID) -> Certificate:
        log_extra = {"student_id": str(student_id), "course_id": str(course_id)}

        async with self._uow() as repos:
            existing = await repos.certificates.get_for_pair(student_id, course_id)
            if existing is not None:
                CERTIFICATES.labels(outcome="existing").inc()
                logger.info("Certificate already exists: %s", existing.id, extra=log_extra)
                return existing
            enrollment = await repos.enrollments.get(student_id, course_id)
            if enrollment is None:
                raise NotFound("enrollment not found")
            if not enrollment.completed:
                raise Conflict("course not completed")
            student = await repos.users.get_by_id(student_id)
            course = await repos.catalog.get_course(course_id)
            if student is None or course is None:
                raise NotFound("student or course not found")

        issued_at = self._clock()
        key = certificate_key(student_id, course_id, issued_at)
        try:
            pdf = await asyncio.to_thread(
                self._render,
                student_name=student.display_name,
                course_title=course.title,
                issued_at=issued_at,
            )
            url = await self._blob.put(
                pdf, key, visibility=Visibility.PUBLIC, content_type="application/pdf"
            )
        except DependencyFailure:
            CERTIFICATES.labels(outcome="failed").inc()
            logger.exception("Certificate upload failed", extra=log_extra)
            raise
        except Exception as e:
            CERTIFICATES.labels(outcome="failed").inc()
            logger.exception("Certificate rendering failed", extra=log_extra)
            raise DependencyFailure(
                "certificate generation failed", dependency="renderer"
            ) from e

        jobs = JobDispatcher(self._queue)
        async with self._uow() as repos:
            cert, created = await repos.certificates.add_if_absent(
                Certificate.new(
                    student_id=student_id,
                    course_id=course_id,
                    certificate_url=url,
                    issued_at=issued_at,
                )
            )
            if created:
                message = emails.EmailMessage(
                    to=student.email,
                    subject="Your certificate is ready",
                    template=emails.CERTIFICATE_ISSUED,
                    template_data={
                        "name": student.display_name,
                        "course_title": course.title,
                        "certificate_url": url,
                    },
                )
                jobs.defer(EMAIL_DISPATCH, message.to_payload())

        if not created:
            CERTIFICATES.labels(outcome="existing").inc()
            logger.info(
                "Lost issuance race; keeping certificate %s (orphaned upload %s)",
                cert.id,
                key,
                extra=log_extra,
            )
            return cert

        await jobs.flush()
        CERTIFICATES.labels(outcome="issued").inc()
        logger.info("Issued certificate %s", cert.id, extra=log_extra)
        return cert
