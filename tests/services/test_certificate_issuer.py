from __future__ import annotations

import asyncio

import pytest

from app.core.errors import Conflict, DependencyFailure, NotFound
from app.models.product import Visibility
from app.repos.registry import Repos
from app.services.blob_storage import InMemoryBlobStorage
from app.services.certificate_issuer import CertificateIssuer, certificate_key
from app.services.certificate_renderer import render_certificate
from app.services.email_client import CERTIFICATE_ISSUED
from app.services.task_queue import EMAIL_DISPATCH, task_queue
from tests.conftest import NOW, queued, seed_course, seed_enrollment, seed_user


def _fake_pdf(*, student_name: str, course_title: str, issued_at: int) -> bytes:
    return f"%PDF {student_name} / {course_title} / {issued_at}".encode()


def _issuer(blob: InMemoryBlobStorage, renderer=_fake_pdf) -> CertificateIssuer:
    return CertificateIssuer(blob, task_queue, renderer=renderer, clock=lambda: NOW)


def _completed_pair(repos: Repos):
    student = seed_user(name="Grace Hopper")
    course, _ = seed_course()
    seed_enrollment(student.id, course.id)
    asyncio.run(repos.enrollments.save_progress(student.id, course.id, 100, True))
    return student, course


def test_certificate_key_layout() -> None:
    key = certificate_key("s", "c", 42)  # type: ignore[arg-type]
    assert key == "certificates/s-c-42.pdf"


def test_issue_uploads_public_pdf_and_queues_email(repos: Repos) -> None:
    student, course = _completed_pair(repos)
    blob = InMemoryBlobStorage()

    cert = asyncio.run(_issuer(blob).issue(student.id, course.id))

    key = certificate_key(student.id, course.id, NOW)
    data, visibility, content_type = blob.objects[key]
    assert data.startswith(b"%PDF Grace Hopper / Python Basics")
    assert visibility == Visibility.PUBLIC
    assert content_type == "application/pdf"
    assert cert.certificate_url.endswith(key)
    assert cert.issued_at == NOW

    emails = queued(EMAIL_DISPATCH)
    assert len(emails) == 1
    assert emails[0]["to"] == student.email
    assert emails[0]["template"] == CERTIFICATE_ISSUED
    assert emails[0]["template_data"]["certificate_url"] == cert.certificate_url


def test_issue_is_idempotent(repos: Repos) -> None:
    student, course = _completed_pair(repos)
    blob = InMemoryBlobStorage()
    issuer = _issuer(blob)

    first = asyncio.run(issuer.issue(student.id, course.id))
    blob.objects.clear()
    second = asyncio.run(issuer.issue(student.id, course.id))

    assert second == first
    assert blob.objects == {}
    assert len(queued(EMAIL_DISPATCH)) == 1


def test_concurrent_issue_creates_one_certificate(repos: Repos) -> None:
    student, course = _completed_pair(repos)
    blob = InMemoryBlobStorage()
    issuer = _issuer(blob)

    async def race():
        return await asyncio.gather(
            issuer.issue(student.id, course.id),
            issuer.issue(student.id, course.id),
            issuer.issue(student.id, course.id),
        )

    results = asyncio.run(race())

    assert len({c.id for c in results}) == 1
    assert len(asyncio.run(repos.certificates.list_for_student(student.id))) == 1
    assert len(queued(EMAIL_DISPATCH)) == 1


def test_incomplete_course_is_rejected(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course()
    seed_enrollment(student.id, course.id)

    with pytest.raises(Conflict, match="not completed"):
        asyncio.run(_issuer(InMemoryBlobStorage()).issue(student.id, course.id))


def test_missing_enrollment_is_not_found(repos: Repos) -> None:
    student = seed_user()
    course, _ = seed_course()

    with pytest.raises(NotFound):
        asyncio.run(_issuer(InMemoryBlobStorage()).issue(student.id, course.id))


def test_upload_failure_records_nothing_and_can_be_retried(repos: Repos) -> None:
    student, course = _completed_pair(repos)
    blob = InMemoryBlobStorage()
    blob.fail_next = 1
    issuer = _issuer(blob)

    with pytest.raises(DependencyFailure) as exc_info:
        asyncio.run(issuer.issue(student.id, course.id))
    assert exc_info.value.dependency == "blob"
    assert asyncio.run(repos.certificates.get_for_pair(student.id, course.id)) is None
    assert queued(EMAIL_DISPATCH) == []

    cert = asyncio.run(issuer.issue(student.id, course.id))
    assert asyncio.run(repos.certificates.get_for_pair(student.id, course.id)) == cert


def test_renderer_failure_is_a_dependency_failure(repos: Repos) -> None:
    student, course = _completed_pair(repos)

    def broken(**_kwargs) -> bytes:
        raise RuntimeError("font missing")

    with pytest.raises(DependencyFailure) as exc_info:
        asyncio.run(_issuer(InMemoryBlobStorage(), broken).issue(student.id, course.id))
    assert exc_info.value.dependency == "renderer"


def test_real_renderer_produces_a_pdf() -> None:
    pdf = render_certificate(
        student_name="Ada <Lovelace>",
        course_title="Analytical Engines & You",
        issued_at=NOW,
    )
    assert pdf.startswith(b"%PDF")
    assert len(pdf) > 500
