"""Certificate issuance and verification endpoints."""

from __future__ import annotations

import asyncio
from uuid import uuid4

from fastapi.testclient import TestClient

from app.repos import registry
from app.services import blob_storage as blobs
from app.services.email_client import CERTIFICATE_ISSUED
from app.services.task_queue import CERTIFICATE_ISSUANCE, EMAIL_DISPATCH
from tests.conftest import auth, queued, seed_course, seed_enrollment, seed_user


def _mark_completed(student_id, course_id) -> None:
    enrollments = registry.memory_repos.enrollments
    asyncio.run(enrollments.save_progress(student_id, course_id, 100, True))


def _completed(name: str = "Grace Hopper", email: str = "grace@example.com"):
    student = seed_user(email, name=name)
    course, _ = seed_course()
    seed_enrollment(student.id, course.id)
    _mark_completed(student.id, course.id)
    return student, course


def _issue(client: TestClient, student_id, course_id, roles=("instructor",)):
    return client.post(
        "/v1/certificates/issue",
        json={"student_id": str(student_id), "course_id": str(course_id)},
        headers=auth(uuid4(), list(roles)),
    )


def test_issue_requires_staff_role(client: TestClient) -> None:
    student, course = _completed()
    resp = _issue(client, student.id, course.id, roles=("student",))
    assert resp.status_code == 403


def test_issue_then_verify_publicly(client: TestClient) -> None:
    student, course = _completed()

    issued = _issue(client, student.id, course.id)

    assert issued.status_code == 200
    cert = issued.json()
    assert cert["student_id"] == str(student.id)
    assert cert["certificate_url"].endswith(".pdf")
    [email] = queued(EMAIL_DISPATCH)
    assert email["template"] == CERTIFICATE_ISSUED

    resp = client.get(f"/v1/certificates/{cert['id']}")
    assert resp.status_code == 200
    assert resp.json()["student_name"] == "Grace Hopper"
    assert resp.json()["course_title"] == "Python Basics"


def test_issuing_twice_returns_same_certificate(client: TestClient) -> None:
    student, course = _completed()

    first = _issue(client, student.id, course.id).json()
    second = _issue(client, student.id, course.id, roles=("admin",)).json()

    assert second == first
    assert len(queued(EMAIL_DISPATCH)) == 1


def test_issue_for_incomplete_course_is_409(client: TestClient) -> None:
    student = seed_user()
    course, _ = seed_course()
    seed_enrollment(student.id, course.id)

    resp = _issue(client, student.id, course.id)

    assert resp.status_code == 409


def test_upload_failure_is_502(client: TestClient) -> None:
    student, course = _completed()
    blobs.blob_storage.fail_next = 1  # type: ignore[union-attr]

    resp = _issue(client, student.id, course.id)

    assert resp.status_code == 502
    assert queued(EMAIL_DISPATCH) == []
    assert _issue(client, student.id, course.id).status_code == 200


def test_verify_unknown_certificate_is_404(client: TestClient) -> None:
    resp = client.get(f"/v1/certificates/{uuid4()}")
    assert resp.status_code == 404
    assert resp.json() == {"detail": "certificate not found"}


def test_mine_and_admin_listing(client: TestClient) -> None:
    student, course = _completed()
    _issue(client, student.id, course.id)

    mine = client.get("/v1/certificates/mine", headers=auth(student.id))
    others = client.get("/v1/certificates/mine", headers=auth(uuid4()))
    everything = client.get("/v1/certificates", headers=auth(uuid4(), ["admin"]))

    assert [c["course_id"] for c in mine.json()] == [str(course.id)]
    assert others.json() == []
    assert len(everything.json()) == 1
    assert client.get("/v1/certificates", headers=auth(student.id)).status_code == 403


def test_retry_missing_queues_only_uncertified(client: TestClient) -> None:
    certified, course = _completed()
    _issue(client, certified.id, course.id)
    pending = seed_user("pending@example.com")
    seed_enrollment(pending.id, course.id)
    _mark_completed(pending.id, course.id)
    in_progress = seed_user("busy@example.com")
    seed_enrollment(in_progress.id, course.id)

    resp = client.post(
        "/v1/certificates/retry-missing", headers=auth(uuid4(), ["admin"])
    )

    assert resp.status_code == 202
    assert resp.json() == {"queued": 1}
    assert queued(CERTIFICATE_ISSUANCE) == [
        {"student_id": str(pending.id), "course_id": str(course.id)}
    ]
