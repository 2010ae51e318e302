from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class Certificate:
    """Issued course-completion certificate. Never updated once created."""

    id: UUID
    student_id: UUID
    course_id: UUID
    certificate_url: str
    issued_at: int

    @staticmethod
    def new(
        *, student_id: UUID, course_id: UUID, certificate_url: str, issued_at: int
    ) -> Certificate:
        return Certificate(
            id=uuid4(),
            student_id=student_id,
            course_id=course_id,
            certificate_url=certificate_url,
            issued_at=issued_at,
        )
