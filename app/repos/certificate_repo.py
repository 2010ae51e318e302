from __future__ import annotations

from typing import Protocol
from uuid import UUID

from app.models.certificate import Certificate


class CertificateRepo(Protocol):
    async def get_by_id(self, certificate_id: UUID) -> Certificate | None: ...
    async def get_for_pair(
        self, student_id: UUID, course_id: UUID
    ) -> Certificate | None: ...
    async def list_for_student(self, student_id: UUID) -> list[Certificate]: ...
    async def list_all(self) -> list[Certificate]: ...
    async def add_if_absent(self, cert: Certificate) -> tuple[Certificate, bool]: ...


class InMemoryCertificateRepo:
    def __init__(self) -> None:
        self._by_pair: dict[tuple[UUID, UUID], Certificate] = {}

    async def get_by_id(self, certificate_id: UUID) -> Certificate | None:
        for cert in self._by_pair.values():
            if cert.id == certificate_id:
                return cert
        return None

    async def get_for_pair(
        self, student_id: UUID, course_id: UUID
    ) -> Certificate | None:
        return self._by_pair.get((student_id, course_id))

    async def list_for_student(self, student_id: UUID) -> list[Certificate]:
        found = [c for c in self._by_pair.values() if c.student_id == student_id]
        return sorted(found, key=lambda c: c.issued_at, reverse=True)

    async def list_all(self) -> list[Certificate]:
        return sorted(self._by_pair.values(), key=lambda c: c.issued_at, reverse=True)

    async def add_if_absent(self, cert: Certificate) -> tuple[Certificate, bool]:
        key = (cert.student_id, cert.course_id)
        existing = self._by_pair.get(key)
        if existing is not None:
            return existing, False
        self._by_pair[key] = cert
        return cert, True
