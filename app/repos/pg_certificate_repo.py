"""PostgreSQL implementation of CertificateRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import Conflict
from app.db.tables import CertificateRow
from app.models.certificate import Certificate


class PgCertificateRepo:
    """Satisfies the CertificateRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_by_id(self, certificate_id: UUID) -> Certificate | None:
        row = await self._session.get(CertificateRow, certificate_id)
        if row is None:
            return None
        return _row_to_certificate(row)

    async def get_for_pair(
        self, student_id: UUID, course_id: UUID
    ) -> Certificate | None:
        stmt = (
            select(CertificateRow)
            .where(CertificateRow.student_id == student_id)
            .where(CertificateRow.course_id == course_id)
        )
        row = (await self._session.execute(stmt)).scalar_one_or_none()
        if row is None:
            return None
        return _row_to_certificate(row)

    async def list_for_student(self, student_id: UUID) -> list[Certificate]:
        stmt = (
            select(CertificateRow)
            .where(CertificateRow.student_id == student_id)
            .order_by(CertificateRow.issued_at.desc())
        )
        return [
            _row_to_certificate(r) for r in (await self._session.execute(stmt)).scalars()
        ]

    async def list_all(self) -> list[Certificate]:
        stmt = select(CertificateRow).order_by(CertificateRow.issued_at.desc())
        return [
            _row_to_certificate(r) for r in (await self._session.execute(stmt)).scalars()
        ]

    async def add_if_absent(self, cert: Certificate) -> tuple[Certificate, bool]:
        """INSERT ... ON CONFLICT DO NOTHING; a lost race returns the
        winner's certificate."""
        stmt = (
            insert(CertificateRow)
            .values(
                id=cert.id,
                student_id=cert.student_id,
                course_id=cert.course_id,
                certificate_url=cert.certificate_url,
                issued_at=cert.issued_at,
            )
            .on_conflict_do_nothing(index_elements=["student_id", "course_id"])
            .returning(CertificateRow.id)
        )
        inserted = (await self._session.execute(stmt)).scalar_one_or_none()
        if inserted is not None:
            return cert, True
        existing = await self.get_for_pair(cert.student_id, cert.course_id)
        if existing is None:
            raise Conflict("certificate changed concurrently")
        return existing, False


def _row_to_certificate(row: CertificateRow) -> Certificate:
    return Certificate(
        id=row.id,
        student_id=row.student_id,
        course_id=row.course_id,
        certificate_url=row.certificate_url,
        issued_at=row.issued_at,
    )
