"""Repository wiring and the unit of work.

UNIT OF WORK
-------------
Every ledger transition and the grant it triggers must commit together
or not at all.  unit_of_work() hands out one bundle of repos that share
a single AsyncSession:

    async with unit_of_work() as repos:
        order = await repos.orders.transition(...)
        await repos.enrollments.add_if_absent(...)
    # commit happened here; an exception anywhere above rolled back

Without DATABASE_URL the bundle is the process-wide in-memory set.  The
in-memory repos have no rollback; each of their methods runs without an
await point, so individual operations are still atomic under asyncio.
"""

from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from app.db import engine as db_engine
from app.repos.cart_repo import CartRepo, InMemoryCartRepo
from app.repos.catalog_repo import CatalogRepo, InMemoryCatalogRepo
from app.repos.certificate_repo import CertificateRepo, InMemoryCertificateRepo
from app.repos.digital_order_repo import DigitalOrderRepo, InMemoryDigitalOrderRepo
from app.repos.enrollment_repo import EnrollmentRepo, InMemoryEnrollmentRepo
from app.repos.order_repo import InMemoryOrderRepo, OrderRepo
from app.repos.pg_cart_repo import PgCartRepo
from app.repos.pg_catalog_repo import PgCatalogRepo
from app.repos.pg_certificate_repo import PgCertificateRepo
from app.repos.pg_digital_order_repo import PgDigitalOrderRepo
from app.repos.pg_enrollment_repo import PgEnrollmentRepo
from app.repos.pg_order_repo import PgOrderRepo
from app.repos.pg_progress_repo import PgProgressRepo
from app.repos.pg_user_repo import PgUserRepo
from app.repos.progress_repo import InMemoryProgressRepo, ProgressRepo
from app.repos.user_repo import InMemoryUserRepo, UserRepo

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class Repos:
    users: UserRepo
    catalog: CatalogRepo
    carts: CartRepo
    orders: OrderRepo
    digital_orders: DigitalOrderRepo
    enrollments: EnrollmentRepo
    progress: ProgressRepo
    certificates: CertificateRepo


def build_memory_repos() -> Repos:
    return Repos(
        users=InMemoryUserRepo(),
        catalog=InMemoryCatalogRepo(),
        carts=InMemoryCartRepo(),
        orders=InMemoryOrderRepo(),
        digital_orders=InMemoryDigitalOrderRepo(),
        enrollments=InMemoryEnrollmentRepo(),
        progress=InMemoryProgressRepo(),
        certificates=InMemoryCertificateRepo(),
    )


def build_pg_repos(session: AsyncSession) -> Repos:
    return Repos(
        users=PgUserRepo(session),
        catalog=PgCatalogRepo(session),
        carts=PgCartRepo(session),
        orders=PgOrderRepo(session),
        digital_orders=PgDigitalOrderRepo(session),
        enrollments=PgEnrollmentRepo(session),
        progress=PgProgressRepo(session),
        certificates=PgCertificateRepo(session),
    )


# Process-wide store used when DATABASE_URL is unset.  Tests reset it.
memory_repos = build_memory_repos()


def reset_memory_repos() -> None:
    global memory_repos
    memory_repos = build_memory_repos()


@asynccontextmanager
async def unit_of_work() -> AsyncIterator[Repos]:
    """Yield repos bound to one transaction: commit on success, roll back
    and re-raise on error."""
    if db_engine.async_session_factory is None:
        yield memory_repos
        return

    async with db_engine.async_session_factory() as session:
        try:
            yield build_pg_repos(session)
            await session.commit()
        except Exception:
            await session.rollback()
            logger.debug("Unit of work rolled back")
            raise
