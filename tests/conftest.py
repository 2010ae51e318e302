from __future__ import annotations

import asyncio
import sys
from pathlib import Path
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.main import app  # noqa: E402
from app.models.course import Course, Lesson  # noqa: E402
from app.models.product import Product, ProductFile, Visibility  # noqa: E402
from app.models.progress import Enrollment  # noqa: E402
from app.models.user import User  # noqa: E402
from app.repos import registry  # noqa: E402
from app.services import blob_storage as blobs  # noqa: E402
from app.services import email_client as emails  # noqa: E402
from app.services import token_service  # noqa: E402
from app.services.task_queue import task_queue  # noqa: E402

NOW = 1_760_000_000


@pytest.fixture(autouse=True)
def reset_repos() -> None:
    """Fresh in-memory ledger, catalog and progress for every test."""
    registry.reset_memory_repos()


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture(autouse=True)
def reset_collaborators() -> None:
    """Empty the in-memory blob store and email outbox."""
    if hasattr(blobs.blob_storage, "objects"):
        blobs.blob_storage.objects.clear()  # type: ignore[union-attr]
        blobs.blob_storage.fail_next = 0  # type: ignore[union-attr]
    if hasattr(emails.email_client, "outbox"):
        emails.email_client.outbox.clear()  # type: ignore[union-attr]
        emails.email_client.fail_next = 0  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


@pytest.fixture
def repos() -> registry.Repos:
    return registry.memory_repos


def mint_token(user_id: UUID | str, roles: list[str] | None = None) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(sub=str(user_id), roles=roles)


def auth(user_id: UUID | str, roles: list[str] | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(user_id, roles)}"}


def queued(queue: str) -> list[dict]:
    """Payloads waiting on an in-memory queue, oldest first."""
    return [t.payload for t in task_queue._queues.get(queue, [])]  # type: ignore[union-attr]


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


def seed_user(
    email: str = "student@example.com",
    name: str = "Ada Student",
    roles: tuple[str, ...] = ("student",),
) -> User:
    user = User.new(email=email, name=name, roles=roles)
    asyncio.run(registry.memory_repos.users.add(user))
    return user


def seed_course(
    *,
    price: int = 0,
    discount_price: int = 0,
    lessons: int = 4,
    slug: str = "python-basics",
    published: bool = True,
) -> tuple[Course, list[Lesson]]:
    course = Course.new(
        slug=slug,
        title="Python Basics",
        price=price,
        discount_price=discount_price,
        is_published=published,
    )
    lesson_rows = [
        Lesson.new(course_id=course.id, title=f"Lesson {i + 1}", position=i)
        for i in range(lessons)
    ]

    async def _add() -> None:
        await registry.memory_repos.catalog.add_course(course)
        for lesson in lesson_rows:
            await registry.memory_repos.catalog.add_lesson(lesson)

    asyncio.run(_add())
    return course, lesson_rows


def seed_product(
    *,
    price: int = 500,
    discount_price: int = 0,
    slug: str = "ebook",
    published: bool = True,
    files: tuple[ProductFile, ...] | None = None,
) -> Product:
    if files is None:
        files = (
            ProductFile(name="book.pdf", object_key=f"products/{slug}/book.pdf"),
            ProductFile(
                name="preview.pdf",
                object_key=f"products/{slug}/preview.pdf",
                url=f"https://cdn.example.com/{slug}/preview.pdf",
                visibility=Visibility.PUBLIC,
            ),
        )
    product = Product.new(
        slug=slug,
        title=slug.replace("-", " ").title(),
        price=price,
        discount_price=discount_price,
        is_published=published,
        files=files,
    )
    asyncio.run(registry.memory_repos.catalog.add_product(product))
    return product


def seed_enrollment(student_id: UUID, course_id: UUID) -> Enrollment:
    enrollment = Enrollment.new(student_id=student_id, course_id=course_id, created_at=NOW)
    asyncio.run(registry.memory_repos.enrollments.add_if_absent(enrollment))
    return enrollment
