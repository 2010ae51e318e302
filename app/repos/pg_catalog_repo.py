"""PostgreSQL implementation of CatalogRepo."""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.tables import CourseRow, LessonRow, ProductFileRow, ProductRow
from app.models.course import Course, Lesson
from app.models.product import Product, ProductFile, Visibility


class PgCatalogRepo:
    """Satisfies the CatalogRepo Protocol using PostgreSQL."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def get_course(self, course_id: UUID) -> Course | None:
        row = await self._session.get(CourseRow, course_id)
        if row is None:
            return None
        return Course(
            id=row.id,
            slug=row.slug,
            title=row.title,
            price=row.price,
            discount_price=row.discount_price,
            is_published=row.is_published,
        )

    async def get_lesson(self, lesson_id: UUID) -> Lesson | None:
        row = await self._session.get(LessonRow, lesson_id)
        if row is None:
            return None
        return Lesson(
            id=row.id, course_id=row.course_id, title=row.title, position=row.position
        )

    async def lesson_ids(self, course_id: UUID) -> frozenset[UUID]:
        stmt = select(LessonRow.id).where(LessonRow.course_id == course_id)
        return frozenset((await self._session.execute(stmt)).scalars())

    async def get_product(self, product_id: UUID) -> Product | None:
        row = await self._session.get(ProductRow, product_id)
        if row is None:
            return None
        files_stmt = (
            select(ProductFileRow)
            .where(ProductFileRow.product_id == product_id)
            .order_by(ProductFileRow.name)
        )
        file_rows = (await self._session.execute(files_stmt)).scalars().all()
        return Product(
            id=row.id,
            slug=row.slug,
            title=row.title,
            price=row.price,
            discount_price=row.discount_price,
            is_published=row.is_published,
            files=tuple(
                ProductFile(
                    name=f.name,
                    object_key=f.object_key,
                    url=f.url,
                    visibility=Visibility(f.visibility),
                    size_bytes=f.size_bytes,
                )
                for f in file_rows
            ),
        )

    async def add_course(self, course: Course) -> None:
        self._session.add(
            CourseRow(
                id=course.id,
                slug=course.slug,
                title=course.title,
                price=course.price,
                discount_price=course.discount_price,
                is_published=course.is_published,
            )
        )
        await self._session.flush()

    async def add_lesson(self, lesson: Lesson) -> None:
        self._session.add(
            LessonRow(
                id=lesson.id,
                course_id=lesson.course_id,
                title=lesson.title,
                position=lesson.position,
            )
        )
        await self._session.flush()

    async def add_product(self, product: Product) -> None:
        self._session.add(
            ProductRow(
                id=product.id,
                slug=product.slug,
                title=product.title,
                price=product.price,
                discount_price=product.discount_price,
                is_published=product.is_published,
            )
        )
        for f in product.files:
            self._session.add(
                ProductFileRow(
                    product_id=product.id,
                    name=f.name,
                    object_key=f.object_key,
                    url=f.url,
                    visibility=f.visibility.value,
                    size_bytes=f.size_bytes,
                )
            )
        await self._session.flush()
