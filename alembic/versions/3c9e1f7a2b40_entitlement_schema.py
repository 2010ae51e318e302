"""entitlement schema

Revision ID: 3c9e1f7a2b40
Revises:
Create Date: 2026-10-18 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3c9e1f7a2b40"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def _uuid(name: str, **kwargs) -> sa.Column:
    return sa.Column(name, postgresql.UUID(as_uuid=True), **kwargs)


def upgrade() -> None:
    op.create_table(
        "users",
        _uuid("id", primary_key=True),
        sa.Column("email", sa.String(length=320), nullable=False, unique=True),
        sa.Column("name", sa.String(length=255), nullable=False, server_default=""),
        sa.Column(
            "roles",
            postgresql.ARRAY(sa.String()),
            nullable=False,
            server_default="{}",
        ),
    )
    op.create_table(
        "courses",
        _uuid("id", primary_key=True),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "is_published", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
    )
    op.create_table(
        "lessons",
        _uuid("id", primary_key=True),
        _uuid("course_id", sa.ForeignKey("courses.id"), nullable=False, index=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("position", sa.Integer(), nullable=False),
    )
    op.create_table(
        "products",
        _uuid("id", primary_key=True),
        sa.Column("slug", sa.String(length=255), nullable=False, unique=True),
        sa.Column("title", sa.String(length=500), nullable=False),
        sa.Column("price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("discount_price", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "is_published", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
    )
    op.create_table(
        "product_files",
        _uuid("id", primary_key=True),
        _uuid("product_id", sa.ForeignKey("products.id"), nullable=False, index=True),
        sa.Column("name", sa.String(length=500), nullable=False),
        sa.Column("object_key", sa.Text(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False, server_default=""),
        sa.Column(
            "visibility", sa.String(length=16), nullable=False, server_default="private"
        ),
        sa.Column("size_bytes", sa.Integer(), nullable=False, server_default="0"),
    )
    op.create_table(
        "cart_items",
        _uuid("user_id", sa.ForeignKey("users.id"), primary_key=True),
        _uuid("product_id", sa.ForeignKey("products.id"), primary_key=True),
        sa.Column("price", sa.Integer(), nullable=False),
        sa.Column("added_at", sa.BigInteger(), nullable=False),
    )

    op.create_table(
        "orders",
        _uuid("id", primary_key=True),
        _uuid("buyer_id", sa.ForeignKey("users.id"), nullable=False, index=True),
        _uuid("course_id", sa.ForeignKey("courses.id"), nullable=False, index=True),
        sa.Column("amount", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False),
        sa.Column(
            "payment_status",
            sa.String(length=16),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("transaction_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("payment_number", sa.String(length=64), nullable=True),
        sa.Column("payment_proof_ref", sa.Text(), nullable=False, server_default=""),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
    )
    op.create_index(
        "uq_orders_active_buyer_course",
        "orders",
        ["buyer_id", "course_id"],
        unique=True,
        postgresql_where=sa.text("payment_status IN ('pending', 'paid')"),
    )
    op.create_table(
        "digital_orders",
        _uuid("id", primary_key=True),
        _uuid("buyer_id", sa.ForeignKey("users.id"), nullable=False, index=True),
        sa.Column("total_amount", sa.Integer(), nullable=False),
        sa.Column("payment_method", sa.String(length=32), nullable=False),
        sa.Column(
            "payment_status",
            sa.String(length=16),
            nullable=False,
            server_default="pending",
        ),
        sa.Column("transaction_id", sa.String(length=255), nullable=False, unique=True),
        sa.Column("buyer_name", sa.String(length=255), nullable=True),
        sa.Column("buyer_email", sa.String(length=320), nullable=True),
        sa.Column("buyer_phone", sa.String(length=64), nullable=True),
        sa.Column(
            "tokens_issued", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
    )
    op.create_table(
        "digital_order_items",
        _uuid("order_id", sa.ForeignKey("digital_orders.id"), primary_key=True),
        _uuid("product_id", sa.ForeignKey("products.id"), primary_key=True),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("unit_price", sa.Integer(), nullable=False),
        sa.Column("title_snapshot", sa.String(length=500), nullable=False),
    )
    op.create_table(
        "download_tokens",
        sa.Column("token", sa.String(length=128), primary_key=True),
        _uuid(
            "order_id", sa.ForeignKey("digital_orders.id"), nullable=False, index=True
        ),
        _uuid("product_id", sa.ForeignKey("products.id"), nullable=False),
        sa.Column("expires_at", sa.BigInteger(), nullable=False),
        sa.Column("max_downloads", sa.Integer(), nullable=False, server_default="5"),
        sa.Column("downloads_used", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("order_id", "product_id"),
        sa.CheckConstraint("downloads_used >= 0 AND downloads_used <= max_downloads"),
    )

    op.create_table(
        "enrollments",
        _uuid("id", primary_key=True),
        _uuid("student_id", sa.ForeignKey("users.id"), nullable=False),
        _uuid("course_id", sa.ForeignKey("courses.id"), nullable=False, index=True),
        sa.Column("progress_percent", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("completed", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.UniqueConstraint("student_id", "course_id"),
        sa.CheckConstraint("progress_percent BETWEEN 0 AND 100"),
    )
    op.create_table(
        "progress",
        _uuid("student_id", sa.ForeignKey("users.id"), primary_key=True),
        _uuid("course_id", sa.ForeignKey("courses.id"), primary_key=True),
        _uuid("last_watched_lesson_id", sa.ForeignKey("lessons.id"), nullable=True),
        sa.Column("updated_at", sa.BigInteger(), nullable=False),
    )
    op.create_table(
        "completed_lessons",
        _uuid("student_id", primary_key=True),
        _uuid("course_id", primary_key=True),
        _uuid("lesson_id", sa.ForeignKey("lessons.id"), primary_key=True),
        sa.Column("completed_at", sa.BigInteger(), nullable=False),
    )
    op.create_table(
        "certificates",
        _uuid("id", primary_key=True),
        _uuid("student_id", sa.ForeignKey("users.id"), nullable=False),
        _uuid("course_id", sa.ForeignKey("courses.id"), nullable=False),
        sa.Column("certificate_url", sa.Text(), nullable=False),
        sa.Column("issued_at", sa.BigInteger(), nullable=False),
        sa.UniqueConstraint("student_id", "course_id"),
    )


def downgrade() -> None:
    for table in (
        "certificates",
        "completed_lessons",
        "progress",
        "enrollments",
        "download_tokens",
        "digital_order_items",
        "digital_orders",
        "orders",
        "cart_items",
        "product_files",
        "products",
        "lessons",
        "courses",
        "users",
    ):
        op.drop_table(table)
