"""create admissions table

Revision ID: a0b1c2d3e4f5
Revises:
Create Date: 2026-10-19 12:00:00.000000

This migration:
1. Creates the admission_status enum type
2. Creates the admissions table (form groups as JSON, PDF references,
   counselor/admin workflow timestamps)
3. Adds indexes on status and counselor_key for review queries
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "a0b1c2d3e4f5"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None


def upgrade() -> None:
    """Create the admissions table."""
    admission_status_enum = postgresql.ENUM(
        "pending",
        "approved",
        "rejected",
        name="admission_status",
        create_type=False,
    )
    admission_status_enum.create(op.get_bind(), checkfirst=True)

    op.create_table(
        "admissions",
        sa.Column("id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("status", admission_status_enum, nullable=False, server_default="pending"),
        # Routing
        sa.Column("counselor_key", sa.String(length=8), nullable=False, server_default="c1"),
        sa.Column("plan_type", sa.String(length=16), nullable=False, server_default="job"),
        # Form groups
        sa.Column("personal", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("course", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("education", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("ids", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("center", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("uploads", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("signatures", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("tc", postgresql.JSON(astext_type=sa.Text()), nullable=False),
        sa.Column("fees", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        sa.Column("edit_request", postgresql.JSON(astext_type=sa.Text()), nullable=True),
        # Generated artifacts
        sa.Column("pending_student_pdf_url", sa.String(length=1000), nullable=True),
        sa.Column("pending_counselor_pdf_url", sa.String(length=1000), nullable=True),
        sa.Column("approved_pdf_url", sa.String(length=1000), nullable=True),
        # Workflow
        sa.Column("counselor_submitted_to_admin_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("counselor_submitted_by", sa.String(length=255), nullable=True),
        sa.Column("admin_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("admin_approved_by", sa.String(length=255), nullable=True),
        # Audit timestamps
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
    )

    op.create_index("ix_admissions_status", "admissions", ["status"], unique=False)
    op.create_index("ix_admissions_counselor_key", "admissions", ["counselor_key"], unique=False)


def downgrade() -> None:
    """Drop the admissions table and its enum type."""
    op.drop_index("ix_admissions_counselor_key", table_name="admissions")
    op.drop_index("ix_admissions_status", table_name="admissions")
    op.drop_table("admissions")

    sa.Enum(name="admission_status").drop(op.get_bind(), checkfirst=True)
