"""create content arrangement schema

Revision ID: 3b9e1c07d2a1
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""

from collections.abc import Sequence

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "3b9e1c07d2a1"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

_UUID = postgresql.UUID(as_uuid=True)
_UUID_ARRAY = postgresql.ARRAY(postgresql.UUID(as_uuid=True))
_JSONB = postgresql.JSONB()


def upgrade() -> None:
    op.create_table(
        "departments",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("head_ids", _UUID_ARRAY, nullable=False, server_default="{}"),
    )
    op.create_table(
        "courses",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("department_id", _UUID, nullable=False),
        sa.Column("coordinator_ids", _UUID_ARRAY, nullable=False, server_default="{}"),
        sa.Column("has_new_content", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "current_arrangement_status",
            sa.String(length=32),
            nullable=False,
            server_default="draft",
        ),
        sa.Column("is_launched", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column(
            "active_arrangement_version", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column("launch_history", _JSONB, nullable=False, server_default="[]"),
        sa.Column("last_content_update", sa.BigInteger(), nullable=True),
    )
    op.create_index("ix_courses_department_id", "courses", ["department_id"])

    op.create_table(
        "units",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("course_id", _UUID, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("order", sa.Integer(), nullable=False),
        sa.Column("video_ids", _UUID_ARRAY, nullable=False, server_default="{}"),
        sa.Column("document_ids", _UUID_ARRAY, nullable=False, server_default="{}"),
    )
    op.create_index("ix_units_course_order", "units", ["course_id", "order"])

    op.create_table(
        "videos",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("unit_id", _UUID, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("duration", sa.Integer(), nullable=True),
        sa.Column("external_id", sa.String(length=128), nullable=True),
        sa.Column(
            "approval_status", sa.String(length=16), nullable=False, server_default="pending"
        ),
        sa.Column("approved_at", sa.BigInteger(), nullable=True),
        sa.Column("approved_by", _UUID, nullable=True),
    )
    op.create_index("ix_videos_unit_id", "videos", ["unit_id"])

    op.create_table(
        "documents",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("unit_id", _UUID, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("sequence", sa.Integer(), nullable=False),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column(
            "approval_status", sa.String(length=16), nullable=False, server_default="pending"
        ),
        sa.Column("approved_at", sa.BigInteger(), nullable=True),
        sa.Column("approved_by", _UUID, nullable=True),
    )
    op.create_index("ix_documents_unit_id", "documents", ["unit_id"])

    op.create_table(
        "content_arrangements",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("course_id", _UUID, nullable=False),
        sa.Column("coordinator_id", _UUID, nullable=False),
        sa.Column("version", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(length=16), nullable=False, server_default="open"),
        sa.Column("items", _JSONB, nullable=False, server_default="[]"),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
        sa.Column("updated_at", sa.BigInteger(), nullable=False),
        sa.Column("submitted_at", sa.BigInteger(), nullable=True),
        sa.Column("approved_at", sa.BigInteger(), nullable=True),
        sa.Column("approved_by", _UUID, nullable=True),
        sa.Column("rejected_at", sa.BigInteger(), nullable=True),
        sa.Column("rejected_by", _UUID, nullable=True),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.UniqueConstraint("course_id", "version", name="uq_arrangement_course_version"),
    )
    op.create_index(
        "ix_arrangements_course_coordinator",
        "content_arrangements",
        ["course_id", "coordinator_id"],
    )
    op.create_index(
        "ix_content_arrangements_status", "content_arrangements", ["status"]
    )
    op.create_index(
        "uq_arrangement_open_per_coordinator",
        "content_arrangements",
        ["course_id", "coordinator_id"],
        unique=True,
        postgresql_where=sa.text("status = 'open'"),
    )

    op.create_table(
        "student_progress",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("student_id", _UUID, nullable=False),
        sa.Column("course_id", _UUID, nullable=False),
        sa.Column("arrangement_version", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("units", _JSONB, nullable=False, server_default="[]"),
        sa.Column(
            "unit_completion_validation", _JSONB, nullable=False, server_default="[]"
        ),
        sa.Column("updated_at", sa.BigInteger(), nullable=True),
        sa.Column("revision", sa.Integer(), nullable=False, server_default="0"),
        sa.UniqueConstraint("student_id", "course_id", name="uq_progress_student_course"),
    )
    op.create_index("ix_progress_course", "student_progress", ["course_id"])

    op.create_table(
        "audit_log",
        sa.Column("id", _UUID, primary_key=True),
        sa.Column("action", sa.String(length=32), nullable=False),
        sa.Column("actor_id", _UUID, nullable=False),
        sa.Column("target_type", sa.String(length=32), nullable=False),
        sa.Column("target_id", _UUID, nullable=False),
        sa.Column("details", _JSONB, nullable=False, server_default="{}"),
        sa.Column("created_at", sa.BigInteger(), nullable=False),
    )
    op.create_index("ix_audit_target", "audit_log", ["target_type", "target_id"])


def downgrade() -> None:
    op.drop_table("audit_log")
    op.drop_table("student_progress")
    op.drop_table("content_arrangements")
    op.drop_table("documents")
    op.drop_table("videos")
    op.drop_table("units")
    op.drop_table("courses")
    op.drop_table("departments")
