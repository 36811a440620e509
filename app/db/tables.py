"""SQLAlchemy table definitions.

These map to the frozen dataclass domain models in app/models/.  Nested
value lists (arrangement items, per-unit progress, validation records,
launch history) are stored as JSONB documents on their owning row; the
only cross-references are ids, so dangling references are handled by the
services, not by foreign keys.

Constraints that carry concurrency guarantees:
  - content_arrangements (course_id, version) is unique, which makes
    version allocation a storage-level compare-and-swap;
  - at most one open content_arrangements row per (course_id,
    coordinator_id), a partial unique index;
  - student_progress (student_id, course_id) is unique, and writes are
    conditional on student_progress.revision.
"""

from __future__ import annotations

import uuid

from sqlalchemy import (
    BigInteger,
    Boolean,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import ARRAY, JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column

from app.db.engine import Base


class DepartmentRow(Base):
    __tablename__ = "departments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    head_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=[]
    )


class CourseRow(Base):
    __tablename__ = "courses"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    department_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    coordinator_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=[]
    )
    has_new_content: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    current_arrangement_status: Mapped[str] = mapped_column(
        String(32), nullable=False, default="draft"
    )  # draft|pending_relaunch|approved|rejected
    is_launched: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    active_arrangement_version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    launch_history: Mapped[list[dict]] = mapped_column(JSONB, nullable=False, default=[])
    last_content_update: Mapped[int | None] = mapped_column(BigInteger, nullable=True)


class UnitRow(Base):
    __tablename__ = "units"
    __table_args__ = (Index("ix_units_course_order", "course_id", "order"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    course_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False)
    video_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=[]
    )
    document_ids: Mapped[list[uuid.UUID]] = mapped_column(
        ARRAY(UUID(as_uuid=True)), nullable=False, default=[]
    )


class VideoRow(Base):
    __tablename__ = "videos"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    unit_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    duration: Mapped[int | None] = mapped_column(Integer, nullable=True)
    external_id: Mapped[str | None] = mapped_column(String(128), nullable=True)
    approval_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending"
    )  # pending|approved|deprecated
    approved_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )


class DocumentRow(Base):
    __tablename__ = "documents"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    unit_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), nullable=False, index=True
    )
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    approval_status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="pending"
    )
    approved_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )


class ContentArrangementRow(Base):
    __tablename__ = "content_arrangements"
    __table_args__ = (
        UniqueConstraint("course_id", "version", name="uq_arrangement_course_version"),
        Index("ix_arrangements_course_coordinator", "course_id", "coordinator_id"),
        Index(
            "uq_arrangement_open_per_coordinator",
            "course_id",
            "coordinator_id",
            unique=True,
            postgresql_where=text("status = 'open'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    course_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    coordinator_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default="open", index=True
    )  # open|submitted|approved|rejected
    items: Mapped[list[dict]] = mapped_column(JSONB, nullable=False, default=[])
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    updated_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
    submitted_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    approved_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    approved_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    rejected_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    rejected_by: Mapped[uuid.UUID | None] = mapped_column(
        UUID(as_uuid=True), nullable=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)


class StudentProgressRow(Base):
    __tablename__ = "student_progress"
    __table_args__ = (
        UniqueConstraint("student_id", "course_id", name="uq_progress_student_course"),
        Index("ix_progress_course", "course_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    student_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    course_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    arrangement_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    units: Mapped[list[dict]] = mapped_column(JSONB, nullable=False, default=[])
    unit_completion_validation: Mapped[list[dict]] = mapped_column(
        JSONB, nullable=False, default=[]
    )
    updated_at: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AuditLogRow(Base):
    __tablename__ = "audit_log"
    __table_args__ = (Index("ix_audit_target", "target_type", "target_id"),)

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4
    )
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    actor_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    target_type: Mapped[str] = mapped_column(String(32), nullable=False)
    target_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    details: Mapped[dict] = mapped_column(JSONB, nullable=False, default={})
    created_at: Mapped[int] = mapped_column(BigInteger, nullable=False)
