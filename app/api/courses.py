"""Course lifecycle endpoints: launch, content-updated, impact analysis.

Launch sequence:
  Client -> POST /v1/courses/{courseId}/launch
  -> latest approved arrangement becomes the active version
  -> covered content marked approved
  -> every student progress row migrated to the new version
  -> 200 LaunchOut

content-updated with ``defer=true`` only flips the course flags inline
and leaves the course-wide invalidation to the worker (202 Accepted).
"""

from __future__ import annotations

import asyncio
import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from app.api.dependencies import require_role, require_user
from app.core.errors import NotFound
from app.models.principal import Principal
from app.services import registry
from app.services.integrity_service import InvalidationResult
from app.services.task_queue import CONTENT_INVALIDATION, task_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/courses", tags=["courses"])


# --- Pydantic schemas ---


class MigrationFailureOut(BaseModel):
    progress_id: str
    student_id: str
    error: str


class LaunchOut(BaseModel):
    course_id: str
    version: int
    arrangement_id: str
    content_approved: int
    students_migrated: int
    students_unchanged: int
    failures: list[MigrationFailureOut]


class ContentUpdatedIn(BaseModel):
    unit_id: UUID | None = None
    defer: bool = False


class InvalidationFailureOut(BaseModel):
    progress_id: str
    student_id: str
    error: str


class InvalidationOut(BaseModel):
    unit_id: str
    students_affected: int
    progressions_blocked: int
    failures: list[InvalidationFailureOut]


class ContentUpdatedOut(BaseModel):
    course_id: str
    has_new_content: bool
    current_arrangement_status: str
    invalidation: InvalidationOut | None = None
    task_id: str | None = None


class UnitImpactOut(BaseModel):
    unit_id: str
    title: str
    order: int
    students_total: int
    students_needing_review: int
    students_blocked: int


def _invalidation_out(result: InvalidationResult) -> InvalidationOut:
    return InvalidationOut(
        unit_id=str(result.unit_id),
        students_affected=result.students_affected,
        progressions_blocked=result.progressions_blocked,
        failures=[
            InvalidationFailureOut(
                progress_id=str(f.progress_id),
                student_id=str(f.student_id),
                error=f.error,
            )
            for f in result.failures
        ],
    )


# --- Endpoints ---


@router.post("/{course_id}/launch", response_model=LaunchOut)
def launch_course(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> LaunchOut:
    result = registry.application.launch(course_id, principal)
    return LaunchOut(
        course_id=str(result.course.id),
        version=result.arrangement.version,
        arrangement_id=str(result.arrangement.id),
        content_approved=result.content_approved,
        students_migrated=result.migration.migrated,
        students_unchanged=result.migration.unchanged,
        failures=[
            MigrationFailureOut(
                progress_id=str(f.progress_id),
                student_id=str(f.student_id),
                error=f.error,
            )
            for f in result.migration.failures
        ],
    )


@router.post("/{course_id}/content-updated", response_model=ContentUpdatedOut)
async def mark_content_updated(
    course_id: UUID,
    body: ContentUpdatedIn,
    response: Response,
    principal: Annotated[Principal, Depends(require_user)],
) -> ContentUpdatedOut:
    """Flag new content on the course and invalidate completions of ``unit_id``."""
    # Inline invalidation walks every progress row; keep the loop free.
    result = await asyncio.to_thread(
        registry.application.mark_content_updated,
        course_id,
        body.unit_id,
        principal,
        defer=body.defer,
    )
    out = ContentUpdatedOut(
        course_id=str(result.course.id),
        has_new_content=result.course.has_new_content,
        current_arrangement_status=result.course.current_arrangement_status,
        invalidation=_invalidation_out(result.invalidation) if result.invalidation else None,
    )
    if body.defer and body.unit_id is not None:
        task = await task_queue.enqueue(
            CONTENT_INVALIDATION,
            {"course_id": str(course_id), "unit_id": str(body.unit_id)},
        )
        logger.info(
            "Queued invalidation task=%s course=%s unit=%s",
            task.id,
            course_id,
            body.unit_id,
        )
        out.task_id = task.id
        response.status_code = status.HTTP_202_ACCEPTED
    return out


@router.get("/{course_id}/impact-analysis", response_model=list[UnitImpactOut])
def impact_analysis(
    course_id: UUID,
    _principal: Annotated[Principal, Depends(require_role("admin"))],
    unit_id: UUID | None = None,
) -> list[UnitImpactOut]:
    """Per unit: how many students need review and how many are blocked."""
    if registry.course_repo.get_by_id(course_id) is None:
        raise NotFound("course not found", course_id=str(course_id))
    return [
        UnitImpactOut(
            unit_id=str(i.unit_id),
            title=i.title,
            order=i.order,
            students_total=i.students_total,
            students_needing_review=i.students_needing_review,
            students_blocked=i.students_blocked,
        )
        for i in registry.integrity.impact_analysis(course_id, unit_id)
    ]
