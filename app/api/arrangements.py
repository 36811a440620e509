"""Arrangement endpoints: coordinator drafting and department-head review.

Coordinators get-or-create their working copy, reorder it, and submit.
Department heads see what is pending, approve or reject it, and then
launch approved versions from the courses router.
"""

from __future__ import annotations

import logging
from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.dependencies import require_user
from app.core.errors import NotFound
from app.models.arrangement import Arrangement, ArrangementItem
from app.models.principal import Principal
from app.services import registry
from app.services.task_queue import DURATION_BACKFILL, task_queue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1/arrangements", tags=["arrangements"])


# --- Pydantic schemas ---


class ArrangementItemIn(BaseModel):
    content_type: Literal["video", "document"]
    content_id: UUID
    title: str = ""
    unit_id: UUID
    order: int = Field(ge=1)
    original_unit_id: UUID | None = None
    original_order: int | None = None


class ArrangementItemOut(BaseModel):
    content_type: str
    content_id: str
    title: str
    unit_id: str
    order: int
    original_unit_id: str | None
    original_order: int | None


class ArrangementOut(BaseModel):
    id: str
    course_id: str
    coordinator_id: str
    version: int
    status: str
    items: list[ArrangementItemOut]
    created_at: int
    updated_at: int
    submitted_at: int | None
    approved_at: int | None
    approved_by: str | None
    rejected_at: int | None
    rejected_by: str | None
    rejection_reason: str | None
    editable: bool | None = None


class ArrangementUpdateIn(BaseModel):
    items: list[ArrangementItemIn]


class ReviewIn(BaseModel):
    action: str
    reason: str | None = None


def _str(value: UUID | None) -> str | None:
    return str(value) if value is not None else None


def _item_out(item: ArrangementItem) -> ArrangementItemOut:
    return ArrangementItemOut(
        content_type=item.content_type,
        content_id=str(item.content_id),
        title=item.title,
        unit_id=str(item.unit_id),
        order=item.order,
        original_unit_id=_str(item.original_unit_id),
        original_order=item.original_order,
    )


def _out(arrangement: Arrangement, editable: bool | None = None) -> ArrangementOut:
    return ArrangementOut(
        id=str(arrangement.id),
        course_id=str(arrangement.course_id),
        coordinator_id=str(arrangement.coordinator_id),
        version=arrangement.version,
        status=arrangement.status,
        items=[_item_out(i) for i in arrangement.items],
        created_at=arrangement.created_at,
        updated_at=arrangement.updated_at,
        submitted_at=arrangement.submitted_at,
        approved_at=arrangement.approved_at,
        approved_by=_str(arrangement.approved_by),
        rejected_at=arrangement.rejected_at,
        rejected_by=_str(arrangement.rejected_by),
        rejection_reason=arrangement.rejection_reason,
        editable=editable,
    )


# --- Endpoints ---
# Static paths are registered before /{arrangement_id} routes.


@router.get("/pending", response_model=list[ArrangementOut])
def list_pending(
    principal: Annotated[Principal, Depends(require_user)],
) -> list[ArrangementOut]:
    """Submitted arrangements in the caller's departments, oldest first."""
    return [_out(a) for a in registry.workflow.pending_for_reviewer(principal)]


@router.get("/approved", response_model=list[ArrangementOut])
def list_launch_ready(
    principal: Annotated[Principal, Depends(require_user)],
) -> list[ArrangementOut]:
    """Approved arrangements not yet live."""
    return [_out(a) for a in registry.workflow.launch_ready_for_reviewer(principal)]


@router.get("/course/{course_id}", response_model=ArrangementOut)
def get_course_arrangement(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
    review: bool = False,
) -> ArrangementOut:
    """Coordinators get (or open) their working copy; reviewers the latest submission.

    ``?review=true`` forces the reviewer view for users who are both.
    """
    course = registry.course_repo.get_by_id(course_id)
    if course is None:
        raise NotFound("course not found", course_id=str(course_id))

    if not review and registry.authority.is_coordinator(principal, course):
        view = registry.workflow.get_or_create(course_id, principal)
        return _out(view.arrangement, view.editable)
    return _out(registry.workflow.get_for_reviewer(course_id, principal), False)


@router.get("/course/{course_id}/history", response_model=list[ArrangementOut])
def get_history(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> list[ArrangementOut]:
    return [_out(a) for a in registry.workflow.history(course_id, principal)]


@router.put("/{arrangement_id}", response_model=ArrangementOut)
def update_arrangement(
    arrangement_id: UUID,
    body: ArrangementUpdateIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> ArrangementOut:
    items = [
        ArrangementItem(
            content_type=i.content_type,
            content_id=i.content_id,
            title=i.title,
            unit_id=i.unit_id,
            order=i.order,
            original_unit_id=i.original_unit_id,
            original_order=i.original_order,
        )
        for i in body.items
    ]
    updated = registry.workflow.update(arrangement_id, items, principal)
    return _out(updated, True)


@router.post("/{arrangement_id}/submit", response_model=ArrangementOut)
def submit_arrangement(
    arrangement_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> ArrangementOut:
    return _out(registry.workflow.submit(arrangement_id, principal), False)


@router.post("/{arrangement_id}/review", response_model=ArrangementOut)
async def review_arrangement(
    arrangement_id: UUID,
    body: ReviewIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> ArrangementOut:
    """Approve (applies the order to the catalog) or reject with a reason.

    Approved videos without a duration are queued for the media backfill
    rather than fetched while the reviewer waits.
    """
    result = registry.workflow.review(arrangement_id, body.action, principal, body.reason)
    if result.backfill_candidates:
        task = await task_queue.enqueue(
            DURATION_BACKFILL,
            {"video_ids": [str(v) for v in result.backfill_candidates]},
        )
        logger.info(
            "Queued duration backfill task=%s arrangement=%s videos=%d",
            task.id,
            arrangement_id,
            len(result.backfill_candidates),
        )
    return _out(result.arrangement, False)
