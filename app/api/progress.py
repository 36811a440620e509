"""Student progress endpoints.

Every route acts on the caller's own progress row for the course, which
is created on first touch (first unit in-progress, the rest locked).

Gatekeeper checks answer 200 with a structured decision.  Recording
endpoints raise RequirementsNotMet (409) when the gate is closed, with
the same decision fields in ``detail``.
"""

from __future__ import annotations

from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from app.api.dependencies import require_user
from app.models.principal import Principal
from app.models.progress import StudentProgress
from app.services import registry
from app.services.gatekeeper import AccessDecision
from app.services.integrity_service import NewContentCompletion, PendingItem

router = APIRouter(prefix="/v1/progress", tags=["progress"])


# --- Pydantic schemas ---


class AccessDecisionOut(BaseModel):
    allowed: bool
    reason: str
    blocking_unit: str | None
    message: str
    details: dict


class UnitProgressOut(BaseModel):
    unit_id: str
    status: str
    videos_watched: list[str]
    documents_completed: list[str]
    quiz_attempts: int
    unit_quiz_passed: bool


class ProgressOut(BaseModel):
    id: str
    student_id: str
    course_id: str
    arrangement_version: int
    units: list[UnitProgressOut]
    updated_at: int | None


class PendingItemOut(BaseModel):
    content_id: str
    content_type: str
    added_at: int


class CompletionOut(BaseModel):
    has_new_requirements: bool
    is_complete: bool
    total_new_items: int
    completed_items: int
    incomplete_items: list[PendingItemOut]


class UnitReviewOut(BaseModel):
    unit_id: str
    title: str
    order: int
    new_content: list[PendingItemOut]
    completion: CompletionOut


class ProgressionStatusOut(BaseModel):
    is_blocked: bool
    blocked_units: list[str]
    later_units_started: int
    next_available_unit: str | None


class QuizAttemptIn(BaseModel):
    score: float = Field(ge=0, le=100)
    passed: bool


def _decision_out(decision: AccessDecision) -> AccessDecisionOut:
    return AccessDecisionOut(
        allowed=decision.allowed,
        reason=decision.reason,
        blocking_unit=str(decision.blocking_unit) if decision.blocking_unit else None,
        message=decision.message,
        details=decision.details,
    )


def _progress_out(progress: StudentProgress) -> ProgressOut:
    return ProgressOut(
        id=str(progress.id),
        student_id=str(progress.student_id),
        course_id=str(progress.course_id),
        arrangement_version=progress.arrangement_version,
        units=[
            UnitProgressOut(
                unit_id=str(u.unit_id),
                status=u.status,
                videos_watched=[str(w.video_id) for w in u.videos_watched if w.completed],
                documents_completed=[str(d) for d in u.documents_completed],
                quiz_attempts=len(u.quiz_attempts),
                unit_quiz_passed=u.unit_quiz_passed,
            )
            for u in progress.units
        ],
        updated_at=progress.updated_at,
    )


def _pending_out(item: PendingItem) -> PendingItemOut:
    return PendingItemOut(
        content_id=str(item.content_id),
        content_type=item.content_type,
        added_at=item.added_at,
    )


def _completion_out(completion: NewContentCompletion) -> CompletionOut:
    return CompletionOut(
        has_new_requirements=completion.has_new_requirements,
        is_complete=completion.is_complete,
        total_new_items=completion.total_new_items,
        completed_items=completion.completed_items,
        incomplete_items=[_pending_out(i) for i in completion.incomplete_items],
    )


def _load(course_id: UUID, principal: Principal) -> StudentProgress:
    return registry.progress.get_or_create(principal.user_id, course_id)


# --- Endpoints ---


@router.get("/{course_id}", response_model=ProgressOut)
def get_progress(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressOut:
    return _progress_out(_load(course_id, principal))


@router.get("/{course_id}/units/{unit_id}/access", response_model=AccessDecisionOut)
def check_unit_access(
    course_id: UUID,
    unit_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> AccessDecisionOut:
    progress = _load(course_id, principal)
    return _decision_out(registry.gatekeeper.can_access(progress, unit_id))


@router.get(
    "/{course_id}/content/{content_type}/{content_id}/access",
    response_model=AccessDecisionOut,
)
def check_content_access(
    course_id: UUID,
    content_type: Literal["video", "document"],
    content_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> AccessDecisionOut:
    progress = _load(course_id, principal)
    decision = registry.gatekeeper.can_access_content(progress, content_type, content_id)
    return _decision_out(decision)


@router.get("/{course_id}/units-needing-review", response_model=list[UnitReviewOut])
def list_units_needing_review(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> list[UnitReviewOut]:
    progress = _load(course_id, principal)
    return [
        UnitReviewOut(
            unit_id=str(r.unit_id),
            title=r.title,
            order=r.order,
            new_content=[_pending_out(i) for i in r.new_content],
            completion=_completion_out(r.completion),
        )
        for r in registry.integrity.units_needing_review(progress)
    ]


@router.get("/{course_id}/progression-status", response_model=ProgressionStatusOut)
def get_progression_status(
    course_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressionStatusOut:
    status = registry.gatekeeper.progression_status(_load(course_id, principal))
    return ProgressionStatusOut(
        is_blocked=status.is_blocked,
        blocked_units=[str(u) for u in status.blocked_units],
        later_units_started=status.later_units_started,
        next_available_unit=(
            str(status.next_available_unit) if status.next_available_unit else None
        ),
    )


@router.post("/{course_id}/units/{unit_id}/revalidate", response_model=ProgressOut)
def revalidate_unit(
    course_id: UUID,
    unit_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressOut:
    """Re-stamp a needs_review unit once all of its new content is done."""
    progress = _load(course_id, principal)
    return _progress_out(registry.integrity.mark_revalidation_complete(progress, unit_id))


@router.post("/{course_id}/videos/{video_id}/watched", response_model=ProgressOut)
def record_video_watched(
    course_id: UUID,
    video_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressOut:
    progress = _load(course_id, principal)
    return _progress_out(registry.progress.record_video_watched(progress, video_id))


@router.post("/{course_id}/documents/{document_id}/completed", response_model=ProgressOut)
def record_document_completed(
    course_id: UUID,
    document_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressOut:
    progress = _load(course_id, principal)
    return _progress_out(registry.progress.record_document_completed(progress, document_id))


@router.post("/{course_id}/units/{unit_id}/quiz-attempts", response_model=ProgressOut)
def record_quiz_attempt(
    course_id: UUID,
    unit_id: UUID,
    body: QuizAttemptIn,
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressOut:
    progress = _load(course_id, principal)
    updated = registry.progress.record_quiz_attempt(
        progress, unit_id, body.score, body.passed
    )
    return _progress_out(updated)


@router.post("/{course_id}/units/{unit_id}/complete", response_model=ProgressOut)
def complete_unit(
    course_id: UUID,
    unit_id: UUID,
    principal: Annotated[Principal, Depends(require_user)],
) -> ProgressOut:
    progress = _load(course_id, principal)
    return _progress_out(registry.progress.complete_unit(progress, unit_id))
