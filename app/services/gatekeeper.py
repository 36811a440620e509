"""Progression Gatekeeper: sequential unit unlock.

A unit is open when every lower-ordered unit of the course is finished:
all non-deprecated videos watched, all non-deprecated documents read, and
the unit quiz passed when a quiz pool exists.  Completeness is checked
first, so a student who never finished a unit is told "finish this"
rather than "new content".  A unit in ``needs_review`` is additionally
asked of the integrity engine whether revalidation is still pending.

Content recorded as pending in a needs_review unit's validation record is
left out of the completeness counts; it is reported through the
needs_review denial instead.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from uuid import UUID

from app.core.errors import InvalidRequest, NotFound
from app.core.metrics import UNIT_ACCESS_DECISIONS
from app.models.content import DOCUMENT, VIDEO
from app.models.course import Unit
from app.models.progress import COMPLETED, LOCKED, NEEDS_REVIEW, StudentProgress
from app.repos.catalog_repo import ContentCatalog
from app.repos.quiz_repo import QuizRepo
from app.services.integrity_service import ContentIntegrityEngine

logger = logging.getLogger(__name__)

FIRST_UNIT = "first_unit"
ALL_PREREQUISITES_MET = "all_prerequisites_met"
PREVIOUS_UNIT_INCOMPLETE = "previous_unit_incomplete"
PREVIOUS_UNIT_NEEDS_REVIEW = "previous_unit_needs_review"
ALREADY_CONSUMED = "already_consumed"
UNIT_STARTED = "unit_started"


@dataclass(frozen=True, slots=True)
class AccessDecision:
    allowed: bool
    reason: str
    blocking_unit: UUID | None = None
    details: dict = field(default_factory=dict)
    message: str = ""


@dataclass(frozen=True, slots=True)
class ProgressionStatus:
    is_blocked: bool
    blocked_units: tuple[UUID, ...]
    later_units_started: int
    next_available_unit: UUID | None


def _plural(n: int, word: str) -> str:
    return f"{n} {word}" if n == 1 else f"{n} {word}s"


class ProgressionGatekeeper:
    def __init__(
        self,
        catalog: ContentCatalog,
        quizzes: QuizRepo,
        integrity: ContentIntegrityEngine,
    ) -> None:
        self._catalog = catalog
        self._quizzes = quizzes
        self._integrity = integrity

    def can_access(self, progress: StudentProgress, unit_id: UUID) -> AccessDecision:
        target = self._catalog.get_unit(unit_id)
        if target is None or target.course_id != progress.course_id:
            raise NotFound("unit not found in course", unit_id=str(unit_id))

        previous = [
            u for u in self._catalog.list_units(progress.course_id) if u.order < target.order
        ]
        if not previous:
            return self._decide(progress, target, AccessDecision(True, FIRST_UNIT))

        for unit in previous:
            denial = self._check_complete(progress, unit, target)
            if denial is None:
                denial = self._check_review(progress, unit, target)
            if denial is not None:
                return self._decide(progress, target, denial)

        return self._decide(progress, target, AccessDecision(True, ALL_PREREQUISITES_MET))

    def _check_complete(
        self, progress: StudentProgress, unit: Unit, target: Unit
    ) -> AccessDecision | None:
        up = progress.unit(unit.id)
        pending: set[UUID] = set()
        record = progress.validation(unit.id)
        if up is not None and up.status == NEEDS_REVIEW and record is not None:
            pending = {e.content_id for e in record.new_content_added}

        videos = [
            v
            for v in self._catalog.list_videos_in_unit(unit.id)
            if not v.is_deprecated and v.id not in pending
        ]
        documents = [
            d
            for d in self._catalog.list_documents_in_unit(unit.id)
            if not d.is_deprecated and d.id not in pending
        ]
        watched = progress.completed_video_ids
        read = progress.completed_document_ids
        videos_remaining = sum(1 for v in videos if v.id not in watched)
        documents_remaining = sum(1 for d in documents if d.id not in read)
        has_quiz = self._quizzes.has_quiz_pool(progress.course_id, unit.id)
        quiz_pending = has_quiz and not (up is not None and up.unit_quiz_passed)

        if not (videos_remaining or documents_remaining or quiz_pending):
            return None

        missing = []
        if videos_remaining:
            missing.append(_plural(videos_remaining, "video"))
        if documents_remaining:
            missing.append(_plural(documents_remaining, "document"))
        if quiz_pending:
            missing.append("quiz")
        return AccessDecision(
            allowed=False,
            reason=PREVIOUS_UNIT_INCOMPLETE,
            blocking_unit=unit.id,
            details={
                "unit_title": unit.title,
                "unit_order": unit.order,
                "videos_total": len(videos),
                "videos_remaining": videos_remaining,
                "documents_total": len(documents),
                "documents_remaining": documents_remaining,
                "has_quiz": has_quiz,
                "quiz_pending": quiz_pending,
            },
            message=(
                f"Complete Unit {unit.order} ({unit.title}) before accessing "
                f"Unit {target.order}. Missing: {', '.join(missing)}."
            ),
        )

    def _check_review(
        self, progress: StudentProgress, unit: Unit, target: Unit
    ) -> AccessDecision | None:
        up = progress.unit(unit.id)
        if up is None or up.status != NEEDS_REVIEW:
            return None
        report = self._integrity.diff(progress, unit.id)
        if not report.requires_revalidation:
            return None
        return AccessDecision(
            allowed=False,
            reason=PREVIOUS_UNIT_NEEDS_REVIEW,
            blocking_unit=unit.id,
            details={
                "unit_title": unit.title,
                "unit_order": unit.order,
                "new_videos": [str(v) for v in report.new_video_ids],
                "new_documents": [str(d) for d in report.new_document_ids],
            },
            message=(
                f"Unit {unit.order} ({unit.title}) has new content that must be "
                f"completed before accessing Unit {target.order}."
            ),
        )

    def _decide(
        self, progress: StudentProgress, target: Unit, decision: AccessDecision
    ) -> AccessDecision:
        UNIT_ACCESS_DECISIONS.labels(reason=decision.reason).inc()
        if not decision.allowed:
            logger.warning(
                "Unit access denied student=%s unit=%s reason=%s blocking_unit=%s",
                progress.student_id,
                target.id,
                decision.reason,
                decision.blocking_unit,
            )
        return decision

    # ------------------------------------------------------------------

    def can_access_content(
        self, progress: StudentProgress, content_type: str, content_id: UUID
    ) -> AccessDecision:
        if content_type == VIDEO:
            item = self._catalog.get_video(content_id)
            consumed = content_id in progress.completed_video_ids
        elif content_type == DOCUMENT:
            item = self._catalog.get_document(content_id)
            consumed = content_id in progress.completed_document_ids
        else:
            raise InvalidRequest("unknown content type", content_type=content_type)

        if item is None:
            raise NotFound(f"{content_type} not found", content_id=str(content_id))
        unit = self._catalog.get_unit(item.unit_id)
        if unit is None or unit.course_id != progress.course_id:
            raise NotFound(f"{content_type} not found in course", content_id=str(content_id))

        if consumed:
            return AccessDecision(True, ALREADY_CONSUMED)
        up = progress.unit(unit.id)
        if up is not None and up.status != LOCKED:
            return AccessDecision(True, UNIT_STARTED)
        return self.can_access(progress, unit.id)

    def progression_status(self, progress: StudentProgress) -> ProgressionStatus:
        units = self._catalog.list_units(progress.course_id)
        statuses = {up.unit_id: up.status for up in progress.units}
        blocked = [
            u
            for u in units
            if statuses.get(u.id) == NEEDS_REVIEW
            and self._integrity.diff(progress, u.id).requires_revalidation
        ]
        later_started = 0
        if blocked:
            first_order = blocked[0].order
            later_started = sum(
                1
                for u in units
                if u.order > first_order and statuses.get(u.id, LOCKED) != LOCKED
            )

        next_unit = None
        for u in units:
            up = progress.unit(u.id)
            if up is not None and up.status == COMPLETED:
                continue
            if self.can_access(progress, u.id).allowed:
                next_unit = u.id
            break

        return ProgressionStatus(
            is_blocked=bool(blocked),
            blocked_units=tuple(u.id for u in blocked),
            later_units_started=later_started,
            next_available_unit=next_unit,
        )
