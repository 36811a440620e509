"""Arrangement Workflow Manager.

STATE MACHINE
-------------
  (none) --create--> open --submit--> submitted --approve--> approved
                      ^                   |
                      |                   +--reject--> rejected
                      +--- edit (open) ---+

approved and rejected are terminal: retrying after a rejection, or
relaunching after new uploads, always mints a new version.  Versions are
unique per course; the repository refuses a duplicate (course, version)
and get_or_create retries by re-reading.  A coordinator holds at most
one open arrangement per course, also refused by the repository.

Course flags (has_new_content, current_arrangement_status) are changed
here only as the documented side effects of create, sync and review.
"""

from __future__ import annotations

import datetime
import logging
from dataclasses import dataclass
from uuid import UUID

from app.core.errors import (
    AlreadyReviewed,
    ArrangementLocked,
    DuplicateVersionError,
    InvalidRequest,
    NotEditable,
    NotFound,
)
from app.core.metrics import ARRANGEMENT_TRANSITIONS
from app.models.arrangement import (
    APPROVED,
    OPEN,
    REJECTED,
    SUBMITTED,
    Approved,
    Arrangement,
    ArrangementItem,
    NoneYet,
    Open,
    Rejected,
    Submitted,
    arrangement_state,
)
from app.models.content import CONTENT_TYPES, DOCUMENT, VIDEO
from app.models.course import Course
from app.models.principal import Principal
from app.repos.arrangement_repo import ArrangementRepo
from app.repos.catalog_repo import ContentCatalog
from app.repos.course_repo import CourseRepo
from app.services import audit_service
from app.services.application_service import ContentApplicationEngine
from app.services.audit_service import AuditService
from app.services.authority import AuthorityResolver

logger = logging.getLogger(__name__)

APPROVE = "approve"
REJECT = "reject"

_CREATE_ATTEMPTS = 3


def _now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


@dataclass(frozen=True, slots=True)
class ArrangementView:
    arrangement: Arrangement
    editable: bool


@dataclass(frozen=True, slots=True)
class ReviewResult:
    arrangement: Arrangement
    # Approved videos still missing a duration; queued for the media backfill.
    backfill_candidates: tuple[UUID, ...] = ()


class ArrangementWorkflow:
    def __init__(
        self,
        *,
        courses: CourseRepo,
        arrangements: ArrangementRepo,
        catalog: ContentCatalog,
        application: ContentApplicationEngine,
        authority: AuthorityResolver,
        audit: AuditService,
    ) -> None:
        self._courses = courses
        self._arrangements = arrangements
        self._catalog = catalog
        self._application = application
        self._authority = authority
        self._audit = audit

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _course(self, course_id: UUID) -> Course:
        course = self._courses.get_by_id(course_id)
        if course is None:
            raise NotFound("course not found", course_id=str(course_id))
        return course

    def _arrangement(self, arrangement_id: UUID) -> Arrangement:
        arrangement = self._arrangements.get_by_id(arrangement_id)
        if arrangement is None:
            raise NotFound("arrangement not found", arrangement_id=str(arrangement_id))
        return arrangement

    # ------------------------------------------------------------------
    # get-or-create and sync
    # ------------------------------------------------------------------

    def get_or_create(self, course_id: UUID, principal: Principal) -> ArrangementView:
        course = self._course(course_id)
        self._authority.require(
            self._authority.is_coordinator(principal, course),
            principal,
            "arrange course content",
            course_id=str(course_id),
        )

        for attempt in range(1, _CREATE_ATTEMPTS + 1):
            latest = self._arrangements.latest_for_coordinator(course_id, principal.user_id)
            state = arrangement_state(latest)

            if isinstance(state, Open):
                return ArrangementView(self.sync_new_content(state.arrangement), True)
            if isinstance(state, Submitted):
                return ArrangementView(state.arrangement, False)
            if isinstance(state, Approved | Rejected):
                relaunch = (
                    course.has_new_content
                    or course.current_arrangement_status == "pending_relaunch"
                )
                if not relaunch:
                    if isinstance(state, Approved):
                        raise ArrangementLocked(
                            "arrangement approved and no new content to arrange",
                            arrangement_id=str(state.arrangement.id),
                            version=state.arrangement.version,
                        )
                    return ArrangementView(state.arrangement, False)
            elif not isinstance(state, NoneYet):
                raise ValueError(f"unhandled arrangement state {state!r}")

            try:
                return ArrangementView(self._create(course, principal), True)
            except DuplicateVersionError:
                logger.warning(
                    "Version conflict creating arrangement course=%s attempt=%d",
                    course_id,
                    attempt,
                )
                course = self._course(course_id)

        raise NotEditable(
            "could not allocate an arrangement version, retry",
            course_id=str(course_id),
        )

    def _create(self, course: Course, principal: Principal) -> Arrangement:
        now = _now()
        arrangement = Arrangement.new(
            course_id=course.id,
            coordinator_id=principal.user_id,
            version=self._arrangements.max_version(course.id) + 1,
            items=self._initial_items(course.id),
            now=now,
        )
        self._arrangements.add(arrangement)
        self._courses.update(
            course.id, has_new_content=False, current_arrangement_status="draft"
        )
        ARRANGEMENT_TRANSITIONS.labels(transition="created").inc()
        logger.info(
            "Created arrangement=%s course=%s version=%d items=%d",
            arrangement.id,
            course.id,
            arrangement.version,
            len(arrangement.items),
        )
        return arrangement

    def _unit_content(self, unit_id: UUID) -> list[tuple[str, UUID, str]]:
        """Catalog content of a unit, videos first, each in catalog order."""
        return [
            (VIDEO, v.id, v.title) for v in self._catalog.list_videos_in_unit(unit_id)
        ] + [
            (DOCUMENT, d.id, d.title) for d in self._catalog.list_documents_in_unit(unit_id)
        ]

    def _initial_items(self, course_id: UUID) -> tuple[ArrangementItem, ...]:
        items: list[ArrangementItem] = []
        for unit in self._catalog.list_units(course_id):
            order = 0
            for content_type, content_id, title in self._unit_content(unit.id):
                order += 1
                items.append(
                    ArrangementItem(
                        content_type=content_type,
                        content_id=content_id,
                        title=title,
                        unit_id=unit.id,
                        order=order,
                        original_unit_id=unit.id,
                        original_order=order,
                    )
                )
        return tuple(items)

    def sync_new_content(self, arrangement: Arrangement) -> Arrangement:
        """Append catalog content the open arrangement does not list yet."""
        if arrangement.status != OPEN:
            raise NotEditable(
                "only open arrangements can be synced", status=arrangement.status
            )

        known = {i.content_id for i in arrangement.items}
        last_order: dict[UUID, int] = {}
        for item in arrangement.items:
            last_order[item.unit_id] = max(last_order.get(item.unit_id, 0), item.order)

        additions: list[ArrangementItem] = []
        for unit in self._catalog.list_units(arrangement.course_id):
            for content_type, content_id, title in self._unit_content(unit.id):
                if content_id in known:
                    continue
                order = last_order.get(unit.id, 0) + 1
                last_order[unit.id] = order
                additions.append(
                    ArrangementItem(
                        content_type=content_type,
                        content_id=content_id,
                        title=title,
                        unit_id=unit.id,
                        order=order,
                        original_unit_id=unit.id,
                        original_order=order,
                    )
                )

        if not additions:
            return arrangement

        updated = self._arrangements.update_if_status(
            arrangement.id,
            OPEN,
            items=arrangement.items + tuple(additions),
            updated_at=_now(),
        )
        if updated is None:
            # Submitted concurrently; hand back whatever is stored now.
            return self._arrangement(arrangement.id)
        self._courses.update(arrangement.course_id, has_new_content=False)
        logger.info(
            "Synced %d new item(s) into arrangement=%s", len(additions), arrangement.id
        )
        return updated

    # ------------------------------------------------------------------
    # Coordinator transitions
    # ------------------------------------------------------------------

    def update(
        self,
        arrangement_id: UUID,
        items: list[ArrangementItem],
        principal: Principal,
    ) -> Arrangement:
        arrangement = self._arrangement(arrangement_id)
        self._authority.require(
            self._authority.can_edit(principal, arrangement),
            principal,
            "edit arrangement",
            arrangement_id=str(arrangement_id),
        )
        if arrangement.status != OPEN:
            raise NotEditable("arrangement is not open", status=arrangement.status)
        self._validate_items(arrangement.course_id, items)

        updated = self._arrangements.update_if_status(
            arrangement_id, OPEN, items=tuple(items), updated_at=_now()
        )
        if updated is None:
            raise NotEditable(
                "arrangement is not open", status=self._arrangement(arrangement_id).status
            )
        self._audit.record(
            audit_service.UPDATE,
            principal.user_id,
            "arrangement",
            arrangement_id,
            {"version": updated.version, "item_count": len(items)},
        )
        return updated

    def _validate_items(self, course_id: UUID, items: list[ArrangementItem]) -> None:
        seen: set[UUID] = set()
        for index, item in enumerate(items):
            if item.content_type not in CONTENT_TYPES:
                raise InvalidRequest(
                    "unknown content type", index=index, content_type=item.content_type
                )
            if item.content_id in seen:
                raise InvalidRequest(
                    "content listed twice", index=index, content_id=str(item.content_id)
                )
            seen.add(item.content_id)

            unit = self._catalog.get_unit(item.unit_id)
            if unit is None or unit.course_id != course_id:
                raise InvalidRequest(
                    "unit does not belong to course", index=index, unit_id=str(item.unit_id)
                )
            if item.content_type == VIDEO:
                content = self._catalog.get_video(item.content_id)
            else:
                content = self._catalog.get_document(item.content_id)
            if content is None:
                raise InvalidRequest(
                    f"{item.content_type} not found",
                    index=index,
                    content_id=str(item.content_id),
                )

    def submit(self, arrangement_id: UUID, principal: Principal) -> Arrangement:
        arrangement = self._arrangement(arrangement_id)
        self._authority.require(
            self._authority.can_edit(principal, arrangement),
            principal,
            "submit arrangement",
            arrangement_id=str(arrangement_id),
        )
        if arrangement.status != OPEN:
            raise NotEditable("arrangement is not open", status=arrangement.status)

        now = _now()
        updated = self._arrangements.update_if_status(
            arrangement_id, OPEN, status=SUBMITTED, submitted_at=now, updated_at=now
        )
        if updated is None:
            raise NotEditable(
                "arrangement is not open", status=self._arrangement(arrangement_id).status
            )
        ARRANGEMENT_TRANSITIONS.labels(transition="submitted").inc()
        logger.info("Submitted arrangement=%s version=%d", updated.id, updated.version)
        self._audit.record(
            audit_service.SUBMIT,
            principal.user_id,
            "arrangement",
            arrangement_id,
            {"version": updated.version, "item_count": len(updated.items)},
        )
        return updated

    # ------------------------------------------------------------------
    # Review
    # ------------------------------------------------------------------

    def review(
        self,
        arrangement_id: UUID,
        action: str,
        principal: Principal,
        reason: str | None = None,
    ) -> ReviewResult:
        if action not in (APPROVE, REJECT):
            raise InvalidRequest("action must be approve or reject", action=action)
        arrangement = self._arrangement(arrangement_id)
        course = self._course(arrangement.course_id)
        self._authority.require(
            self._authority.can_review_course(principal, course),
            principal,
            "review arrangement",
            course_id=str(course.id),
        )

        with self._arrangements.review_lock(arrangement_id):
            current = self._arrangement(arrangement_id)
            state = arrangement_state(current)
            if isinstance(state, Approved | Rejected):
                raise AlreadyReviewed(
                    "arrangement was already reviewed",
                    status=state.arrangement.status,
                )
            if not isinstance(state, Submitted):
                raise NotEditable(
                    "arrangement is not submitted", status=current.status
                )

            now = _now()
            applied = None
            if action == APPROVE:
                # Catalog first: a failure here leaves the arrangement submitted.
                applied = self._application.apply(state.arrangement, backfill=False)
                updated = self._arrangements.update_if_status(
                    arrangement_id,
                    SUBMITTED,
                    status=APPROVED,
                    approved_at=now,
                    approved_by=principal.user_id,
                    updated_at=now,
                )
            else:
                updated = self._arrangements.update_if_status(
                    arrangement_id,
                    SUBMITTED,
                    status=REJECTED,
                    rejected_at=now,
                    rejected_by=principal.user_id,
                    rejection_reason=reason,
                    updated_at=now,
                )
            if updated is None:
                raise AlreadyReviewed("arrangement was already reviewed")
            self._courses.update(course.id, current_arrangement_status=updated.status)

        ARRANGEMENT_TRANSITIONS.labels(transition=updated.status).inc()
        logger.info(
            "Reviewed arrangement=%s version=%d outcome=%s by=%s",
            updated.id,
            updated.version,
            updated.status,
            principal.user_id,
        )
        self._audit.record(
            audit_service.APPROVE if action == APPROVE else audit_service.REJECT,
            principal.user_id,
            "arrangement",
            arrangement_id,
            {"version": updated.version, "reason": reason},
        )
        return ReviewResult(
            updated, applied.backfill_candidates if applied is not None else ()
        )

    # ------------------------------------------------------------------
    # Reviewer and history views
    # ------------------------------------------------------------------

    def get_for_reviewer(self, course_id: UUID, principal: Principal) -> Arrangement:
        course = self._course(course_id)
        self._authority.require(
            self._authority.can_review_course(principal, course),
            principal,
            "view arrangement for review",
            course_id=str(course_id),
        )
        latest = self._arrangements.latest_for_course(
            course_id, {SUBMITTED, APPROVED, REJECTED}
        )
        if latest is None:
            raise NotFound("no arrangement submitted for course", course_id=str(course_id))
        return latest

    def history(self, course_id: UUID, principal: Principal) -> list[Arrangement]:
        course = self._course(course_id)
        self._authority.require(
            self._authority.is_coordinator(principal, course)
            or self._authority.can_review_course(principal, course),
            principal,
            "view arrangement history",
            course_id=str(course_id),
        )
        return self._arrangements.list_by_course(course_id)

    def pending_for_reviewer(self, principal: Principal) -> list[Arrangement]:
        course_ids = self._authority.reviewable_course_ids(principal)
        pending = self._arrangements.list_by_status(SUBMITTED, course_ids)
        return sorted(pending, key=lambda a: (a.submitted_at or 0, a.version))

    def launch_ready_for_reviewer(self, principal: Principal) -> list[Arrangement]:
        course_ids = self._authority.reviewable_course_ids(principal)
        ready: list[Arrangement] = []
        for arrangement in self._arrangements.list_by_status(APPROVED, course_ids):
            course = self._courses.get_by_id(arrangement.course_id)
            if course is None:
                continue
            if (
                not course.is_launched
                or arrangement.version > course.active_arrangement_version
            ):
                ready.append(arrangement)
        return sorted(ready, key=lambda a: (a.approved_at or 0, a.version))
