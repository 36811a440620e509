"""Content Application Engine.

apply()   approved arrangement -> catalog (unit membership + sequences)
launch()  approved version -> live for students, progress rows migrated

apply() is the only writer of catalog ordering.  All of its writes run in
one ``catalog.transaction()`` so an arrangement lands completely or not at
all.  The media-service duration backfill happens afterwards, outside the
transaction, and never fails the caller.
"""

from __future__ import annotations

import datetime
import logging
from collections import defaultdict
from dataclasses import dataclass, replace
from uuid import UUID

from app.core.config import SETTINGS
from app.core.errors import (
    ExternalServiceDegraded,
    NotEditable,
    NotFound,
    StaleProgressError,
)
from app.core.metrics import ARRANGEMENT_TRANSITIONS, MEDIA_BACKFILL
from app.models.arrangement import APPROVED, Arrangement, ArrangementItem
from app.models.content import DOCUMENT, VIDEO
from app.models.course import Course, LaunchRecord
from app.models.principal import Principal
from app.models.progress import StudentProgress
from app.repos.arrangement_repo import ArrangementRepo
from app.repos.catalog_repo import ContentCatalog
from app.repos.course_repo import CourseRepo
from app.repos.progress_repo import ProgressRepo
from app.services import audit_service
from app.services.audit_service import AuditService
from app.services.authority import AuthorityResolver
from app.services.integrity_service import (
    SAVE_ATTEMPTS,
    ContentIntegrityEngine,
    InvalidationResult,
)
from app.services.media_service import MediaService

logger = logging.getLogger(__name__)


def _now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


@dataclass(frozen=True, slots=True)
class ApplyResult:
    arrangement_id: UUID
    units_updated: int
    items_applied: int
    skipped_items: tuple[UUID, ...] = ()
    backfill_candidates: tuple[UUID, ...] = ()


@dataclass(frozen=True, slots=True)
class BackfillResult:
    updated: int = 0
    unavailable: int = 0
    failed: int = 0


@dataclass(frozen=True, slots=True)
class MigrationFailure:
    progress_id: UUID
    student_id: UUID
    error: str


@dataclass(frozen=True, slots=True)
class MigrationResult:
    course_id: UUID
    version: int
    migrated: int = 0
    unchanged: int = 0
    failures: tuple[MigrationFailure, ...] = ()


@dataclass(frozen=True, slots=True)
class LaunchResult:
    course: Course
    arrangement: Arrangement
    content_approved: int
    migration: MigrationResult


@dataclass(frozen=True, slots=True)
class ContentUpdateResult:
    course: Course
    invalidation: InvalidationResult | None = None


class ContentApplicationEngine:
    def __init__(
        self,
        *,
        catalog: ContentCatalog,
        courses: CourseRepo,
        arrangements: ArrangementRepo,
        progress: ProgressRepo,
        integrity: ContentIntegrityEngine,
        media: MediaService,
        authority: AuthorityResolver,
        audit: AuditService,
        batch_size: int | None = None,
    ) -> None:
        self._catalog = catalog
        self._courses = courses
        self._arrangements = arrangements
        self._progress = progress
        self._integrity = integrity
        self._media = media
        self._authority = authority
        self._audit = audit
        self._batch_size = batch_size or SETTINGS.progress_batch_size

    def _course(self, course_id: UUID) -> Course:
        course = self._courses.get_by_id(course_id)
        if course is None:
            raise NotFound("course not found", course_id=str(course_id))
        return course

    # ------------------------------------------------------------------
    # apply
    # ------------------------------------------------------------------

    def apply(self, arrangement: Arrangement, *, backfill: bool = True) -> ApplyResult:
        groups: dict[UUID, list[ArrangementItem]] = defaultdict(list)
        skipped: list[UUID] = []
        for item in arrangement.items:
            unit = self._catalog.get_unit(item.unit_id)
            if unit is None or unit.course_id != arrangement.course_id:
                logger.warning(
                    "Skipping item content=%s: unit=%s not in course",
                    item.content_id,
                    item.unit_id,
                )
                skipped.append(item.content_id)
                continue
            groups[item.unit_id].append(item)

        placed: dict[UUID, list[ArrangementItem]] = {}
        for unit_id, group in groups.items():
            live: list[ArrangementItem] = []
            for item in sorted(group, key=lambda i: i.order):
                if item.content_type == VIDEO:
                    exists = self._catalog.get_video(item.content_id) is not None
                else:
                    exists = self._catalog.get_document(item.content_id) is not None
                if not exists:
                    logger.warning(
                        "Skipping dangling %s=%s in arrangement=%s",
                        item.content_type,
                        item.content_id,
                        arrangement.id,
                    )
                    skipped.append(item.content_id)
                    continue
                live.append(item)
            placed[unit_id] = live

        moved = {i.content_id for items in placed.values() for i in items}
        applied = 0
        with self._catalog.transaction():
            for unit_id, items in placed.items():
                videos = [i.content_id for i in items if i.content_type == VIDEO]
                documents = [i.content_id for i in items if i.content_type == DOCUMENT]
                self._catalog.set_unit_membership(unit_id, videos, documents)
                for sequence, content_id in enumerate(videos, start=1):
                    self._catalog.set_content_sequence(VIDEO, content_id, unit_id, sequence)
                for sequence, content_id in enumerate(documents, start=1):
                    self._catalog.set_content_sequence(
                        DOCUMENT, content_id, unit_id, sequence
                    )
                applied += len(items)

            # Units the arrangement left out must not keep members it moved away.
            for unit in self._catalog.list_units(arrangement.course_id):
                if unit.id in placed:
                    continue
                video_ids, document_ids = self._catalog.unit_membership(unit.id)
                if moved.isdisjoint(video_ids) and moved.isdisjoint(document_ids):
                    continue
                self._catalog.set_unit_membership(
                    unit.id,
                    [v for v in video_ids if v not in moved],
                    [d for d in document_ids if d not in moved],
                )

        candidates: list[UUID] = []
        for items in placed.values():
            for item in items:
                if item.content_type != VIDEO:
                    continue
                video = self._catalog.get_video(item.content_id)
                if video is not None and video.external_id and not video.duration:
                    candidates.append(video.id)
        result = ApplyResult(
            arrangement_id=arrangement.id,
            units_updated=len(placed),
            items_applied=applied,
            skipped_items=tuple(skipped),
            backfill_candidates=tuple(candidates),
        )
        logger.info(
            "Applied arrangement=%s version=%d units=%d items=%d skipped=%d",
            arrangement.id,
            arrangement.version,
            result.units_updated,
            result.items_applied,
            len(skipped),
        )
        if backfill and candidates:
            self.backfill_durations(result.backfill_candidates)
        return result

    def backfill_durations(self, video_ids: tuple[UUID, ...] | list[UUID]) -> BackfillResult:
        """Best effort: fill missing video durations from the media service."""
        updated = unavailable = failed = 0
        for video_id in video_ids:
            video = self._catalog.get_video(video_id)
            if video is None or not video.external_id:
                continue
            try:
                duration = self._media.get_duration(video.external_id)
            except ExternalServiceDegraded as e:
                failed += 1
                MEDIA_BACKFILL.labels(result="failed").inc()
                logger.warning(
                    "Duration backfill failed video=%s: %s %s", video_id, e.message, e.detail
                )
                continue
            if duration is None:
                unavailable += 1
                MEDIA_BACKFILL.labels(result="unavailable").inc()
                continue
            self._catalog.set_video_duration(video_id, duration)
            updated += 1
            MEDIA_BACKFILL.labels(result="updated").inc()

        if updated or failed:
            logger.info(
                "Duration backfill updated=%d unavailable=%d failed=%d",
                updated,
                unavailable,
                failed,
            )
        return BackfillResult(updated=updated, unavailable=unavailable, failed=failed)

    # ------------------------------------------------------------------
    # launch and migration
    # ------------------------------------------------------------------

    def launch(self, course_id: UUID, principal: Principal) -> LaunchResult:
        course = self._course(course_id)
        self._authority.require(
            self._authority.can_review_course(principal, course),
            principal,
            "launch course",
            course_id=str(course_id),
        )
        arrangement = self._arrangements.latest_for_course(course_id, {APPROVED})
        if arrangement is None:
            raise NotEditable(
                "course has no approved arrangement", course_id=str(course_id)
            )

        now = _now()
        launched = self._courses.append_launch(
            course_id,
            LaunchRecord(
                version=arrangement.version,
                launched_at=now,
                launched_by=principal.user_id,
                arrangement_id=arrangement.id,
            ),
            is_launched=True,
            active_arrangement_version=arrangement.version,
            current_arrangement_status="approved",
            has_new_content=False,
        )
        if launched is None:
            raise NotFound("course not found", course_id=str(course_id))

        approved = self._catalog.mark_approved(
            [i.content_id for i in arrangement.items if i.content_type == VIDEO],
            [i.content_id for i in arrangement.items if i.content_type == DOCUMENT],
            principal.user_id,
            now,
        )
        migration = self.migrate_student_progress(course_id, arrangement.version)

        ARRANGEMENT_TRANSITIONS.labels(transition="launched").inc()
        logger.info(
            "Launched course=%s version=%d content_approved=%d migrated=%d failures=%d",
            course_id,
            arrangement.version,
            approved,
            migration.migrated,
            len(migration.failures),
        )
        self._audit.record(
            audit_service.LAUNCH,
            principal.user_id,
            "course",
            course_id,
            {
                "version": arrangement.version,
                "arrangement_id": str(arrangement.id),
                "students_migrated": migration.migrated,
            },
        )
        return LaunchResult(
            course=launched,
            arrangement=arrangement,
            content_approved=approved,
            migration=migration,
        )

    def migrate_student_progress(self, course_id: UUID, version: int) -> MigrationResult:
        """Point every progress row at ``version``.  Unit state is untouched."""
        now = _now()
        migrated = unchanged = 0
        failures: list[MigrationFailure] = []
        for batch in self._progress.iter_batches(course_id, self._batch_size):
            for progress in batch:
                if progress.arrangement_version == version:
                    unchanged += 1
                    continue
                try:
                    self._repoint(progress, version, now)
                except Exception as e:
                    logger.exception(
                        "Progress migration failed progress=%s student=%s",
                        progress.id,
                        progress.student_id,
                    )
                    failures.append(
                        MigrationFailure(
                            progress_id=progress.id,
                            student_id=progress.student_id,
                            error=str(e),
                        )
                    )
                    continue
                migrated += 1
        return MigrationResult(
            course_id=course_id,
            version=version,
            migrated=migrated,
            unchanged=unchanged,
            failures=tuple(failures),
        )

    def _repoint(self, progress: StudentProgress, version: int, now: int) -> None:
        for _ in range(1, SAVE_ATTEMPTS):
            try:
                self._progress.save(
                    replace(progress, arrangement_version=version, updated_at=now)
                )
                return
            except StaleProgressError:
                fresh = self._progress.get_by_id(progress.id)
                if fresh is None:
                    return
                progress = fresh
        self._progress.save(replace(progress, arrangement_version=version, updated_at=now))

    # ------------------------------------------------------------------
    # content updates
    # ------------------------------------------------------------------

    def mark_content_updated(
        self,
        course_id: UUID,
        unit_id: UUID | None,
        principal: Principal,
        *,
        defer: bool = False,
    ) -> ContentUpdateResult:
        """Flag the course for relaunch and invalidate completions of ``unit_id``.

        With ``defer=True`` the invalidation is left to the caller, which
        enqueues it for the worker.
        """
        course = self._course(course_id)
        self._authority.require(
            self._authority.is_coordinator(principal, course),
            principal,
            "mark course content updated",
            course_id=str(course_id),
        )
        if unit_id is not None:
            unit = self._catalog.get_unit(unit_id)
            if unit is None or unit.course_id != course_id:
                raise NotFound("unit not found in course", unit_id=str(unit_id))

        invalidation = None
        if unit_id is not None and not defer:
            invalidation = self._integrity.invalidate(course_id, unit_id)

        updated = self._courses.update(
            course_id,
            has_new_content=True,
            last_content_update=_now(),
            current_arrangement_status="pending_relaunch",
        )
        if updated is None:
            raise NotFound("course not found", course_id=str(course_id))
        self._audit.record(
            audit_service.CONTENT_UPDATED,
            principal.user_id,
            "course",
            course_id,
            {
                "unit_id": str(unit_id) if unit_id else None,
                "deferred": defer,
                "students_affected": invalidation.students_affected if invalidation else None,
            },
        )
        return ContentUpdateResult(course=updated, invalidation=invalidation)
