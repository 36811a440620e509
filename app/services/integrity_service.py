"""Content Integrity Engine.

A unit's *fingerprint* is a SHA-256 over a canonical JSON signature of its
videos and documents (identity, title, position, duration, upload time).
Quiz pools are not part of it, so editing a quiz never invalidates a
completed unit.

When a student completes a unit, the fingerprint is stamped onto their
progress row (UnitCompletionValidation).  Later, ``invalidate`` compares
every student's stamp against the live fingerprint.  Only *additions*
matter: content that appears in the live signature but not in the stamped
one becomes a pending requirement and the unit moves to ``needs_review``.
Removed or reordered items change the hash but never block anyone.

FLOW
----
  upload lands in unit U
    -> invalidate(course, U)          # bulk, batched, per-row failures kept
       -> diff(progress, U)           # per student
       -> U: completed -> needs_review, newContentAdded += additions
  student consumes the new items
    -> check_new_content_completion   # what is still missing?
    -> mark_revalidation_complete     # needs_review -> completed, restamp
"""

from __future__ import annotations

import datetime
import hashlib
import json
import logging
from dataclasses import dataclass, replace
from uuid import UUID

from app.core.config import SETTINGS
from app.core.errors import (
    NotFound,
    ProgressConflict,
    RequirementsNotMet,
    StaleProgressError,
)
from app.core.metrics import CONTENT_INVALIDATIONS
from app.models.content import DOCUMENT, VIDEO
from app.models.progress import (
    COMPLETED,
    LOCKED,
    NEEDS_REVIEW,
    NewContentEntry,
    StudentProgress,
    UnitCompletionValidation,
)
from app.repos.catalog_repo import ContentCatalog
from app.repos.progress_repo import ProgressRepo

logger = logging.getLogger(__name__)

# Re-read and recompute a progress row at most this many times when a
# concurrent write bumps its revision first.
SAVE_ATTEMPTS = 3


def _now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


@dataclass(frozen=True, slots=True)
class ContentFingerprint:
    content_hash: str
    signature: dict
    video_ids: tuple[UUID, ...]
    document_ids: tuple[UUID, ...]


@dataclass(frozen=True, slots=True)
class ChangeReport:
    unit_id: UUID
    is_completed: bool
    has_changes: bool
    requires_revalidation: bool
    current: ContentFingerprint
    previous_hash: str | None = None
    new_video_ids: tuple[UUID, ...] = ()
    new_document_ids: tuple[UUID, ...] = ()

    @property
    def total_new_items(self) -> int:
        return len(self.new_video_ids) + len(self.new_document_ids)


@dataclass(frozen=True, slots=True)
class InvalidationFailure:
    progress_id: UUID
    student_id: UUID
    error: str


@dataclass(frozen=True, slots=True)
class InvalidationResult:
    course_id: UUID
    unit_id: UUID
    content_hash: str
    students_scanned: int = 0
    students_affected: int = 0
    units_invalidated: int = 0
    progressions_blocked: int = 0
    failures: tuple[InvalidationFailure, ...] = ()


@dataclass(frozen=True, slots=True)
class PendingItem:
    content_id: UUID
    content_type: str
    added_at: int


@dataclass(frozen=True, slots=True)
class NewContentCompletion:
    has_new_requirements: bool
    is_complete: bool
    total_new_items: int = 0
    completed_items: int = 0
    incomplete_items: tuple[PendingItem, ...] = ()


@dataclass(frozen=True, slots=True)
class UnitReview:
    unit_id: UUID
    title: str
    order: int
    new_content: tuple[PendingItem, ...]
    completion: NewContentCompletion


@dataclass(frozen=True, slots=True)
class UnitImpact:
    unit_id: UUID
    title: str
    order: int
    students_total: int
    students_needing_review: int
    students_blocked: int


class ContentIntegrityEngine:
    def __init__(
        self,
        catalog: ContentCatalog,
        progress: ProgressRepo,
        batch_size: int | None = None,
    ) -> None:
        self._catalog = catalog
        self._progress = progress
        self._batch_size = batch_size or SETTINGS.progress_batch_size

    # ------------------------------------------------------------------
    # Fingerprint and diff
    # ------------------------------------------------------------------

    def fingerprint(self, unit_id: UUID) -> ContentFingerprint:
        if self._catalog.get_unit(unit_id) is None:
            raise NotFound("unit not found", unit_id=str(unit_id))

        videos = self._catalog.list_videos_in_unit(unit_id)
        documents = self._catalog.list_documents_in_unit(unit_id)
        signature = {
            "videos": [
                {
                    "id": str(v.id),
                    "title": v.title,
                    "order": v.sequence,
                    "duration": v.duration,
                    "uploaded_at": v.created_at,
                }
                for v in videos
            ],
            "documents": [
                {
                    "id": str(d.id),
                    "title": d.title,
                    "order": d.sequence,
                    "uploaded_at": d.created_at,
                }
                for d in documents
            ],
        }
        canonical = json.dumps(signature, sort_keys=True, separators=(",", ":"))
        return ContentFingerprint(
            content_hash=hashlib.sha256(canonical.encode("utf-8")).hexdigest(),
            signature=signature,
            video_ids=tuple(v.id for v in videos),
            document_ids=tuple(d.id for d in documents),
        )

    def diff(self, progress: StudentProgress, unit_id: UUID) -> ChangeReport:
        return self._compare(progress, unit_id, self.fingerprint(unit_id))

    def _compare(
        self,
        progress: StudentProgress,
        unit_id: UUID,
        current: ContentFingerprint,
    ) -> ChangeReport:
        unit = progress.unit(unit_id)
        record = progress.validation(unit_id)

        # Nothing to protect until the unit has been completed and stamped.
        if unit is None or unit.status not in (COMPLETED, NEEDS_REVIEW) or record is None:
            return ChangeReport(
                unit_id=unit_id,
                is_completed=False,
                has_changes=False,
                requires_revalidation=False,
                current=current,
            )

        if record.content_hash == current.content_hash:
            return ChangeReport(
                unit_id=unit_id,
                is_completed=True,
                has_changes=False,
                requires_revalidation=False,
                current=current,
                previous_hash=record.content_hash,
            )

        stamped = record.content_signature or {}
        seen_videos = {v["id"] for v in stamped.get("videos", [])}
        seen_documents = {d["id"] for d in stamped.get("documents", [])}
        new_videos = tuple(v for v in current.video_ids if str(v) not in seen_videos)
        new_documents = tuple(
            d for d in current.document_ids if str(d) not in seen_documents
        )
        return ChangeReport(
            unit_id=unit_id,
            is_completed=True,
            has_changes=True,
            requires_revalidation=bool(new_videos or new_documents),
            current=current,
            previous_hash=record.content_hash,
            new_video_ids=new_videos,
            new_document_ids=new_documents,
        )

    def stamp_completion(
        self, progress: StudentProgress, unit_id: UUID, now: int | None = None
    ) -> StudentProgress:
        """Record the unit's current fingerprint as the completion baseline."""
        current = self.fingerprint(unit_id)
        record = UnitCompletionValidation(
            unit_id=unit_id,
            completed_at_arrangement_version=progress.arrangement_version,
            content_hash=current.content_hash,
            content_signature=current.signature,
            last_validated_at=now if now is not None else _now(),
        )
        return progress.with_validation(record)

    # ------------------------------------------------------------------
    # Bulk invalidation
    # ------------------------------------------------------------------

    def invalidate(self, course_id: UUID, unit_id: UUID) -> InvalidationResult:
        unit = self._catalog.get_unit(unit_id)
        if unit is None or unit.course_id != course_id:
            raise NotFound("unit not found in course", unit_id=str(unit_id))

        current = self.fingerprint(unit_id)
        later_units = {
            u.id for u in self._catalog.list_units(course_id) if u.order > unit.order
        }
        now = _now()

        scanned = affected = flipped = blocked = 0
        failures: list[InvalidationFailure] = []
        for batch in self._progress.iter_batches(course_id, self._batch_size):
            for progress in batch:
                scanned += 1
                try:
                    changed, was_completed, is_blocking = self._invalidate_fresh(
                        progress, unit_id, current, later_units, now
                    )
                except Exception as e:
                    logger.exception(
                        "Invalidation failed for progress=%s student=%s unit=%s",
                        progress.id,
                        progress.student_id,
                        unit_id,
                    )
                    failures.append(
                        InvalidationFailure(
                            progress_id=progress.id,
                            student_id=progress.student_id,
                            error=str(e),
                        )
                    )
                    CONTENT_INVALIDATIONS.labels(outcome="failed").inc()
                    continue

                if not changed:
                    CONTENT_INVALIDATIONS.labels(outcome="unchanged").inc()
                    continue
                CONTENT_INVALIDATIONS.labels(outcome="invalidated").inc()
                affected += 1
                flipped += int(was_completed)
                blocked += int(is_blocking)

        logger.info(
            "Invalidated unit=%s course=%s scanned=%d affected=%d blocked=%d failures=%d",
            unit_id,
            course_id,
            scanned,
            affected,
            blocked,
            len(failures),
        )
        return InvalidationResult(
            course_id=course_id,
            unit_id=unit_id,
            content_hash=current.content_hash,
            students_scanned=scanned,
            students_affected=affected,
            units_invalidated=flipped,
            progressions_blocked=blocked,
            failures=tuple(failures),
        )

    def _invalidate_fresh(
        self,
        progress: StudentProgress,
        unit_id: UUID,
        current: ContentFingerprint,
        later_units: set[UUID],
        now: int,
    ) -> tuple[bool, bool, bool]:
        """``_invalidate_one``, redone on the latest row when the save goes stale."""
        for attempt in range(1, SAVE_ATTEMPTS):
            try:
                return self._invalidate_one(progress, unit_id, current, later_units, now)
            except StaleProgressError:
                logger.info(
                    "Progress changed during invalidation progress=%s attempt=%d",
                    progress.id,
                    attempt,
                )
                fresh = self._progress.get_by_id(progress.id)
                if fresh is None:
                    return False, False, False
                progress = fresh
        return self._invalidate_one(progress, unit_id, current, later_units, now)

    def _invalidate_one(
        self,
        progress: StudentProgress,
        unit_id: UUID,
        current: ContentFingerprint,
        later_units: set[UUID],
        now: int,
    ) -> tuple[bool, bool, bool]:
        """Returns (changed, flipped from completed, blocks a started later unit)."""
        report = self._compare(progress, unit_id, current)
        if not report.requires_revalidation:
            return False, False, False

        unit = progress.unit(unit_id)
        record = progress.validation(unit_id)
        if unit is None or record is None:
            return False, False, False

        known = {e.content_id for e in record.new_content_added}
        additions = tuple(
            NewContentEntry(content_id=cid, content_type=VIDEO, added_at=now)
            for cid in report.new_video_ids
            if cid not in known
        ) + tuple(
            NewContentEntry(content_id=cid, content_type=DOCUMENT, added_at=now)
            for cid in report.new_document_ids
            if cid not in known
        )
        was_completed = unit.status == COMPLETED
        if not was_completed and not additions and record.requires_revalidation:
            return False, False, False

        updated = progress.with_unit(replace(unit, status=NEEDS_REVIEW)).with_validation(
            replace(
                record,
                is_valid_for_current_arrangement=False,
                requires_revalidation=True,
                last_validated_at=now,
                new_content_added=record.new_content_added + additions,
            )
        )
        self._progress.save(replace(updated, updated_at=now))

        is_blocking = any(
            u.unit_id in later_units and u.status != LOCKED for u in progress.units
        )
        return True, was_completed, is_blocking

    # ------------------------------------------------------------------
    # Revalidation
    # ------------------------------------------------------------------

    def check_new_content_completion(
        self, progress: StudentProgress, unit_id: UUID
    ) -> NewContentCompletion:
        record = progress.validation(unit_id)
        if record is None or not record.requires_revalidation:
            return NewContentCompletion(has_new_requirements=False, is_complete=True)

        watched = progress.completed_video_ids
        read = progress.completed_document_ids
        incomplete = tuple(
            PendingItem(e.content_id, e.content_type, e.added_at)
            for e in record.new_content_added
            if e.content_id not in (watched if e.content_type == VIDEO else read)
        )
        total = len(record.new_content_added)
        return NewContentCompletion(
            has_new_requirements=True,
            is_complete=not incomplete,
            total_new_items=total,
            completed_items=total - len(incomplete),
            incomplete_items=incomplete,
        )

    def mark_revalidation_complete(
        self, progress: StudentProgress, unit_id: UUID
    ) -> StudentProgress:
        for _ in range(SAVE_ATTEMPTS):
            try:
                return self._revalidate(progress, unit_id)
            except StaleProgressError:
                fresh = self._progress.get_by_id(progress.id)
                if fresh is None:
                    raise NotFound("progress not found", progress_id=str(progress.id))
                progress = fresh
        raise ProgressConflict(
            "progress changed while revalidating, retry", unit_id=str(unit_id)
        )

    def _revalidate(self, progress: StudentProgress, unit_id: UUID) -> StudentProgress:
        completion = self.check_new_content_completion(progress, unit_id)
        if not completion.has_new_requirements:
            return progress
        if not completion.is_complete:
            raise RequirementsNotMet(
                "new content must be completed first",
                unit_id=str(unit_id),
                remaining=[
                    {"content_id": str(i.content_id), "content_type": i.content_type}
                    for i in completion.incomplete_items
                ],
            )

        unit = progress.unit(unit_id)
        record = progress.validation(unit_id)
        if record is None:
            return progress
        current = self.fingerprint(unit_id)
        now = _now()

        updated = progress
        if unit is not None:
            updated = updated.with_unit(replace(unit, status=COMPLETED))
        updated = updated.with_validation(
            replace(
                record,
                content_hash=current.content_hash,
                content_signature=current.signature,
                is_valid_for_current_arrangement=True,
                requires_revalidation=False,
                new_content_added=(),
                last_validated_at=now,
            )
        )
        updated = self._progress.save(replace(updated, updated_at=now))
        logger.info(
            "Revalidated unit=%s student=%s items=%d",
            unit_id,
            progress.student_id,
            completion.total_new_items,
        )
        return updated

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def units_needing_review(self, progress: StudentProgress) -> list[UnitReview]:
        reviews: list[UnitReview] = []
        for unit in self._catalog.list_units(progress.course_id):
            up = progress.unit(unit.id)
            record = progress.validation(unit.id)
            if up is None or up.status != NEEDS_REVIEW:
                continue
            if record is None or not record.requires_revalidation:
                continue
            reviews.append(
                UnitReview(
                    unit_id=unit.id,
                    title=unit.title,
                    order=unit.order,
                    new_content=tuple(
                        PendingItem(e.content_id, e.content_type, e.added_at)
                        for e in record.new_content_added
                    ),
                    completion=self.check_new_content_completion(progress, unit.id),
                )
            )
        return reviews

    def impact_analysis(
        self, course_id: UUID, unit_id: UUID | None = None
    ) -> list[UnitImpact]:
        units = self._catalog.list_units(course_id)
        if unit_id is not None:
            units = [u for u in units if u.id == unit_id]
            if not units:
                raise NotFound("unit not found in course", unit_id=str(unit_id))

        totals = {u.id: [0, 0] for u in units}  # needing review, blocked
        order_by_id = {u.id: u.order for u in self._catalog.list_units(course_id)}
        students = 0
        for batch in self._progress.iter_batches(course_id, self._batch_size):
            for progress in batch:
                students += 1
                for unit in units:
                    up = progress.unit(unit.id)
                    record = progress.validation(unit.id)
                    if up is None or up.status != NEEDS_REVIEW:
                        continue
                    if record is None or not record.requires_revalidation:
                        continue
                    totals[unit.id][0] += 1
                    if any(
                        order_by_id.get(other.unit_id, -1) > unit.order
                        and other.status != LOCKED
                        for other in progress.units
                    ):
                        totals[unit.id][1] += 1

        return [
            UnitImpact(
                unit_id=u.id,
                title=u.title,
                order=u.order,
                students_total=students,
                students_needing_review=totals[u.id][0],
                students_blocked=totals[u.id][1],
            )
            for u in units
        ]
