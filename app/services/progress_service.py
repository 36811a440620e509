"""Student progress recording.

Watches, reading completions and quiz attempts are gated by the
Progression Gatekeeper.  ``complete_unit`` is where the completion
fingerprint gets stamped, which is what later lets the integrity engine
detect content added after the fact.
"""

from __future__ import annotations

import datetime
import logging
from collections.abc import Callable
from dataclasses import replace
from uuid import UUID

from app.core.errors import (
    InvalidRequest,
    NotFound,
    ProgressConflict,
    RequirementsNotMet,
    StaleProgressError,
)
from app.models.content import DOCUMENT, VIDEO
from app.models.course import Unit
from app.models.progress import (
    COMPLETED,
    IN_PROGRESS,
    LOCKED,
    NEEDS_REVIEW,
    QuizAttempt,
    StudentProgress,
    UnitProgress,
    VideoWatch,
)
from app.repos.catalog_repo import ContentCatalog
from app.repos.course_repo import CourseRepo
from app.repos.progress_repo import ProgressRepo
from app.repos.quiz_repo import QuizRepo
from app.services.gatekeeper import AccessDecision, ProgressionGatekeeper
from app.services.integrity_service import SAVE_ATTEMPTS, ContentIntegrityEngine

logger = logging.getLogger(__name__)


def _now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


def _denied(decision: AccessDecision) -> RequirementsNotMet:
    return RequirementsNotMet(
        decision.message or "content is locked",
        reason=decision.reason,
        blocking_unit=str(decision.blocking_unit) if decision.blocking_unit else None,
        **decision.details,
    )


class ProgressService:
    def __init__(
        self,
        *,
        catalog: ContentCatalog,
        courses: CourseRepo,
        progress: ProgressRepo,
        quizzes: QuizRepo,
        integrity: ContentIntegrityEngine,
        gatekeeper: ProgressionGatekeeper,
    ) -> None:
        self._catalog = catalog
        self._courses = courses
        self._progress = progress
        self._quizzes = quizzes
        self._integrity = integrity
        self._gatekeeper = gatekeeper

    def get_or_create(self, student_id: UUID, course_id: UUID) -> StudentProgress:
        existing = self._progress.get(student_id, course_id)
        if existing is not None:
            return existing
        course = self._courses.get_by_id(course_id)
        if course is None:
            raise NotFound("course not found", course_id=str(course_id))

        units = self._catalog.list_units(course_id)
        progress = StudentProgress.new(
            student_id=student_id,
            course_id=course_id,
            arrangement_version=course.active_arrangement_version,
            units=tuple(
                UnitProgress(unit_id=u.id, status=IN_PROGRESS if i == 0 else LOCKED)
                for i, u in enumerate(units)
            ),
        )
        try:
            self._progress.add(progress)
        except ValueError:
            # Lost a concurrent enrolment; the other row wins.
            found = self._progress.get(student_id, course_id)
            if found is None:
                raise
            return found
        logger.info("Created progress student=%s course=%s", student_id, course_id)
        return progress

    def _unit(self, progress: StudentProgress, unit_id: UUID) -> Unit:
        unit = self._catalog.get_unit(unit_id)
        if unit is None or unit.course_id != progress.course_id:
            raise NotFound("unit not found in course", unit_id=str(unit_id))
        return unit

    def _started(self, progress: StudentProgress, unit_id: UUID) -> UnitProgress:
        up = progress.unit(unit_id) or UnitProgress(unit_id=unit_id)
        if up.status == LOCKED:
            up = replace(up, status=IN_PROGRESS)
        return up

    def _commit(
        self,
        progress: StudentProgress,
        change: Callable[[StudentProgress], StudentProgress],
    ) -> StudentProgress:
        """Apply ``change`` and save; on a stale save, redo it on the latest row.

        ``change`` returning its argument unchanged means nothing to write.
        """
        for attempt in range(1, SAVE_ATTEMPTS + 1):
            updated = change(progress)
            if updated is progress:
                return progress
            try:
                return self._progress.save(replace(updated, updated_at=_now()))
            except StaleProgressError:
                logger.info(
                    "Progress changed underneath write progress=%s attempt=%d",
                    progress.id,
                    attempt,
                )
                fresh = self._progress.get_by_id(progress.id)
                if fresh is None:
                    raise NotFound("progress not found", progress_id=str(progress.id))
                progress = fresh
        raise ProgressConflict(
            "progress changed concurrently, retry", progress_id=str(progress.id)
        )

    # ------------------------------------------------------------------

    def record_video_watched(
        self, progress: StudentProgress, video_id: UUID
    ) -> StudentProgress:
        return self._commit(progress, lambda p: self._watch(p, video_id))

    def _watch(self, progress: StudentProgress, video_id: UUID) -> StudentProgress:
        decision = self._gatekeeper.can_access_content(progress, VIDEO, video_id)
        if not decision.allowed:
            raise _denied(decision)
        if video_id in progress.completed_video_ids:
            return progress

        video = self._catalog.get_video(video_id)
        if video is None:
            raise NotFound("video not found", video_id=str(video_id))
        up = self._started(progress, video.unit_id)
        up = replace(
            up,
            videos_watched=up.videos_watched
            + (VideoWatch(video_id=video_id, completed=True, watched_at=_now()),),
        )
        return progress.with_unit(up)

    def record_document_completed(
        self, progress: StudentProgress, document_id: UUID
    ) -> StudentProgress:
        return self._commit(progress, lambda p: self._read(p, document_id))

    def _read(self, progress: StudentProgress, document_id: UUID) -> StudentProgress:
        decision = self._gatekeeper.can_access_content(progress, DOCUMENT, document_id)
        if not decision.allowed:
            raise _denied(decision)
        if document_id in progress.completed_document_ids:
            return progress

        document = self._catalog.get_document(document_id)
        if document is None:
            raise NotFound("document not found", document_id=str(document_id))
        up = self._started(progress, document.unit_id)
        up = replace(up, documents_completed=up.documents_completed + (document_id,))
        return progress.with_unit(up)

    def record_quiz_attempt(
        self,
        progress: StudentProgress,
        unit_id: UUID,
        score: float,
        passed: bool,
    ) -> StudentProgress:
        return self._commit(
            progress, lambda p: self._attempt_quiz(p, unit_id, score, passed)
        )

    def _attempt_quiz(
        self,
        progress: StudentProgress,
        unit_id: UUID,
        score: float,
        passed: bool,
    ) -> StudentProgress:
        self._unit(progress, unit_id)
        if not 0 <= score <= 100:
            raise InvalidRequest("score must be between 0 and 100", score=score)
        if not self._quizzes.has_quiz_pool(progress.course_id, unit_id):
            raise NotFound("unit has no quiz", unit_id=str(unit_id))
        up = progress.unit(unit_id)
        if up is None or up.status == LOCKED:
            decision = self._gatekeeper.can_access(progress, unit_id)
            if not decision.allowed:
                raise _denied(decision)

        up = self._started(progress, unit_id)
        up = replace(
            up,
            quiz_attempts=up.quiz_attempts
            + (QuizAttempt(score=score, passed=passed, attempted_at=_now()),),
            unit_quiz_passed=up.unit_quiz_passed or passed,
        )
        return progress.with_unit(up)

    def complete_unit(self, progress: StudentProgress, unit_id: UUID) -> StudentProgress:
        return self._commit(progress, lambda p: self._complete(p, unit_id))

    def _complete(self, progress: StudentProgress, unit_id: UUID) -> StudentProgress:
        unit = self._unit(progress, unit_id)
        up = progress.unit(unit_id)
        if up is not None and up.status == COMPLETED:
            return progress
        if up is not None and up.status == NEEDS_REVIEW:
            raise RequirementsNotMet(
                "unit has new content; revalidate instead", unit_id=str(unit_id)
            )

        decision = self._gatekeeper.can_access(progress, unit_id)
        if not decision.allowed:
            raise _denied(decision)

        watched = progress.completed_video_ids
        read = progress.completed_document_ids
        videos = [
            str(v.id)
            for v in self._catalog.list_videos_in_unit(unit_id)
            if not v.is_deprecated and v.id not in watched
        ]
        documents = [
            str(d.id)
            for d in self._catalog.list_documents_in_unit(unit_id)
            if not d.is_deprecated and d.id not in read
        ]
        quiz_pending = self._quizzes.has_quiz_pool(progress.course_id, unit_id) and not (
            up is not None and up.unit_quiz_passed
        )
        if videos or documents or quiz_pending:
            raise RequirementsNotMet(
                "unit requirements not met",
                unit_id=str(unit_id),
                videos_remaining=videos,
                documents_remaining=documents,
                quiz_pending=quiz_pending,
            )

        now = _now()
        done = replace(up or UnitProgress(unit_id=unit_id), status=COMPLETED)
        updated = self._integrity.stamp_completion(progress.with_unit(done), unit_id, now)

        following = [
            u for u in self._catalog.list_units(progress.course_id) if u.order > unit.order
        ]
        if following:
            nxt = updated.unit(following[0].id) or UnitProgress(unit_id=following[0].id)
            if nxt.status == LOCKED:
                updated = updated.with_unit(replace(nxt, status=IN_PROGRESS))

        logger.info("Completed unit=%s student=%s", unit_id, progress.student_id)
        return updated
