from __future__ import annotations

from dataclasses import dataclass, replace
from uuid import UUID, uuid4

LOCKED = "locked"
IN_PROGRESS = "in-progress"
COMPLETED = "completed"
NEEDS_REVIEW = "needs_review"


@dataclass(frozen=True, slots=True)
class VideoWatch:
    video_id: UUID
    completed: bool
    watched_at: int


@dataclass(frozen=True, slots=True)
class QuizAttempt:
    score: float
    passed: bool
    attempted_at: int


@dataclass(frozen=True, slots=True)
class UnitProgress:
    unit_id: UUID
    status: str = LOCKED  # locked|in-progress|completed|needs_review
    videos_watched: tuple[VideoWatch, ...] = ()
    documents_completed: tuple[UUID, ...] = ()
    quiz_attempts: tuple[QuizAttempt, ...] = ()
    unit_quiz_passed: bool = False


@dataclass(frozen=True, slots=True)
class NewContentEntry:
    content_id: UUID
    content_type: str  # video|document
    added_at: int


@dataclass(frozen=True, slots=True)
class UnitCompletionValidation:
    """Integrity record stamped when a unit is completed.

    ``content_hash``/``content_signature`` are the unit's fingerprint at the
    moment of completion (or of the last successful revalidation).
    ``new_content_added`` only ever grows while revalidation is pending.
    """

    unit_id: UUID
    completed_at_arrangement_version: int
    content_hash: str
    content_signature: dict
    is_valid_for_current_arrangement: bool = True
    new_content_added: tuple[NewContentEntry, ...] = ()
    requires_revalidation: bool = False
    last_validated_at: int | None = None


@dataclass(frozen=True, slots=True)
class StudentProgress:
    id: UUID
    student_id: UUID
    course_id: UUID
    arrangement_version: int
    units: tuple[UnitProgress, ...] = ()
    unit_completion_validation: tuple[UnitCompletionValidation, ...] = ()
    updated_at: int | None = None
    revision: int = 0

    @staticmethod
    def new(
        *,
        student_id: UUID,
        course_id: UUID,
        arrangement_version: int,
        units: tuple[UnitProgress, ...] = (),
    ) -> StudentProgress:
        return StudentProgress(
            id=uuid4(),
            student_id=student_id,
            course_id=course_id,
            arrangement_version=arrangement_version,
            units=units,
        )

    def unit(self, unit_id: UUID) -> UnitProgress | None:
        for u in self.units:
            if u.unit_id == unit_id:
                return u
        return None

    def validation(self, unit_id: UUID) -> UnitCompletionValidation | None:
        for v in self.unit_completion_validation:
            if v.unit_id == unit_id:
                return v
        return None

    def with_unit(self, unit: UnitProgress) -> StudentProgress:
        """Return a copy with ``unit`` replacing (or appended as) its record."""
        units = [u for u in self.units if u.unit_id != unit.unit_id]
        if len(units) == len(self.units):
            return replace(self, units=self.units + (unit,))
        return replace(
            self,
            units=tuple(unit if u.unit_id == unit.unit_id else u for u in self.units),
        )

    def with_validation(self, record: UnitCompletionValidation) -> StudentProgress:
        """Upsert the validation record for ``record.unit_id``."""
        if self.validation(record.unit_id) is None:
            return replace(
                self,
                unit_completion_validation=self.unit_completion_validation + (record,),
            )
        return replace(
            self,
            unit_completion_validation=tuple(
                record if v.unit_id == record.unit_id else v
                for v in self.unit_completion_validation
            ),
        )

    # Watches and reading completions are looked up course-wide: an
    # approved rearrangement may move content between units after the
    # student consumed it.

    @property
    def completed_video_ids(self) -> frozenset[UUID]:
        return frozenset(
            w.video_id for u in self.units for w in u.videos_watched if w.completed
        )

    @property
    def completed_document_ids(self) -> frozenset[UUID]:
        return frozenset(d for u in self.units for d in u.documents_completed)
