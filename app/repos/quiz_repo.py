from __future__ import annotations

from typing import Protocol
from uuid import UUID


class QuizRepo(Protocol):
    def has_quiz_pool(self, course_id: UUID, unit_id: UUID) -> bool: ...


class InMemoryQuizRepo:
    """Quiz pools keyed by (course, unit).  Only the question count matters here."""

    def __init__(self) -> None:
        self._question_counts: dict[tuple[UUID, UUID], int] = {}

    def set_pool(self, course_id: UUID, unit_id: UUID, question_count: int) -> None:
        self._question_counts[(course_id, unit_id)] = question_count

    def has_quiz_pool(self, course_id: UUID, unit_id: UUID) -> bool:
        return self._question_counts.get((course_id, unit_id), 0) > 0
