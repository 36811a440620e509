"""StudentProgress persistence, one row per (student, course).

Course-wide jobs (invalidation, launch migration) never load every row at
once: they walk ``iter_batches`` and save row by row.

``save`` is conditional on ``revision``: it only replaces the stored row
if that row still carries the revision the caller read, and bumps it on
success (``UPDATE ... WHERE id = :id AND revision = :expected`` in SQL).
A miss raises StaleProgressError; callers re-read and recompute.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from dataclasses import replace
from typing import Protocol
from uuid import UUID

from app.core.errors import StaleProgressError
from app.models.progress import StudentProgress


class ProgressRepo(Protocol):
    def get(self, student_id: UUID, course_id: UUID) -> StudentProgress | None: ...
    def get_by_id(self, progress_id: UUID) -> StudentProgress | None: ...
    def add(self, progress: StudentProgress) -> None: ...
    def save(self, progress: StudentProgress) -> StudentProgress: ...
    def iter_batches(
        self, course_id: UUID, batch_size: int
    ) -> Iterator[list[StudentProgress]]: ...


class InMemoryProgressRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, StudentProgress] = {}
        self._by_key: dict[tuple[UUID, UUID], UUID] = {}
        self._lock = threading.Lock()

    def get(self, student_id: UUID, course_id: UUID) -> StudentProgress | None:
        progress_id = self._by_key.get((student_id, course_id))
        if progress_id is None:
            return None
        return self._by_id.get(progress_id)

    def get_by_id(self, progress_id: UUID) -> StudentProgress | None:
        return self._by_id.get(progress_id)

    def add(self, progress: StudentProgress) -> None:
        key = (progress.student_id, progress.course_id)
        with self._lock:
            if key in self._by_key:
                raise ValueError("progress already exists for student and course")
            self._by_key[key] = progress.id
            self._by_id[progress.id] = progress

    def save(self, progress: StudentProgress) -> StudentProgress:
        with self._lock:
            stored = self._by_id.get(progress.id)
            if stored is None:
                raise KeyError("progress not found")
            if stored.revision != progress.revision:
                raise StaleProgressError(
                    f"progress {progress.id} is at revision {stored.revision}, "
                    f"write was based on {progress.revision}"
                )
            saved = replace(progress, revision=progress.revision + 1)
            self._by_id[progress.id] = saved
            return saved

    def iter_batches(
        self, course_id: UUID, batch_size: int
    ) -> Iterator[list[StudentProgress]]:
        # Snapshot the ids, then read each row fresh when its batch comes up
        # so a long job sees writes made to later rows in the meantime.
        ids = [p.id for p in self._by_id.values() if p.course_id == course_id]
        for start in range(0, len(ids), batch_size):
            batch = [self._by_id[i] for i in ids[start : start + batch_size] if i in self._by_id]
            if batch:
                yield batch
