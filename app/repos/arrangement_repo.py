"""Arrangement persistence.

Guarantees enforced here, in storage, not in the workflow code:

  1. (course_id, version) is unique.  ``add`` checks and inserts under one
     lock and raises DuplicateVersionError on a collision, the in-memory
     counterpart of the UniqueConstraint on content_arrangements.

  2. A coordinator has at most one open arrangement per course.  ``add``
     raises DuplicateOpenArrangementError under the same lock, matching
     the partial unique index on (course_id, coordinator_id).

  3. Status changes are conditional.  ``update_if_status`` applies changes
     only if the row is still in the expected status and returns None
     otherwise, the counterpart of
     ``UPDATE ... WHERE id = :id AND status = :expected``.

``review_lock`` serialises reviewers of one arrangement (SELECT ... FOR
UPDATE in SQL) so the content application step runs at most once.
"""

from __future__ import annotations

import threading
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from dataclasses import replace
from typing import Any, Protocol
from uuid import UUID

from app.core.errors import DuplicateOpenArrangementError, DuplicateVersionError
from app.models.arrangement import OPEN, Arrangement


class ArrangementRepo(Protocol):
    def get_by_id(self, arrangement_id: UUID) -> Arrangement | None: ...
    def add(self, arrangement: Arrangement) -> None: ...
    def max_version(self, course_id: UUID) -> int: ...
    def latest_for_coordinator(
        self, course_id: UUID, coordinator_id: UUID
    ) -> Arrangement | None: ...
    def latest_for_course(
        self, course_id: UUID, statuses: set[str] | None = None
    ) -> Arrangement | None: ...
    def list_by_course(self, course_id: UUID) -> list[Arrangement]: ...
    def list_by_status(
        self, status: str, course_ids: set[UUID] | None = None
    ) -> list[Arrangement]: ...
    def update_if_status(
        self, arrangement_id: UUID, expected_status: str, **changes: Any
    ) -> Arrangement | None: ...
    def review_lock(self, arrangement_id: UUID) -> AbstractContextManager[None]: ...


class InMemoryArrangementRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Arrangement] = {}
        self._versions: set[tuple[UUID, int]] = set()
        self._lock = threading.Lock()
        self._review_locks: dict[UUID, threading.Lock] = {}

    def get_by_id(self, arrangement_id: UUID) -> Arrangement | None:
        return self._by_id.get(arrangement_id)

    def add(self, arrangement: Arrangement) -> None:
        key = (arrangement.course_id, arrangement.version)
        with self._lock:
            if key in self._versions:
                raise DuplicateVersionError(
                    f"version {arrangement.version} already exists for course"
                )
            if arrangement.status == OPEN and any(
                a.status == OPEN
                and a.course_id == arrangement.course_id
                and a.coordinator_id == arrangement.coordinator_id
                for a in self._by_id.values()
            ):
                raise DuplicateOpenArrangementError(
                    "coordinator already has an open arrangement for course"
                )
            self._versions.add(key)
            self._by_id[arrangement.id] = arrangement

    def max_version(self, course_id: UUID) -> int:
        return max(
            (a.version for a in self._by_id.values() if a.course_id == course_id),
            default=0,
        )

    def latest_for_coordinator(
        self, course_id: UUID, coordinator_id: UUID
    ) -> Arrangement | None:
        candidates = [
            a
            for a in self._by_id.values()
            if a.course_id == course_id and a.coordinator_id == coordinator_id
        ]
        return max(candidates, key=lambda a: a.version, default=None)

    def latest_for_course(
        self, course_id: UUID, statuses: set[str] | None = None
    ) -> Arrangement | None:
        candidates = [
            a
            for a in self._by_id.values()
            if a.course_id == course_id and (statuses is None or a.status in statuses)
        ]
        return max(candidates, key=lambda a: a.version, default=None)

    def list_by_course(self, course_id: UUID) -> list[Arrangement]:
        found = [a for a in self._by_id.values() if a.course_id == course_id]
        return sorted(found, key=lambda a: a.version, reverse=True)

    def list_by_status(
        self, status: str, course_ids: set[UUID] | None = None
    ) -> list[Arrangement]:
        return [
            a
            for a in self._by_id.values()
            if a.status == status and (course_ids is None or a.course_id in course_ids)
        ]

    def update_if_status(
        self, arrangement_id: UUID, expected_status: str, **changes: Any
    ) -> Arrangement | None:
        with self._lock:
            a = self._by_id.get(arrangement_id)
            if a is None or a.status != expected_status:
                return None
            updated = replace(a, **changes)
            self._by_id[arrangement_id] = updated
            return updated

    @contextmanager
    def review_lock(self, arrangement_id: UUID) -> Iterator[None]:
        with self._lock:
            lock = self._review_locks.setdefault(arrangement_id, threading.Lock())
        with lock:
            yield
