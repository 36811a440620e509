from __future__ import annotations

from dataclasses import replace
from typing import Any, Protocol
from uuid import UUID

from app.models.course import Course, LaunchRecord


class CourseRepo(Protocol):
    def get_by_id(self, course_id: UUID) -> Course | None: ...
    def add(self, course: Course) -> None: ...
    def list_by_departments(self, department_ids: set[UUID]) -> list[Course]: ...
    def update(self, course_id: UUID, **changes: Any) -> Course | None: ...
    def append_launch(
        self, course_id: UUID, record: LaunchRecord, **changes: Any
    ) -> Course | None: ...


class InMemoryCourseRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Course] = {}

    def get_by_id(self, course_id: UUID) -> Course | None:
        return self._by_id.get(course_id)

    def add(self, course: Course) -> None:
        if course.id in self._by_id:
            raise ValueError("course already exists")
        self._by_id[course.id] = course

    def list_by_departments(self, department_ids: set[UUID]) -> list[Course]:
        return [c for c in self._by_id.values() if c.department_id in department_ids]

    def update(self, course_id: UUID, **changes: Any) -> Course | None:
        c = self._by_id.get(course_id)
        if c is None:
            return None
        updated = replace(c, **changes)
        self._by_id[course_id] = updated
        return updated

    def append_launch(
        self, course_id: UUID, record: LaunchRecord, **changes: Any
    ) -> Course | None:
        c = self._by_id.get(course_id)
        if c is None:
            return None
        updated = replace(c, launch_history=c.launch_history + (record,), **changes)
        self._by_id[course_id] = updated
        return updated
