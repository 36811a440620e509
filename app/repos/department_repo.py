from __future__ import annotations

from typing import Protocol
from uuid import UUID

from app.models.course import Department


class DepartmentRepo(Protocol):
    def get_by_id(self, department_id: UUID) -> Department | None: ...
    def add(self, department: Department) -> None: ...
    def list_headed_by(self, user_id: UUID) -> list[Department]: ...


class InMemoryDepartmentRepo:
    def __init__(self) -> None:
        self._by_id: dict[UUID, Department] = {}

    def get_by_id(self, department_id: UUID) -> Department | None:
        return self._by_id.get(department_id)

    def add(self, department: Department) -> None:
        if department.id in self._by_id:
            raise ValueError("department already exists")
        self._by_id[department.id] = department

    def list_headed_by(self, user_id: UUID) -> list[Department]:
        return [d for d in self._by_id.values() if user_id in d.head_ids]
