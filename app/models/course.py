from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class LaunchRecord:
    version: int
    launched_at: int
    launched_by: UUID
    arrangement_id: UUID


@dataclass(frozen=True, slots=True)
class Course:
    id: UUID
    title: str
    department_id: UUID
    coordinator_ids: frozenset[UUID] = frozenset()
    has_new_content: bool = False
    current_arrangement_status: str = "draft"  # draft|pending_relaunch|approved|rejected
    is_launched: bool = False
    active_arrangement_version: int = 0
    launch_history: tuple[LaunchRecord, ...] = ()  # append-only
    last_content_update: int | None = None

    @staticmethod
    def new(
        *,
        title: str,
        department_id: UUID,
        coordinator_ids: frozenset[UUID] = frozenset(),
    ) -> Course:
        return Course(
            id=uuid4(),
            title=title,
            department_id=department_id,
            coordinator_ids=coordinator_ids,
        )


@dataclass(frozen=True, slots=True)
class Department:
    id: UUID
    name: str
    head_ids: frozenset[UUID] = frozenset()

    @staticmethod
    def new(*, name: str, head_ids: frozenset[UUID] = frozenset()) -> Department:
        return Department(id=uuid4(), name=name, head_ids=head_ids)


@dataclass(frozen=True, slots=True)
class Unit:
    id: UUID
    course_id: UUID
    title: str
    order: int

    @staticmethod
    def new(*, course_id: UUID, title: str, order: int) -> Unit:
        return Unit(id=uuid4(), course_id=course_id, title=title, order=order)
