from __future__ import annotations

import datetime
import sys
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from uuid import UUID

import pytest
from fastapi.testclient import TestClient

# Ensure repo root is on sys.path so `import app` works under pytest.
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from app.main import app  # noqa: E402
from app.models.content import Document, Video  # noqa: E402
from app.models.course import Course, Department, Unit  # noqa: E402
from app.models.principal import Principal  # noqa: E402
from app.services import registry, token_service  # noqa: E402
from app.services.task_queue import task_queue  # noqa: E402


@pytest.fixture(autouse=True)
def reset_stores() -> None:
    """Clear every in-memory repository behind the registry singletons."""
    registry.course_repo._by_id.clear()
    registry.department_repo._by_id.clear()
    registry.catalog._units.clear()
    registry.catalog._videos.clear()
    registry.catalog._documents.clear()
    registry.catalog._membership.clear()
    registry.arrangement_repo._by_id.clear()
    registry.arrangement_repo._versions.clear()
    registry.arrangement_repo._review_locks.clear()
    registry.progress_repo._by_id.clear()
    registry.progress_repo._by_key.clear()
    registry.quiz_repo._question_counts.clear()
    registry.audit_repo._records.clear()


@pytest.fixture(autouse=True)
def reset_task_queue() -> None:
    """Clear task queues between tests."""
    if hasattr(task_queue, "_queues"):
        task_queue._queues.clear()  # type: ignore[union-attr]


@pytest.fixture
def client() -> TestClient:
    return TestClient(app)


def now() -> int:
    return int(datetime.datetime.now(datetime.UTC).timestamp())


def mint_token(user_id: UUID | None = None, roles: list[str] | None = None) -> str:
    """Create a valid ES256 JWT for testing."""
    return token_service.create_access_token(
        sub=str(user_id or uuid.uuid4()), roles=roles
    )


def auth(user_id: UUID, roles: list[str] | None = None) -> dict[str, str]:
    return {"Authorization": f"Bearer {mint_token(user_id, roles)}"}


def principal(user_id: UUID | None = None, *roles: str) -> Principal:
    return Principal(user_id=user_id or uuid.uuid4(), roles=frozenset(roles))


# ---------------------------------------------------------------------------
# Catalog seeding
# ---------------------------------------------------------------------------


@dataclass
class SeededCourse:
    course: Course
    department: Department
    coordinator: Principal
    head: Principal
    units: list[Unit]
    videos: dict[UUID, list[Video]] = field(default_factory=dict)
    documents: dict[UUID, list[Document]] = field(default_factory=dict)
    student: Principal = field(default_factory=lambda: principal(None, "student"))

    @property
    def course_id(self) -> UUID:
        return self.course.id

    def refresh(self) -> Course:
        course = registry.course_repo.get_by_id(self.course.id)
        assert course is not None
        self.course = course
        return course


def add_video(unit: Unit, title: str, external_id: str | None = None, duration=120) -> Video:
    existing = registry.catalog.list_videos_in_unit(unit.id)
    video = Video.new(
        unit_id=unit.id,
        title=title,
        sequence=len(existing) + 1,
        created_at=now(),
        duration=duration,
        external_id=external_id,
    )
    registry.catalog.add_video(video)
    return video


def add_document(unit: Unit, title: str) -> Document:
    existing = registry.catalog.list_documents_in_unit(unit.id)
    document = Document.new(
        unit_id=unit.id, title=title, sequence=len(existing) + 1, created_at=now()
    )
    registry.catalog.add_document(document)
    return document


def seed_course(
    units: int = 3,
    videos_per_unit: int = 2,
    documents_per_unit: int = 0,
) -> SeededCourse:
    """A department with one head, a course with one coordinator, and content."""
    head = principal(None, "hod")
    coordinator = principal(None, "coordinator")
    department = Department.new(name="Engineering", head_ids=frozenset({head.user_id}))
    registry.department_repo.add(department)
    course = Course.new(
        title="Signals and Systems",
        department_id=department.id,
        coordinator_ids=frozenset({coordinator.user_id}),
    )
    registry.course_repo.add(course)

    seeded = SeededCourse(
        course=course,
        department=department,
        coordinator=coordinator,
        head=head,
        units=[],
    )
    for order in range(1, units + 1):
        unit = Unit.new(course_id=course.id, title=f"Unit {order}", order=order)
        registry.catalog.add_unit(unit)
        seeded.units.append(unit)
        seeded.videos[unit.id] = [
            add_video(unit, f"U{order} video {n}") for n in range(1, videos_per_unit + 1)
        ]
        seeded.documents[unit.id] = [
            add_document(unit, f"U{order} reading {n}")
            for n in range(1, documents_per_unit + 1)
        ]
    return seeded


@pytest.fixture
def seeded() -> SeededCourse:
    return seed_course()


def finish_unit(seeded: SeededCourse, unit: Unit, student: Principal | None = None):
    """Watch/read everything in ``unit`` and complete it. Returns the progress row."""
    student = student or seeded.student
    svc = registry.progress
    progress = svc.get_or_create(student.user_id, seeded.course_id)
    for video in registry.catalog.list_videos_in_unit(unit.id):
        progress = svc.record_video_watched(progress, video.id)
    for document in registry.catalog.list_documents_in_unit(unit.id):
        progress = svc.record_document_completed(progress, document.id)
    return svc.complete_unit(progress, unit.id)


def launch_current_order(seeded: SeededCourse):
    """Coordinator opens, submits; head approves and launches. Returns the LaunchResult."""
    view = registry.workflow.get_or_create(seeded.course_id, seeded.coordinator)
    registry.workflow.submit(view.arrangement.id, seeded.coordinator)
    registry.workflow.review(view.arrangement.id, "approve", seeded.head)
    return registry.application.launch(seeded.course_id, seeded.head)
