"""Course lifecycle endpoints: launch, content-updated, impact analysis."""

from __future__ import annotations

import asyncio
import uuid

from fastapi.testclient import TestClient

from app.services import registry
from app.services.task_queue import CONTENT_INVALIDATION, task_queue
from tests.conftest import SeededCourse, add_video, auth, finish_unit

BASE = "/v1/courses"


def _approve(seeded: SeededCourse) -> None:
    view = registry.workflow.get_or_create(seeded.course_id, seeded.coordinator)
    registry.workflow.submit(view.arrangement.id, seeded.coordinator)
    registry.workflow.review(view.arrangement.id, "approve", seeded.head)


def _held_back_student(seeded: SeededCourse) -> None:
    """Student finished unit 1, then a video was added to it."""
    finish_unit(seeded, seeded.units[0])
    add_video(seeded.units[0], "late addition")


# ---- launch ----


def test_launch_approved_arrangement(client: TestClient, seeded: SeededCourse) -> None:
    registry.progress.get_or_create(seeded.student.user_id, seeded.course_id)
    _approve(seeded)

    resp = client.post(
        f"{BASE}/{seeded.course_id}/launch", headers=auth(seeded.head.user_id, ["hod"])
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["version"] == 1
    assert body["content_approved"] == 6
    assert body["students_migrated"] == 1
    assert body["failures"] == []
    assert seeded.refresh().is_launched is True


def test_launch_without_approval(client: TestClient, seeded: SeededCourse) -> None:
    resp = client.post(
        f"{BASE}/{seeded.course_id}/launch", headers=auth(seeded.head.user_id, ["hod"])
    )
    assert resp.status_code == 409
    assert resp.json()["error"] == "NotEditable"


def test_launch_needs_department_head(client: TestClient, seeded: SeededCourse) -> None:
    _approve(seeded)
    resp = client.post(
        f"{BASE}/{seeded.course_id}/launch",
        headers=auth(seeded.coordinator.user_id, ["coordinator"]),
    )
    assert resp.status_code == 403
    assert seeded.refresh().is_launched is False


# ---- content-updated ----


def test_content_updated_inline(client: TestClient, seeded: SeededCourse) -> None:
    _held_back_student(seeded)
    resp = client.post(
        f"{BASE}/{seeded.course_id}/content-updated",
        json={"unit_id": str(seeded.units[0].id)},
        headers=auth(seeded.coordinator.user_id, ["coordinator"]),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["has_new_content"] is True
    assert body["current_arrangement_status"] == "pending_relaunch"
    assert body["task_id"] is None
    assert body["invalidation"]["students_affected"] == 1
    assert body["invalidation"]["progressions_blocked"] == 1
    assert body["invalidation"]["failures"] == []


def test_content_updated_deferred(client: TestClient, seeded: SeededCourse) -> None:
    _held_back_student(seeded)
    resp = client.post(
        f"{BASE}/{seeded.course_id}/content-updated",
        json={"unit_id": str(seeded.units[0].id), "defer": True},
        headers=auth(seeded.coordinator.user_id, ["coordinator"]),
    )
    assert resp.status_code == 202
    body = resp.json()
    assert body["invalidation"] is None
    assert body["task_id"]

    task = asyncio.run(task_queue.dequeue(CONTENT_INVALIDATION))
    assert task.id == body["task_id"]
    assert task.payload == {
        "course_id": str(seeded.course_id),
        "unit_id": str(seeded.units[0].id),
    }


def test_content_updated_without_unit(client: TestClient, seeded: SeededCourse) -> None:
    resp = client.post(
        f"{BASE}/{seeded.course_id}/content-updated",
        json={"defer": True},
        headers=auth(seeded.coordinator.user_id, ["coordinator"]),
    )
    assert resp.status_code == 200
    assert resp.json()["task_id"] is None
    assert asyncio.run(task_queue.queue_length(CONTENT_INVALIDATION)) == 0


def test_content_updated_by_student(client: TestClient, seeded: SeededCourse) -> None:
    resp = client.post(
        f"{BASE}/{seeded.course_id}/content-updated",
        json={},
        headers=auth(seeded.student.user_id),
    )
    assert resp.status_code == 403


# ---- impact analysis ----


def test_impact_analysis_is_admin_only(client: TestClient, seeded: SeededCourse) -> None:
    url = f"{BASE}/{seeded.course_id}/impact-analysis"
    assert client.get(url).status_code == 401
    assert client.get(url, headers=auth(seeded.head.user_id, ["hod"])).status_code == 403


def test_impact_analysis_counts(client: TestClient, seeded: SeededCourse) -> None:
    _held_back_student(seeded)
    registry.integrity.invalidate(seeded.course_id, seeded.units[0].id)
    admin = auth(uuid.uuid4(), ["admin"])

    resp = client.get(f"{BASE}/{seeded.course_id}/impact-analysis", headers=admin)
    assert resp.status_code == 200
    first, second, third = resp.json()
    assert first["unit_id"] == str(seeded.units[0].id)
    assert first["students_total"] == 1
    assert first["students_needing_review"] == 1
    assert first["students_blocked"] == 1
    assert second["students_needing_review"] == third["students_needing_review"] == 0

    one = client.get(
        f"{BASE}/{seeded.course_id}/impact-analysis",
        params={"unit_id": str(seeded.units[1].id)},
        headers=admin,
    )
    assert [u["unit_id"] for u in one.json()] == [str(seeded.units[1].id)]


def test_impact_analysis_unknown_course(client: TestClient) -> None:
    resp = client.get(
        f"{BASE}/{uuid.uuid4()}/impact-analysis", headers=auth(uuid.uuid4(), ["admin"])
    )
    assert resp.status_code == 404
