"""Table-driven access-control tests.

Each row describes: endpoint, method, who is calling, expected HTTP status.
Course-scoped authority comes from the seeded course (coordinator and
department head), not from platform roles alone.
"""

from __future__ import annotations

import uuid

import pytest
from fastapi.testclient import TestClient

from app.services import token_service
from tests.conftest import SeededCourse, mint_token, seed_course


def _token(seeded: SeededCourse, who: str | None) -> str | None:
    if who is None:
        return None
    if who == "coordinator":
        return mint_token(seeded.coordinator.user_id, ["coordinator"])
    if who == "head":
        return mint_token(seeded.head.user_id, ["hod"])
    if who == "admin":
        return mint_token(uuid.uuid4(), ["admin"])
    if who == "hod-elsewhere":
        return mint_token(seed_course(units=1).head.user_id, ["hod"])
    return mint_token(seeded.student.user_id, ["student"])


_RBAC_CASES = [
    # (endpoint, method, who, expected_status)
    ("/v1/arrangements/course/{course_id}", "GET", "coordinator", 200),
    ("/v1/arrangements/course/{course_id}", "GET", "student", 403),
    ("/v1/arrangements/course/{course_id}", "GET", None, 401),
    ("/v1/arrangements/course/{course_id}/history", "GET", "head", 200),
    ("/v1/arrangements/course/{course_id}/history", "GET", "coordinator", 200),
    ("/v1/arrangements/course/{course_id}/history", "GET", "hod-elsewhere", 403),
    ("/v1/arrangements/pending", "GET", "head", 200),
    ("/v1/arrangements/pending", "GET", None, 401),
    ("/v1/courses/{course_id}/launch", "POST", "student", 403),
    ("/v1/courses/{course_id}/launch", "POST", "hod-elsewhere", 403),
    ("/v1/courses/{course_id}/launch", "POST", None, 401),
    ("/v1/courses/{course_id}/content-updated", "POST", "coordinator", 200),
    ("/v1/courses/{course_id}/content-updated", "POST", "admin", 200),
    ("/v1/courses/{course_id}/content-updated", "POST", "head", 403),
    ("/v1/courses/{course_id}/impact-analysis", "GET", "admin", 200),
    ("/v1/courses/{course_id}/impact-analysis", "GET", "coordinator", 403),
    ("/v1/progress/{course_id}", "GET", "student", 200),
    ("/v1/progress/{course_id}", "GET", None, 401),
]


def _case_id(case: tuple) -> str:
    endpoint, method, who, expected = case
    return f"{method} {endpoint} [{who or 'anon'}] -> {expected}"


@pytest.mark.parametrize(
    "endpoint,method,who,expected",
    _RBAC_CASES,
    ids=[_case_id(c) for c in _RBAC_CASES],
)
def test_rbac(
    client: TestClient,
    seeded: SeededCourse,
    endpoint: str,
    method: str,
    who: str | None,
    expected: int,
) -> None:
    token = _token(seeded, who)
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    url = endpoint.format(course_id=seeded.course_id)
    if method == "GET":
        resp = client.get(url, headers=headers)
    else:
        resp = client.post(url, json={}, headers=headers)
    assert resp.status_code == expected, resp.text


def test_expired_token_is_rejected(client: TestClient, seeded: SeededCourse) -> None:
    token = token_service.create_access_token(sub=str(uuid.uuid4()), ttl_minutes=-1)
    resp = client.get(
        f"/v1/progress/{seeded.course_id}", headers={"Authorization": f"Bearer {token}"}
    )
    assert resp.status_code == 401
    assert resp.json()["detail"] == "Token expired"


def test_garbage_token_is_rejected(client: TestClient, seeded: SeededCourse) -> None:
    resp = client.get(
        f"/v1/progress/{seeded.course_id}", headers={"Authorization": "Bearer nope"}
    )
    assert resp.status_code == 401
    assert resp.headers["WWW-Authenticate"] == "Bearer"
