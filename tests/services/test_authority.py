from __future__ import annotations

import pytest

from app.core.errors import Forbidden
from app.services import registry
from tests.conftest import SeededCourse, principal, seed_course

authority = registry.authority


def test_coordinator_and_head_are_course_scoped(seeded: SeededCourse) -> None:
    other = seed_course(units=1)
    assert authority.is_coordinator(seeded.coordinator, seeded.course)
    assert not authority.is_coordinator(seeded.coordinator, other.course)
    assert authority.can_review_course(seeded.head, seeded.course)
    assert not authority.can_review_course(seeded.head, other.course)
    assert not authority.can_review_course(seeded.coordinator, seeded.course)


def test_platform_role_alone_grants_nothing(seeded: SeededCourse) -> None:
    stranger = principal(None, "coordinator", "hod")
    assert not authority.is_coordinator(stranger, seeded.course)
    assert not authority.can_review_course(stranger, seeded.course)
    assert authority.reviewable_course_ids(stranger) == set()


def test_admin_passes_every_check(seeded: SeededCourse) -> None:
    admin = principal(None, "admin")
    assert authority.is_admin(admin)
    assert authority.is_coordinator(admin, seeded.course)
    assert authority.can_review_course(admin, seeded.course)
    assert authority.reviewable_course_ids(admin) is None


def test_reviewable_courses_follow_departments(seeded: SeededCourse) -> None:
    seed_course(units=1)
    assert authority.reviewable_course_ids(seeded.head) == {seeded.course_id}


def test_require_raises_forbidden_with_detail(seeded: SeededCourse) -> None:
    authority.require(True, seeded.head, "launch course")
    with pytest.raises(Forbidden) as exc:
        authority.require(
            False, seeded.coordinator, "launch course", course_id=str(seeded.course_id)
        )
    assert exc.value.message == "not allowed to launch course"
    assert exc.value.detail == {"course_id": str(seeded.course_id)}
