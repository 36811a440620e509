"""Course- and department-scoped authority.

One resolver answers every "may this principal do X to this course"
question from two lookup tables: course -> coordinators (on the Course
row) and department -> heads (DepartmentRepo).  Platform admins pass
every check.  Operations ask once and raise Forbidden on a False answer.
"""

from __future__ import annotations

import logging
from uuid import UUID

from app.core.errors import Forbidden
from app.models.arrangement import Arrangement
from app.models.course import Course
from app.models.principal import Principal
from app.repos.course_repo import CourseRepo
from app.repos.department_repo import DepartmentRepo

logger = logging.getLogger(__name__)


class AuthorityResolver:
    def __init__(self, courses: CourseRepo, departments: DepartmentRepo) -> None:
        self._courses = courses
        self._departments = departments

    def is_admin(self, principal: Principal) -> bool:
        return principal.is_platform_admin()

    def is_coordinator(self, principal: Principal, course: Course) -> bool:
        return self.is_admin(principal) or principal.user_id in course.coordinator_ids

    def can_edit(self, principal: Principal, arrangement: Arrangement) -> bool:
        return self.is_admin(principal) or arrangement.coordinator_id == principal.user_id

    def can_review_course(self, principal: Principal, course: Course) -> bool:
        if self.is_admin(principal):
            return True
        department = self._departments.get_by_id(course.department_id)
        return department is not None and principal.user_id in department.head_ids

    def reviewable_course_ids(self, principal: Principal) -> set[UUID] | None:
        """Course ids the principal may review, or None for "all courses"."""
        if self.is_admin(principal):
            return None
        departments = self._departments.list_headed_by(principal.user_id)
        return {
            c.id
            for c in self._courses.list_by_departments({d.id for d in departments})
        }

    def require(self, allowed: bool, principal: Principal, action: str, **detail) -> None:
        if not allowed:
            logger.warning(
                "Access denied: user=%s action=%s detail=%s",
                principal.user_id,
                action,
                detail,
            )
            raise Forbidden(f"not allowed to {action}", **detail)
