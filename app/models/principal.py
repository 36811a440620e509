from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True, slots=True)
class Principal:
    """Authenticated identity extracted from a validated JWT.

    Carried through the request via FastAPI's dependency system.

        user_id: subject from JWT (a user UUID)
        roles: platform roles (admin, coordinator, hod, student)

    Course- and department-scoped authority (is this user a coordinator
    of *this* course, head of *this* department) is not carried here; it
    is resolved per operation by AuthorityResolver.
    """

    user_id: UUID
    roles: frozenset[str]

    def has_role(self, role: str) -> bool:
        return role in self.roles

    def is_platform_admin(self) -> bool:
        return "admin" in self.roles
