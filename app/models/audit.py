from __future__ import annotations

from dataclasses import dataclass, field
from uuid import UUID, uuid4


@dataclass(frozen=True, slots=True)
class AuditRecord:
    """Append-only audit trail entry.

    action: SUBMIT|UPDATE|APPROVE|REJECT|LAUNCH|CONTENT_UPDATED
    """

    id: UUID
    action: str
    actor_id: UUID
    target_type: str  # arrangement|course
    target_id: UUID
    created_at: int
    details: dict = field(default_factory=dict)

    @staticmethod
    def new(
        *,
        action: str,
        actor_id: UUID,
        target_type: str,
        target_id: UUID,
        created_at: int,
        details: dict | None = None,
    ) -> AuditRecord:
        return AuditRecord(
            id=uuid4(),
            action=action,
            actor_id=actor_id,
            target_type=target_type,
            target_id=target_id,
            created_at=created_at,
            details=dict(details or {}),
        )
