"""Fire-and-forget audit trail.

A failed audit write is logged and dropped; it never fails the operation
that produced it.
"""

from __future__ import annotations

import datetime
import logging
from uuid import UUID

from app.models.audit import AuditRecord
from app.repos.audit_repo import AuditRepo

logger = logging.getLogger(__name__)

SUBMIT = "SUBMIT"
UPDATE = "UPDATE"
APPROVE = "APPROVE"
REJECT = "REJECT"
LAUNCH = "LAUNCH"
CONTENT_UPDATED = "CONTENT_UPDATED"


class AuditService:
    def __init__(self, repo: AuditRepo) -> None:
        self._repo = repo

    def record(
        self,
        action: str,
        actor_id: UUID,
        target_type: str,
        target_id: UUID,
        details: dict | None = None,
    ) -> None:
        now = int(datetime.datetime.now(datetime.UTC).timestamp())
        try:
            self._repo.add(
                AuditRecord.new(
                    action=action,
                    actor_id=actor_id,
                    target_type=target_type,
                    target_id=target_id,
                    created_at=now,
                    details=details,
                )
            )
        except Exception:
            logger.exception(
                "Audit write failed action=%s target=%s:%s",
                action,
                target_type,
                target_id,
            )
            return
        logger.info(
            "Audit action=%s actor=%s target=%s:%s",
            action,
            actor_id,
            target_type,
            target_id,
        )
