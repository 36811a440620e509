from __future__ import annotations

from typing import Protocol
from uuid import UUID

from app.models.audit import AuditRecord


class AuditRepo(Protocol):
    def add(self, record: AuditRecord) -> None: ...
    def list_for_target(self, target_id: UUID) -> list[AuditRecord]: ...


class InMemoryAuditRepo:
    def __init__(self) -> None:
        self._records: list[AuditRecord] = []

    def add(self, record: AuditRecord) -> None:
        self._records.append(record)

    def list_for_target(self, target_id: UUID) -> list[AuditRecord]:
        return [r for r in self._records if r.target_id == target_id]
