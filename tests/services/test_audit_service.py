from __future__ import annotations

import uuid

from app.repos.audit_repo import InMemoryAuditRepo
from app.services import audit_service
from app.services.audit_service import AuditService


class _BrokenRepo:
    def add(self, record) -> None:
        raise RuntimeError("audit store offline")


def test_records_are_kept_per_target() -> None:
    repo = InMemoryAuditRepo()
    svc = AuditService(repo)
    actor, target = uuid.uuid4(), uuid.uuid4()

    svc.record(audit_service.SUBMIT, actor, "arrangement", target, {"version": 1})
    svc.record(audit_service.APPROVE, actor, "arrangement", target)
    svc.record(audit_service.LAUNCH, actor, "course", uuid.uuid4())

    records = repo.list_for_target(target)
    assert [r.action for r in records] == ["SUBMIT", "APPROVE"]
    assert records[0].details == {"version": 1}
    assert records[0].actor_id == actor


def test_failed_write_never_fails_the_caller(caplog) -> None:
    svc = AuditService(_BrokenRepo())
    with caplog.at_level("ERROR", logger="app.services.audit_service"):
        svc.record(audit_service.REJECT, uuid.uuid4(), "arrangement", uuid.uuid4())
    assert any("Audit write failed" in r.getMessage() for r in caplog.records)
