"""Request context middleware: X-Request-ID and per-request log line."""

from __future__ import annotations

import logging
import uuid

from fastapi.testclient import TestClient


def test_request_id_generated_when_not_provided(client: TestClient) -> None:
    resp = client.get("/health")
    uuid.UUID(resp.headers["x-request-id"])


def test_request_id_echoed_when_provided(client: TestClient) -> None:
    resp = client.get("/health", headers={"X-Request-ID": "trace-abc-123"})
    assert resp.headers.get("x-request-id") == "trace-abc-123"


def test_request_id_present_on_error_responses(client: TestClient) -> None:
    resp = client.get(f"/v1/progress/{uuid.uuid4()}")
    assert resp.status_code == 401
    assert resp.headers.get("x-request-id") is not None


def test_request_is_logged_with_context(client: TestClient, caplog) -> None:
    with caplog.at_level(logging.INFO):
        client.get("/health", headers={"X-Request-ID": "trace-log-1"})
    records = [r for r in caplog.records if getattr(r, "request_id", None) == "trace-log-1"]
    assert records
    assert records[-1].path == "/health"
    assert records[-1].status_code == 200
