from __future__ import annotations

import httpx
import pytest

from app.core.errors import ExternalServiceDegraded
from app.services.media_service import HttpMediaService, NullMediaService


def _service(handler) -> HttpMediaService:
    client = httpx.Client(base_url="http://media.test", transport=httpx.MockTransport(handler))
    return HttpMediaService("http://media.test", 1.0, client=client)


def test_reads_length_in_seconds() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.path)
        return httpx.Response(200, json={"id": "abc", "length": 95.6})

    assert _service(handler).get_duration("abc") == 96
    assert seen == ["/videos/abc"]


def test_falls_back_to_duration_field() -> None:
    svc = _service(lambda r: httpx.Response(200, json={"duration": 30}))
    assert svc.get_duration("abc") == 30


@pytest.mark.parametrize("body", [{}, {"length": 0}, {"length": "long"}])
def test_unusable_length_is_none(body) -> None:
    assert _service(lambda r: httpx.Response(200, json=body)).get_duration("x") is None


def test_http_error_is_degraded() -> None:
    svc = _service(lambda r: httpx.Response(503))
    with pytest.raises(ExternalServiceDegraded) as exc:
        svc.get_duration("abc")
    assert exc.value.detail["external_id"] == "abc"


def test_transport_error_is_degraded() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(ExternalServiceDegraded):
        _service(handler).get_duration("abc")


def test_non_object_body_is_degraded() -> None:
    with pytest.raises(ExternalServiceDegraded):
        _service(lambda r: httpx.Response(200, json=[1, 2])).get_duration("abc")


def test_null_service_knows_nothing() -> None:
    assert NullMediaService().get_duration("abc") is None
