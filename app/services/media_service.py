"""Media service client used for best-effort video duration backfill.

The media service owns uploads and transcoding.  We only ask it one
question: how long is this video?  Every failure (timeout, connection
error, non-2xx, malformed body) surfaces as ExternalServiceDegraded so
callers can log it and move on.
"""

from __future__ import annotations

import logging
from typing import Protocol

import httpx

from app.core.config import SETTINGS
from app.core.errors import ExternalServiceDegraded

logger = logging.getLogger(__name__)


class MediaService(Protocol):
    def get_duration(self, external_id: str) -> int | None: ...


class HttpMediaService:
    """GET {base_url}/videos/{external_id} -> {"length": seconds, ...}"""

    def __init__(
        self,
        base_url: str,
        timeout_seconds: float,
        client: httpx.Client | None = None,
    ) -> None:
        self._client = client or httpx.Client(
            base_url=base_url, timeout=timeout_seconds
        )

    def get_duration(self, external_id: str) -> int | None:
        try:
            resp = self._client.get(f"/videos/{external_id}")
            resp.raise_for_status()
            body = resp.json()
        except (httpx.HTTPError, ValueError) as e:
            raise ExternalServiceDegraded(
                "media service unavailable", external_id=external_id, cause=str(e)
            ) from e
        if not isinstance(body, dict):
            raise ExternalServiceDegraded(
                "media service returned an unexpected body", external_id=external_id
            )

        length = body.get("length", body.get("duration"))
        if not isinstance(length, int | float) or length <= 0:
            logger.debug("No usable duration for external_id=%s: %r", external_id, length)
            return None
        return round(length)


class NullMediaService:
    """Used when MEDIA_SERVICE_URL is unset: every duration is unknown."""

    def get_duration(self, external_id: str) -> int | None:
        return None


def build_media_service() -> MediaService:
    if SETTINGS.media_service_url:
        return HttpMediaService(
            SETTINGS.media_service_url, SETTINGS.media_timeout_seconds
        )
    return NullMediaService()
