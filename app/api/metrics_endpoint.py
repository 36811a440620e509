"""Prometheus metrics endpoint.

Scraped by Prometheus; returns the text exposition format, not JSON.
Besides the HTTP request metrics it carries the domain counters from
app/core/metrics.py (arrangement transitions, gatekeeper decisions,
invalidation outcomes, media backfill results, queue depth).

Restrict access at the ingress in production: label values expose
course-level activity.
"""

from __future__ import annotations

from fastapi import APIRouter
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

router = APIRouter(tags=["observability"])


@router.get("/metrics", include_in_schema=False)
async def metrics() -> Response:
    """Expose all Prometheus metrics in text exposition format."""
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
