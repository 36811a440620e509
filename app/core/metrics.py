"""Application metrics using the Prometheus client library.

Every metric the service exports is defined here, in one inventory.
Modules import the metric they own and increment/observe it at the
point of action.

HTTP metrics are populated by MetricsMiddleware.  The domain metrics
below answer the operational questions this service gets asked:

  - How many arrangements moved through each workflow transition?
    (arrangement_transitions_total)
  - Why are students being denied access to units?
    (unit_access_decisions_total, labelled by decision reason)
  - How many completed units did a content upload invalidate, and how
    many student records failed to process?
    (content_invalidations_total)
  - Is the media service healthy enough to backfill durations?
    (media_backfill_total)

Prometheus scrapes /metrics (see app/api/metrics_endpoint.py).
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram

# ---------------------------------------------------------------------------
# HTTP metrics (populated by the MetricsMiddleware)
# ---------------------------------------------------------------------------

REQUEST_COUNT = Counter(
    "http_requests_total",
    "Total HTTP requests by method, endpoint, and status code",
    ["method", "endpoint", "status_code"],
)

REQUEST_DURATION = Histogram(
    "http_request_duration_seconds",
    "HTTP request duration in seconds",
    ["method", "endpoint"],
    buckets=[0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)

ACTIVE_REQUESTS = Gauge(
    "http_active_requests",
    "Number of HTTP requests currently being processed",
)

# ---------------------------------------------------------------------------
# Domain metrics
# ---------------------------------------------------------------------------

ARRANGEMENT_TRANSITIONS = Counter(
    "arrangement_transitions_total",
    "Arrangement workflow transitions",
    ["transition"],  # created|synced|updated|submitted|approved|rejected|launched
)

UNIT_ACCESS_DECISIONS = Counter(
    "unit_access_decisions_total",
    "Progression gatekeeper decisions by reason",
    ["reason"],  # first_unit|all_prerequisites_met|previous_unit_*
)

CONTENT_INVALIDATIONS = Counter(
    "content_invalidations_total",
    "Student unit records processed by content invalidation",
    ["outcome"],  # invalidated|unchanged|failed
)

MEDIA_BACKFILL = Counter(
    "media_backfill_total",
    "Video duration backfill attempts against the media service",
    ["result"],  # updated|unavailable|failed
)

QUEUE_DEPTH = Gauge(
    "task_queue_depth",
    "Number of tasks waiting in a queue",
    ["queue_name"],  # "content_invalidation", "duration_backfill"
)
