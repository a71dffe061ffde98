"""Application metrics using the Prometheus client library.

One inventory of everything the service measures.  Modules import the
metric they own and increment/observe it at the point of action.

Counters only go up, gauges go up and down, histograms bucket
observations so Prometheus can compute percentiles.  The unified-view
metrics below are what the migration dashboards graph:

  unified_enrollments{origin="legacy"} / sum(unified_enrollments)
    -> share of enrollments still synthesized from the legacy user shape.
       It should trend to zero as the migration populates user_products.

  rate(unified_cache_reads_total{result="miss"}[5m])
    -> readers paying for a full scan; should stay near zero thanks to
       warm-up after invalidation.
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
# Unified view
# ---------------------------------------------------------------------------

CACHE_READS = Counter(
    "unified_cache_reads_total",
    "Unified enrollment cache reads by outcome",
    ["result"],  # hit|stale|miss|awaited|stale_fallback|error
)

CACHE_REFRESHES = Counter(
    "unified_cache_refreshes_total",
    "Unified enrollment cache refreshes by trigger and outcome",
    ["trigger", "result"],  # trigger: miss|stale|invalidate|warm_up
)

REFRESH_DURATION = Histogram(
    "unified_cache_refresh_duration_seconds",
    "Wall time of one unification pass",
    # A full scan over tens of thousands of users takes seconds, not ms.
    buckets=[0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)

UNIFIED_ENROLLMENTS = Gauge(
    "unified_enrollments",
    "Enrollments in the currently served unified view",
    ["origin"],  # legacy|normalized
)

UNIFICATION_SKIPPED = Counter(
    "unification_skipped_total",
    "Records skipped during unification",
    ["reason"],  # malformed_user|orphan_normalized|malformed_normalized|missing_product
)
