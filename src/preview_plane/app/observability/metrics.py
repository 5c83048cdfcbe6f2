"""Prometheus metrics for the preview plane.

Registered on the default global registry so process collectors are exported
alongside them.
"""

from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# ---------------------------------------------------------------------------
# HTTP request metrics
# ---------------------------------------------------------------------------

HTTP_REQUESTS_TOTAL = Counter(
    "preview_plane_http_requests_total",
    "Total HTTP requests by method, path pattern, and status code.",
    labelnames=["method", "path", "status"],
    registry=REGISTRY,
)

HTTP_REQUEST_DURATION_SECONDS = Histogram(
    "preview_plane_http_request_duration_seconds",
    "HTTP request latency in seconds.",
    labelnames=["method", "path"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0),
    registry=REGISTRY,
)

# ---------------------------------------------------------------------------
# Provisioning metrics
# ---------------------------------------------------------------------------

PROVISION_ATTEMPTS_TOTAL = Counter(
    "preview_plane_provision_attempts_total",
    "Provisioning attempts by outcome (success, transient, fatal, validation).",
    labelnames=["outcome"],
    registry=REGISTRY,
)

PROVISION_RESULTS_TOTAL = Counter(
    "preview_plane_provision_results_total",
    "Finished provisioning tasks by final record status.",
    labelnames=["status"],
    registry=REGISTRY,
)

PROVISION_DURATION_SECONDS = Histogram(
    "preview_plane_provision_duration_seconds",
    "Wall time from task start to a terminal record status.",
    labelnames=["status"],
    buckets=(1.0, 5.0, 10.0, 30.0, 60.0, 120.0, 300.0, 600.0),
    registry=REGISTRY,
)

PROVISIONS_IN_FLIGHT = Gauge(
    "preview_plane_provisions_in_flight",
    "Provisioning tasks currently running.",
    registry=REGISTRY,
)

TEARDOWN_FAILURES_TOTAL = Counter(
    "preview_plane_teardown_failures_total",
    "Remote app deletions that failed and were swallowed.",
    registry=REGISTRY,
)


def metrics_text() -> tuple[bytes, str]:
    """Generate Prometheus exposition text and content-type header."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
