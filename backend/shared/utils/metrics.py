"""
Lightweight metrics collection for the match tracker.
Module-level prometheus_client metrics and the optional exposition server.
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge, Histogram, start_http_server

from shared.config import get_settings
from shared.utils.logging import get_logger

logger = get_logger(__name__)

# ── Counters ────────────────────────────────────────────────────────────
FEED_REQUESTS = Counter(
    "mt_feed_requests_total",
    "Total upstream feed HTTP requests",
    ["feed", "operation", "status"],
)
FEED_FAILURES = Counter(
    "mt_feed_failures_total",
    "Feed queries that failed (network, 5xx, anti-bot block, circuit open)",
    ["feed", "operation", "reason"],
)
RESPONSES_REJECTED = Counter(
    "mt_responses_rejected_total",
    "Upstream responses rejected by a consistency check",
    ["check"],
)
TIER_SELECTIONS = Counter(
    "mt_tier_selections_total",
    "Records produced per fallback tier",
    ["kind", "source"],
)
RESPONSE_CACHE_HITS = Counter(
    "mt_response_cache_hits_total",
    "Adapter responses served from the in-memory cache",
    ["feed"],
)
RECONCILE_CYCLES = Counter(
    "mt_reconcile_cycles_total",
    "Completed reconciliation cycles",
    ["kind"],
)

# ── Histograms ──────────────────────────────────────────────────────────
FEED_LATENCY = Histogram(
    "mt_feed_latency_seconds",
    "Feed request latency in seconds",
    ["feed"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0),
)
RECONCILE_DURATION = Histogram(
    "mt_reconcile_duration_seconds",
    "Wall time of one reconciliation cycle",
    ["kind"],
    buckets=(0.5, 1, 2.5, 5, 10, 30, 60, 120),
)

# ── Gauges ──────────────────────────────────────────────────────────────
LIVE_MATCHES = Gauge(
    "mt_live_matches",
    "Players whose today match is live",
)
RECORDS_HELD = Gauge(
    "mt_records_held",
    "Derived records currently held",
    ["kind"],
)
SCHEDULER_INTERVAL = Gauge(
    "mt_scheduler_interval_seconds",
    "Current poll cadence in seconds",
)


def start_metrics_server(port: int | None = None) -> None:
    """Start the Prometheus metrics HTTP server."""
    settings = get_settings()
    if not settings.metrics_enabled:
        return
    metrics_port = port or settings.metrics_port
    try:
        start_http_server(metrics_port)
        logger.info("metrics_server_started", port=metrics_port)
    except OSError as exc:
        logger.warning("metrics_server_failed", error=str(exc), port=metrics_port)
