"""
portal_sdk.tier0_core.metrics
───────────────────────────────
Counters and histograms with standard naming and labels, plus the portal's
own instruments (cache lookups, read fallbacks, uploads).

Minimal stack: prometheus-client
Configure via: PORTAL_METRICS_PORT (default: 8001)
"""
from __future__ import annotations

import os
from typing import Callable

from prometheus_client import Counter, Histogram, start_http_server

# Standard labels applied to every metric
_DEFAULT_LABELS = ["service", "env"]
_SERVICE = os.getenv("APP_NAME", "portal")
_ENV = os.getenv("APP_ENV", "development")
_DEFAULT_LABEL_VALUES = {"service": _SERVICE, "env": _ENV}


def counter(name: str, description: str, labels: list[str] | None = None) -> Callable:
    """
    Create a counter with standard portal labels.

    Usage:
        lookups = counter("portal_cache_lookups_total", "Cache lookups", ["cache", "result"])
        lookups(cache="data", result="hit").inc()
    """
    all_labels = _DEFAULT_LABELS + (labels or [])
    c = Counter(name, description, all_labels)

    def _counter(**extra_labels: str) -> Counter:
        return c.labels(**_DEFAULT_LABEL_VALUES, **extra_labels)

    return _counter


def histogram(
    name: str,
    description: str,
    labels: list[str] | None = None,
    buckets: tuple = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 8.0, 15.0, 30.0),
) -> Callable:
    """
    Create a histogram with standard portal labels.

    Usage:
        duration = histogram("portal_upload_duration_seconds", "Upload duration")
        duration(outcome="success").observe(1.2)
    """
    all_labels = _DEFAULT_LABELS + (labels or [])
    h = Histogram(name, description, all_labels, buckets=buckets)

    def _histogram(**extra_labels: str) -> Histogram:
        return h.labels(**_DEFAULT_LABEL_VALUES, **extra_labels)

    return _histogram


def start_metrics_server(port: int | None = None) -> None:
    """
    Start the Prometheus HTTP metrics server on a dedicated port.
    Call once at application startup.
    """
    port = port or int(os.getenv("PORTAL_METRICS_PORT", "8001"))
    start_http_server(port)


# ── Portal instruments ────────────────────────────────────────────────────────

cache_lookups = counter(
    "portal_cache_lookups_total",
    "TTL cache lookups by outcome (hit, miss, coalesced)",
    ["cache", "result"],
)
read_fallbacks = counter(
    "portal_read_fallbacks_total",
    "Read paths served from the fallback dataset",
    ["resource", "reason"],
)
uploads = counter(
    "portal_uploads_total",
    "Upload pipeline terminal outcomes",
    ["outcome"],
)
upload_duration = histogram(
    "portal_upload_duration_seconds",
    "Wall time spent waiting on the blob store per upload",
    ["outcome"],
)


__all__ = [
    "counter", "histogram", "start_metrics_server",
    "cache_lookups", "read_fallbacks", "uploads", "upload_duration",
]
