"""Prometheus metrics for synckit primitives.

Tracks registry initializer runs and channel traffic. ``get_metrics()``
renders the process registry in Prometheus exposition format so a host
application can serve it from its own /metrics endpoint.
"""
from __future__ import annotations

import logging

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

from synckit.config import settings

logger = logging.getLogger(__name__)


registry_init_duration = Histogram(
    "synckit_registry_init_seconds",
    "Duration of lazy registry initializer runs",
    ["status"],
    buckets=(0.001, 0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10, float("inf")),
)

registry_lookups = Counter(
    "synckit_registry_lookups_total",
    "Lazy registry lookups that missed the cache, by result (miss or wait)",
    ["result"],
)

channel_operations = Counter(
    "synckit_channel_operations_total",
    "Bounded channel operations by outcome",
    ["channel", "operation", "outcome"],
)

channel_wait_duration = Histogram(
    "synckit_channel_wait_seconds",
    "Time spent inside blocking channel operations",
    ["channel", "operation"],
    buckets=(0.0001, 0.001, 0.01, 0.05, 0.1, 0.5, 1, 5, 30, float("inf")),
)

channel_depth = Gauge(
    "synckit_channel_depth",
    "Items currently buffered in a bounded channel",
    ["channel"],
)


def init_histogram() -> Histogram | None:
    """Histogram for initializer timing, or None when metrics are disabled."""
    return registry_init_duration if settings.metrics_enabled else None


def record_lookup(result: str) -> None:
    if not settings.metrics_enabled:
        return
    try:
        registry_lookups.labels(result=result).inc()
    except Exception as e:
        logger.warning("Failed to record metric: %s", e)


def record_channel_op(
    channel: str,
    operation: str,
    outcome: str,
    elapsed: float | None = None,
    depth: int | None = None,
) -> None:
    """Record one channel operation. Never raises."""
    if not settings.metrics_enabled:
        return
    try:
        channel_operations.labels(channel=channel, operation=operation, outcome=outcome).inc()
        if elapsed is not None:
            channel_wait_duration.labels(channel=channel, operation=operation).observe(elapsed)
        if depth is not None:
            channel_depth.labels(channel=channel).set(depth)
    except Exception as e:
        logger.warning("Failed to record metric: %s", e)


def get_metrics() -> tuple[bytes, str]:
    """Generate Prometheus metrics output."""
    return generate_latest(REGISTRY), CONTENT_TYPE_LATEST
