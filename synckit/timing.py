"""Timing utilities for registry initializers.

``TimedOperation`` records the duration of the wrapped block to a Prometheus
histogram and emits a structured log record. Exception-safe: metric/logging
failures never break the wrapped operation.

Usage:
    from synckit.metrics import registry_init_duration
    from synckit.timing import TimedOperation

    with TimedOperation(
        histogram=registry_init_duration,
        labels={"status": "auto"},
        log_event="registry_init",
        log_extras={"key": key},
    ):
        value = initializer()
"""
from __future__ import annotations

import logging
import time

logger = logging.getLogger(__name__)


class TimedOperation:
    """Synchronous context manager for timing operations.

    A ``status`` label of ``"auto"`` is replaced with ``"success"`` or
    ``"error"`` depending on how the block exited. When ``slow_threshold``
    is set and exceeded, the log record is promoted to WARNING.
    """

    def __init__(
        self,
        *,
        histogram=None,
        labels: dict[str, str] | None = None,
        log_event: str = "timed_operation",
        log_extras: dict | None = None,
        log_level: int = logging.DEBUG,
        slow_threshold: float | None = None,
    ):
        self.histogram = histogram
        self.labels = labels or {}
        self.log_event = log_event
        self.log_extras = log_extras or {}
        self.log_level = log_level
        self.slow_threshold = slow_threshold
        self.duration_ms: int = 0
        self.success: bool = True
        self._start: float = 0.0

    def __enter__(self):
        self._start = time.monotonic()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        elapsed = time.monotonic() - self._start
        self.duration_ms = int(elapsed * 1000)
        self.success = exc_type is None

        try:
            if self.histogram is not None:
                metric_labels = dict(self.labels)
                if metric_labels.get("status") in ("auto", "__auto__"):
                    metric_labels["status"] = "success" if self.success else "error"
                self.histogram.labels(**metric_labels).observe(elapsed)
        except Exception as e:
            logger.warning("Failed to record metric: %s", e)

        try:
            level = self.log_level
            if self.slow_threshold is not None and elapsed > self.slow_threshold:
                level = max(level, logging.WARNING)
            extra = {
                "event": self.log_event,
                "duration_ms": self.duration_ms,
                "success": self.success,
                **{k: v for k, v in self.labels.items() if k != "status"},
                **self.log_extras,
            }
            if exc_type is not None:
                extra["error"] = str(exc_val)
            logger.log(level, "%s completed in %dms", self.log_event, self.duration_ms, extra=extra)
        except Exception:
            pass

        return False  # Don't suppress exceptions
