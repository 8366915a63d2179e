"""Tests for LazyRegistry (registry.py).

This module tests:
- Single initializer run per key under concurrent access
- Failure propagation to every waiter of an attempt, and retry afterwards
- reset() semantics, including reset during an in-flight attempt
- Independent keys, same-key re-entrancy and waiter cancellation
"""
from __future__ import annotations

import logging
import threading
import time

import pytest
from prometheus_client import REGISTRY

from synckit import metrics
from synckit.config import settings
from synckit.context import with_cancel, with_timeout
from synckit.errors import (
    Cancelled,
    DeadlineExceeded,
    InitializationFailed,
    ReentrantInitialization,
)
from synckit.registry import EntryState, LazyRegistry


def _wait_count() -> float:
    return REGISTRY.get_sample_value("synckit_registry_lookups_total", {"result": "wait"}) or 0.0


def _wait_until(predicate, timeout: float = 5.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() > deadline:
            raise AssertionError("condition not reached in time")
        time.sleep(0.005)


class TestGetOrCreate:
    """Basic memoization."""

    def test_returns_initializer_value(self):
        registry = LazyRegistry()
        assert registry.get_or_create("cfg", lambda: {"a": 1}) == {"a": 1}
        assert registry.state("cfg") is EntryState.READY

    def test_cached_value_is_identical(self):
        registry = LazyRegistry()
        calls = {"count": 0}

        def init():
            calls["count"] += 1
            return object()

        first = registry.get_or_create("svc", init)
        second = registry.get_or_create("svc", init)
        assert first is second
        assert calls["count"] == 1

    def test_later_initializer_ignored_once_ready(self):
        registry = LazyRegistry()
        registry.get_or_create("k", lambda: "first")
        assert registry.get_or_create("k", lambda: "second") == "first"

    def test_none_value_is_memoized(self):
        registry = LazyRegistry()
        calls = {"count": 0}

        def init():
            calls["count"] += 1
            return None

        assert registry.get_or_create("k", init) is None
        assert registry.get_or_create("k", init) is None
        assert calls["count"] == 1
        assert registry.state("k") is EntryState.READY
        assert "k" in registry
        assert registry.get("k") is None

    def test_cached_hit_does_no_metric_work(self, monkeypatch):
        registry = LazyRegistry()
        registry.get_or_create("k", lambda: "v")

        recorded: list[str] = []
        labelled: list[dict] = []
        monkeypatch.setattr(metrics, "record_lookup", recorded.append)
        monkeypatch.setattr(
            metrics.registry_lookups, "labels", lambda **labels: labelled.append(labels)
        )

        assert registry.get_or_create("k", lambda: "other") == "v"
        assert recorded == []
        assert labelled == []

    def test_unknown_key_state_is_uninitialized(self):
        registry = LazyRegistry()
        assert registry.state("missing") is EntryState.UNINITIALIZED
        assert registry.last_error("missing") is None


class TestConcurrency:
    """Concurrent access to the same and different keys."""

    def test_db_ten_threads_single_initialization(self, run_threads):
        registry = LazyRegistry()
        calls = {"count": 0}
        barrier = threading.Barrier(10)
        results: list[object] = []
        results_lock = threading.Lock()

        def expensive_init():
            calls["count"] += 1
            time.sleep(0.05)
            return object()

        def worker():
            barrier.wait()
            value = registry.get_or_create("db", expensive_init)
            with results_lock:
                results.append(value)

        threads = run_threads(*[worker] * 10)
        for t in threads:
            t.join(5)

        assert calls["count"] == 1
        assert len(results) == 10
        assert all(r is results[0] for r in results)

    def test_waiters_share_the_same_failure(self, run_threads):
        registry = LazyRegistry()
        release = threading.Event()
        boom = RuntimeError("boom")
        calls = {"count": 0}
        errors: list[InitializationFailed] = []
        errors_lock = threading.Lock()

        def failing_init():
            calls["count"] += 1
            release.wait(5)
            raise boom

        def caller():
            try:
                registry.get_or_create("db", failing_init)
            except InitializationFailed as e:
                with errors_lock:
                    errors.append(e)

        run_threads(caller)
        _wait_until(lambda: registry.state("db") is EntryState.INITIALIZING)

        before = _wait_count()
        threads = run_threads(*[caller] * 4)
        _wait_until(lambda: _wait_count() >= before + 4)
        release.set()
        for t in threads:
            t.join(5)
        _wait_until(lambda: len(errors) == 5)

        assert calls["count"] == 1
        assert all(e.cause is boom for e in errors)
        assert all(e.__cause__ is boom for e in errors)
        assert all(e.key == "db" for e in errors)

    def test_initializer_may_use_other_keys(self):
        registry = LazyRegistry()

        def build_service():
            pool = registry.get_or_create("pool", lambda: ["conn"])
            return {"pool": pool}

        service = registry.get_or_create("service", build_service)
        assert service["pool"] is registry.get("pool")

    def test_other_keys_not_blocked_by_slow_initializer(self, run_threads):
        registry = LazyRegistry()
        release = threading.Event()

        run_threads(lambda: registry.get_or_create("slow", lambda: release.wait(5)))
        _wait_until(lambda: registry.state("slow") is EntryState.INITIALIZING)

        assert registry.get_or_create("fast", lambda: 42) == 42
        release.set()

    def test_same_key_reentry_raises(self):
        registry = LazyRegistry()

        def init():
            return registry.get_or_create("loop", init)

        with pytest.raises(InitializationFailed) as exc_info:
            registry.get_or_create("loop", init)
        assert isinstance(exc_info.value.cause, ReentrantInitialization)
        assert registry.state("loop") is EntryState.FAILED


class TestFailureAndRetry:
    """Failed attempts leave the key retryable."""

    def test_retry_after_failure(self):
        registry = LazyRegistry()

        def bad():
            raise ValueError("no db")

        with pytest.raises(InitializationFailed):
            registry.get_or_create("db", bad)

        assert registry.state("db") is EntryState.FAILED
        assert isinstance(registry.last_error("db"), ValueError)
        assert "db" not in registry

        assert registry.get_or_create("db", lambda: "connected") == "connected"
        assert registry.state("db") is EntryState.READY
        assert registry.last_error("db") is None

    def test_base_exception_reraised_to_owner(self):
        registry = LazyRegistry()

        def interrupted():
            raise KeyboardInterrupt()

        with pytest.raises(KeyboardInterrupt):
            registry.get_or_create("k", interrupted)
        assert registry.state("k") is EntryState.FAILED


class TestReset:
    """reset() and inspection helpers."""

    def test_reset_forces_reinitialization(self):
        registry = LazyRegistry()
        first = registry.get_or_create("k", object)
        registry.reset("k")

        assert registry.state("k") is EntryState.UNINITIALIZED
        with pytest.raises(KeyError):
            registry.get("k")
        assert registry.get_or_create("k", object) is not first

    def test_reset_unknown_key_is_noop(self):
        registry = LazyRegistry()
        registry.reset("never-seen")
        assert registry.keys() == []

    def test_reset_during_initialization_does_not_memoize(self, run_threads):
        registry = LazyRegistry()
        release = threading.Event()
        results: list[str] = []

        def slow():
            release.wait(5)
            return "stale"

        threads = run_threads(lambda: results.append(registry.get_or_create("k", slow)))
        _wait_until(lambda: registry.state("k") is EntryState.INITIALIZING)
        registry.reset("k")
        release.set()
        threads[0].join(5)

        assert results == ["stale"]
        assert registry.state("k") is EntryState.UNINITIALIZED
        assert registry.get_or_create("k", lambda: "fresh") == "fresh"

    def test_contains_len_keys_and_clear(self):
        registry = LazyRegistry(name="services")
        registry.get_or_create("a", lambda: 1)
        registry.get_or_create("b", lambda: 2)
        with pytest.raises(InitializationFailed):
            registry.get_or_create("c", lambda: 1 / 0)

        assert "a" in registry
        assert "c" not in registry
        assert len(registry) == 2
        assert sorted(registry.keys()) == ["a", "b", "c"]

        registry.clear()
        assert len(registry) == 0
        assert "services" in repr(registry)


class TestWaiterCancellation:
    """Cancelling a waiter does not disturb the attempt it joined."""

    def test_cancelled_waiter_raises_and_attempt_completes(self, run_threads):
        registry = LazyRegistry()
        release = threading.Event()
        owner_result: list[str] = []
        waiter_errors: list[Exception] = []
        ctx = with_cancel()

        run_threads(lambda: owner_result.append(registry.get_or_create("k", lambda: release.wait(5) and "v")))
        _wait_until(lambda: registry.state("k") is EntryState.INITIALIZING)

        def waiter():
            try:
                registry.get_or_create("k", lambda: "other", ctx=ctx)
            except Cancelled as e:
                waiter_errors.append(e)

        before = _wait_count()
        threads = run_threads(waiter)
        _wait_until(lambda: _wait_count() >= before + 1)
        ctx.cancel()
        threads[0].join(2)

        assert len(waiter_errors) == 1
        assert not isinstance(waiter_errors[0], DeadlineExceeded)
        release.set()
        _wait_until(lambda: owner_result == ["v"])
        assert registry.get("k") == "v"

    def test_waiter_deadline(self, run_threads):
        registry = LazyRegistry()
        release = threading.Event()

        run_threads(lambda: registry.get_or_create("k", lambda: release.wait(5)))
        _wait_until(lambda: registry.state("k") is EntryState.INITIALIZING)

        start = time.monotonic()
        with pytest.raises(DeadlineExceeded):
            registry.get_or_create("k", lambda: None, ctx=with_timeout(0.05))
        assert time.monotonic() - start < 2.0
        release.set()


class TestInstrumentation:
    """Slow initializers are logged."""

    def test_slow_initializer_logs_warning(self, monkeypatch, caplog):
        monkeypatch.setattr(settings, "slow_init_threshold", 0.0)
        registry = LazyRegistry()

        def slow():
            time.sleep(0.01)
            return 1

        with caplog.at_level(logging.WARNING, logger="synckit.timing"):
            registry.get_or_create("slow-key", slow)

        records = [r for r in caplog.records if getattr(r, "event", None) == "registry_init"]
        assert records
        assert records[0].key == "slow-key"
        assert records[0].success is True

    def test_metrics_disabled_still_initializes(self, monkeypatch):
        monkeypatch.setattr(settings, "metrics_enabled", False)
        registry = LazyRegistry()
        assert registry.get_or_create("k", lambda: "v") == "v"
