from __future__ import annotations

import threading

import pytest

from synckit.config import settings


@pytest.fixture(autouse=True)
def _quiet_settings(monkeypatch):
    """Keep tests independent of the caller's SYNCKIT_* environment."""
    monkeypatch.setattr(settings, "channel_default_capacity", 16)
    monkeypatch.setattr(settings, "slow_init_threshold", 1.0)
    monkeypatch.setattr(settings, "metrics_enabled", True)
    yield


@pytest.fixture
def run_threads():
    """Start callables on threads and join them with a bound.

    Returns a function ``start(*targets) -> list[Thread]``; every thread is
    joined at teardown and a thread still alive fails the test instead of
    hanging the run.
    """
    started: list[threading.Thread] = []

    def start(*targets):
        threads = [threading.Thread(target=t, daemon=True) for t in targets]
        for t in threads:
            t.start()
        started.extend(threads)
        return threads

    yield start

    for t in started:
        t.join(5)
    assert not any(t.is_alive() for t in started), "worker thread did not finish"
