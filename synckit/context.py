"""Cancellation contexts for blocking primitives.

Every blocking call in synckit (channel put/take, waiting on another
thread's registry initializer) accepts an optional ``ctx``. A context fires
either when ``cancel()`` is called or when its deadline passes, and a fired
context makes the blocked call raise ``Cancelled`` (or ``DeadlineExceeded``).

Explicit cancellation runs the wake-up callbacks registered through
``on_cancel()`` so that waiters parked on a condition variable return
promptly. Deadlines need no callbacks: waiters already sleep for at most
``remaining()`` seconds and re-check on wake-up.

Usage:
    with with_timeout(2.0) as ctx:
        item = channel.take(ctx)
"""

from __future__ import annotations

import logging
import threading
import time
from contextlib import contextmanager
from typing import Callable, Generator, Optional

from synckit.errors import Cancelled, DeadlineExceeded

logger = logging.getLogger(__name__)


class Context:
    """A one-way cancellation signal with an optional deadline and parent."""

    def __init__(self, parent: Optional["Context"] = None, timeout: float | None = None):
        self._lock = threading.Lock()
        self._event = threading.Event()
        self._callbacks: dict[int, Callable[[], None]] = {}
        self._next_token = 0
        self._cause: type[Cancelled] | None = None
        self._reason = ""
        self._parent = parent
        self._parent_token: int | None = None

        deadline = None
        if timeout is not None:
            deadline = time.monotonic() + max(0.0, float(timeout))
        if parent is not None and parent.deadline is not None:
            deadline = parent.deadline if deadline is None else min(deadline, parent.deadline)
        self._deadline = deadline

        if parent is not None:
            self._parent_token = parent._add_callback(self._cancel_from_parent)
            if self._parent_token is None:
                # Parent already fired before we could link to it.
                self._fire(parent._cause or Cancelled, parent._reason or "parent context cancelled")

    def __enter__(self) -> "Context":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cancel()
        return False

    def __repr__(self) -> str:
        state = "cancelled" if self.cancelled else "active"
        return f"<Context {state} deadline={self._deadline}>"

    @property
    def deadline(self) -> float | None:
        """Monotonic deadline, or None when the context has no timeout."""
        return self._deadline

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._expire()
            return True
        return False

    @property
    def error(self) -> Cancelled | None:
        """A fresh exception describing why the context fired, or None."""
        if not self.cancelled:
            return None
        return self._cause(self._reason)

    def remaining(self) -> float | None:
        """Seconds until the deadline (never negative), None without one."""
        if self._event.is_set():
            return 0.0
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        error = self.error
        if error is not None:
            raise error

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the context fires or ``timeout`` elapses.

        Returns True if the context fired.
        """
        remaining = self.remaining()
        if remaining is not None:
            timeout = remaining if timeout is None else min(timeout, remaining)
        self._event.wait(timeout)
        return self.cancelled

    def cancel(self, reason: str = "context cancelled") -> None:
        """Fire the context. Idempotent; later calls keep the first cause."""
        self._fire(Cancelled, reason)

    @contextmanager
    def on_cancel(self, callback: Callable[[], None]) -> Generator[None, None, None]:
        """Register ``callback`` to run on explicit cancellation while in scope.

        The callback is not invoked if the context has already fired; callers
        must check ``cancelled`` after entering.
        """
        token = self._add_callback(callback)
        try:
            yield
        finally:
            if token is not None:
                self._remove_callback(token)

    def _add_callback(self, callback: Callable[[], None]) -> int | None:
        with self._lock:
            if self._event.is_set():
                return None
            token = self._next_token
            self._next_token += 1
            self._callbacks[token] = callback
            return token

    def _remove_callback(self, token: int) -> None:
        with self._lock:
            self._callbacks.pop(token, None)

    def _cancel_from_parent(self) -> None:
        parent = self._parent
        cause = parent._cause if parent is not None and parent._cause else Cancelled
        reason = parent._reason if parent is not None and parent._reason else "parent context cancelled"
        self._fire(cause, reason)

    def _expire(self) -> None:
        # Deadline expiry only records the cause; sleeping waiters wake on
        # their own timeout so no callbacks run here.
        with self._lock:
            if self._event.is_set():
                return
            self._cause = DeadlineExceeded
            self._reason = "context deadline exceeded"
            self._event.set()
            self._callbacks.clear()
        self._detach()

    def _fire(self, cause: type[Cancelled], reason: str) -> None:
        with self._lock:
            if self._event.is_set():
                return
            self._cause = cause
            self._reason = reason
            self._event.set()
            callbacks = list(self._callbacks.values())
            self._callbacks.clear()
        self._detach()

        for callback in callbacks:
            try:
                callback()
            except Exception as e:
                logger.warning("Cancellation callback failed: %s", e)

    def _detach(self) -> None:
        parent, token = self._parent, self._parent_token
        self._parent_token = None
        if parent is not None and token is not None:
            parent._remove_callback(token)


def with_cancel(parent: Context | None = None) -> Context:
    """Return a context that fires on ``cancel()`` or when ``parent`` does."""
    return Context(parent=parent)


def with_timeout(seconds: float, parent: Context | None = None) -> Context:
    """Return a context that fires after ``seconds`` (or with ``parent``)."""
    return Context(parent=parent, timeout=seconds)
