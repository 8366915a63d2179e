"""Lazy singleton registries with double-checked locking.

``LazySingleton`` builds one value from a factory on first use.
``LazyRegistry`` does the same for a keyed set of values: the first caller
for an uninitialized key runs the initializer, and every concurrent caller of
that key waits for the same attempt and receives the same value or the same
``InitializationFailed``.

Locking layout:
  - the registry lock guards only the key -> entry map
  - each entry has its own lock, so initializers of different keys never
    contend and may call back into the registry for other keys
  - initializers always run with no lock held

A failed attempt leaves the key retryable. ``reset()`` discards a cached
value; an attempt already in flight still answers its own waiters but is not
memoized.
"""

from __future__ import annotations

import enum
import logging
import threading
from typing import Any, Callable, Generic, Optional, TypeVar

from synckit import metrics
from synckit.config import settings
from synckit.context import Context
from synckit.errors import InitializationFailed, ReentrantInitialization
from synckit.timing import TimedOperation

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Marks "not built yet"; a factory may legitimately return None.
_UNSET: Any = object()


class LazySingleton(Generic[T]):
    """Create a singleton lazily from a factory function.

    Thread-safe: concurrent first calls run the factory once.
    """

    def __init__(self, factory: Callable[[], T]):
        self._factory = factory
        self._instance: Any = _UNSET
        self._lock = threading.Lock()

    def get(self) -> T:
        instance = self._instance
        if instance is _UNSET:
            with self._lock:
                instance = self._instance
                if instance is _UNSET:
                    instance = self._factory()
                    self._instance = instance
        return instance

    def reset(self) -> None:
        with self._lock:
            self._instance = _UNSET


class EntryState(str, enum.Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZING = "initializing"
    READY = "ready"
    FAILED = "failed"


class _Attempt:
    """One run of an initializer; joiners wait on its condition."""

    __slots__ = ("cond", "done", "value", "error", "owner")

    def __init__(self, owner: int):
        self.cond = threading.Condition()
        self.done = False
        self.value: Any = None
        self.error: BaseException | None = None
        self.owner = owner

    def finish(self) -> None:
        with self.cond:
            self.done = True
            self.cond.notify_all()

    def _wake(self) -> None:
        with self.cond:
            self.cond.notify_all()

    def wait(self, ctx: Optional[Context] = None) -> None:
        with self.cond:
            if ctx is None:
                while not self.done:
                    self.cond.wait()
                return
            with ctx.on_cancel(self._wake):
                while not self.done:
                    ctx.raise_if_cancelled()
                    self.cond.wait(ctx.remaining())


class _Entry:
    __slots__ = ("key", "lock", "state", "ready", "attempt", "last_error")

    def __init__(self, key: str):
        self.key = key
        self.lock = threading.Lock()
        self.state = EntryState.UNINITIALIZED
        # One-element tuple once READY, read without locking on the fast path.
        self.ready: tuple[Any] | None = None
        self.attempt: _Attempt | None = None
        self.last_error: BaseException | None = None


class LazyRegistry:
    """Keyed at-most-once initialization under concurrent access.

    Intended to be created once by the application and passed to whatever
    needs shared instances, instead of module-level globals.
    """

    def __init__(self, name: str = "default"):
        self.name = name
        self._entries: dict[str, _Entry] = {}
        self._lock = threading.Lock()

    def __repr__(self) -> str:
        return f"<LazyRegistry {self.name!r} ready={len(self)} keys={len(self._entries)}>"

    def __contains__(self, key: object) -> bool:
        entry = self._entries.get(key)  # type: ignore[arg-type]
        return entry is not None and entry.ready is not None

    def __len__(self) -> int:
        with self._lock:
            return sum(1 for entry in self._entries.values() if entry.ready is not None)

    def get_or_create(
        self,
        key: str,
        initializer: Callable[[], T],
        ctx: Optional[Context] = None,
    ) -> T:
        """Return the value for ``key``, running ``initializer`` if needed.

        Raises:
            InitializationFailed: the attempt this call ran or joined failed.
            ReentrantInitialization: called from the initializer of ``key``.
            Cancelled: ``ctx`` fired while waiting on another thread's attempt.
        """
        # Fast path: a single attribute read, no lock and no metric work.
        entry = self._entries.get(key)
        if entry is not None:
            ready = entry.ready
            if ready is not None:
                return ready[0]

        if entry is None:
            with self._lock:
                entry = self._entries.get(key)
                if entry is None:
                    entry = _Entry(key)
                    self._entries[key] = entry

        me = threading.get_ident()
        with entry.lock:
            # Second check under the entry lock.
            if entry.ready is not None:
                return entry.ready[0]
            attempt = entry.attempt
            if attempt is not None:
                if attempt.owner == me:
                    raise ReentrantInitialization(key)
                owner = False
            else:
                attempt = _Attempt(owner=me)
                entry.attempt = attempt
                entry.state = EntryState.INITIALIZING
                owner = True

        if owner:
            metrics.record_lookup("miss")
            self._run(entry, attempt, initializer)
        else:
            metrics.record_lookup("wait")
            attempt.wait(ctx)

        if attempt.error is not None:
            raise InitializationFailed(key, attempt.error) from attempt.error
        return attempt.value

    def get(self, key: str) -> Any:
        """Return the cached value for ``key`` or raise ``KeyError``."""
        entry = self._entries.get(key)
        ready = entry.ready if entry is not None else None
        if ready is None:
            raise KeyError(key)
        return ready[0]

    def state(self, key: str) -> EntryState:
        entry = self._entries.get(key)
        if entry is None:
            return EntryState.UNINITIALIZED
        with entry.lock:
            return entry.state

    def last_error(self, key: str) -> BaseException | None:
        """Error of the most recent failed attempt for ``key``, if any."""
        entry = self._entries.get(key)
        if entry is None:
            return None
        with entry.lock:
            return entry.last_error

    def keys(self) -> list[str]:
        """Snapshot of every key the registry has seen."""
        with self._lock:
            return list(self._entries.keys())

    def reset(self, key: str) -> None:
        """Force ``key`` back to UNINITIALIZED, discarding any cached value."""
        entry = self._entries.get(key)
        if entry is None:
            return
        with entry.lock:
            if entry.state is EntryState.INITIALIZING:
                logger.debug(f"Reset of {key!r} while initializing; in-flight result will not be cached")
            entry.state = EntryState.UNINITIALIZED
            entry.ready = None
            entry.attempt = None
            entry.last_error = None
        logger.debug(f"Registry {self.name!r} reset key {key!r}")

    def clear(self) -> None:
        """Reset every key."""
        for key in self.keys():
            self.reset(key)

    def _run(self, entry: _Entry, attempt: _Attempt, initializer: Callable[[], Any]) -> None:
        try:
            with TimedOperation(
                histogram=metrics.init_histogram(),
                labels={"status": "auto"},
                log_event="registry_init",
                log_extras={"registry": self.name, "key": entry.key},
                slow_threshold=settings.slow_init_threshold,
            ):
                value = initializer()
        except BaseException as e:
            attempt.error = e
            with entry.lock:
                if entry.attempt is attempt:
                    entry.attempt = None
                    entry.state = EntryState.FAILED
                    entry.last_error = e
            logger.warning(f"Initializer for {entry.key!r} in registry {self.name!r} failed: {e}")
            attempt.finish()
            if not isinstance(e, Exception):
                raise
            return

        attempt.value = value
        with entry.lock:
            if entry.attempt is attempt:
                entry.attempt = None
                entry.state = EntryState.READY
                entry.ready = (value,)
                entry.last_error = None
        attempt.finish()
