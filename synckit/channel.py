"""Bounded blocking channel for producer/consumer hand-off.

A ``BoundedChannel`` holds at most ``capacity`` items in FIFO order.
``put`` blocks while the buffer is full and ``take`` blocks while it is
empty. Both accept an optional cancellation context.

State machine: OPEN -> CLOSED (terminal). After ``close()``:
  - ``put`` raises ChannelClosed immediately (blocked producers are woken)
  - ``take`` keeps returning buffered items in order, then raises
    ChannelClosed once the buffer is drained

Usage:
    ch = BoundedChannel(capacity=8, name="jobs")

    # producer
    for job in jobs:
        ch.put(job)
    ch.close()

    # consumer
    for job in ch:
        handle(job)
"""

from __future__ import annotations

import logging
import threading
import time
from collections import deque
from contextlib import nullcontext
from typing import Any, Deque, Iterator, Optional

from synckit import metrics
from synckit.config import settings
from synckit.context import Context
from synckit.errors import Cancelled, ChannelClosed, ChannelEmpty, ChannelFull

logger = logging.getLogger(__name__)


class BoundedChannel:
    """Fixed-capacity FIFO queue with blocking put/take, close and cancel."""

    def __init__(self, capacity: int | None = None, name: str = "default"):
        if capacity is None:
            capacity = settings.channel_default_capacity
        if isinstance(capacity, bool) or not isinstance(capacity, int):
            raise ValueError(f"Channel capacity must be an integer, got {capacity!r}")
        if capacity < 1:
            raise ValueError(f"Channel capacity must be >= 1, got {capacity}")
        self.name = name
        self._capacity = capacity
        self._buffer: Deque[Any] = deque()
        self._closed = False
        # Both conditions share one mutex, so buffer and closed flag change
        # atomically with respect to every waiter.
        self._mutex = threading.Lock()
        self._not_full = threading.Condition(self._mutex)
        self._not_empty = threading.Condition(self._mutex)

    def __repr__(self) -> str:
        state = "closed" if self._closed else "open"
        return f"<BoundedChannel {self.name!r} {state} {len(self._buffer)}/{self._capacity}>"

    def __len__(self) -> int:
        return self.len()

    def __iter__(self) -> Iterator[Any]:
        """Yield items until the channel is closed and drained."""
        while True:
            try:
                yield self.take()
            except ChannelClosed:
                return

    def __enter__(self) -> "BoundedChannel":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    @property
    def capacity(self) -> int:
        return self._capacity

    @property
    def closed(self) -> bool:
        return self._closed

    def len(self) -> int:
        """Snapshot of the buffered count; stale as soon as it returns."""
        with self._mutex:
            return len(self._buffer)

    def put(self, item: Any, ctx: Optional[Context] = None) -> None:
        """Append ``item``, blocking while the channel is full.

        Raises:
            ChannelClosed: the channel is closed, or closes while waiting.
            Cancelled: ``ctx`` fired first (DeadlineExceeded on timeout).
        """
        start = time.monotonic()
        try:
            with self._not_full:
                with self._cancel_scope(ctx):
                    while True:
                        if self._closed:
                            raise ChannelClosed(f"Channel {self.name!r} is closed")
                        if ctx is not None and ctx.cancelled:
                            # Hand a possibly consumed wake-up to the next producer.
                            if len(self._buffer) < self._capacity:
                                self._not_full.notify()
                            ctx.raise_if_cancelled()
                        if len(self._buffer) < self._capacity:
                            break
                        self._not_full.wait(ctx.remaining() if ctx is not None else None)
                    self._buffer.append(item)
                    depth = len(self._buffer)
                    self._not_empty.notify()
        except ChannelClosed:
            metrics.record_channel_op(self.name, "put", "closed", time.monotonic() - start)
            raise
        except Cancelled:
            metrics.record_channel_op(self.name, "put", "cancelled", time.monotonic() - start)
            raise
        metrics.record_channel_op(self.name, "put", "ok", time.monotonic() - start, depth)

    def take(self, ctx: Optional[Context] = None) -> Any:
        """Remove and return the oldest item, blocking while empty.

        Raises:
            ChannelClosed: the channel is closed and has no buffered items.
            Cancelled: ``ctx`` fired first (DeadlineExceeded on timeout).
        """
        start = time.monotonic()
        try:
            with self._not_empty:
                with self._cancel_scope(ctx):
                    while True:
                        if ctx is not None and ctx.cancelled:
                            if self._buffer:
                                self._not_empty.notify()
                            ctx.raise_if_cancelled()
                        if self._buffer:
                            break
                        if self._closed:
                            raise ChannelClosed(f"Channel {self.name!r} is closed and drained")
                        self._not_empty.wait(ctx.remaining() if ctx is not None else None)
                    item = self._buffer.popleft()
                    depth = len(self._buffer)
                    self._not_full.notify()
        except ChannelClosed:
            metrics.record_channel_op(self.name, "take", "closed", time.monotonic() - start)
            raise
        except Cancelled:
            metrics.record_channel_op(self.name, "take", "cancelled", time.monotonic() - start)
            raise
        metrics.record_channel_op(self.name, "take", "ok", time.monotonic() - start, depth)
        return item

    def put_nowait(self, item: Any) -> None:
        """Append ``item`` or raise ChannelFull/ChannelClosed without blocking."""
        with self._mutex:
            if self._closed:
                raise ChannelClosed(f"Channel {self.name!r} is closed")
            if len(self._buffer) >= self._capacity:
                raise ChannelFull(f"Channel {self.name!r} is full ({self._capacity})")
            self._buffer.append(item)
            depth = len(self._buffer)
            self._not_empty.notify()
        metrics.record_channel_op(self.name, "put_nowait", "ok", depth=depth)

    def take_nowait(self) -> Any:
        """Return the oldest item or raise ChannelEmpty/ChannelClosed without blocking."""
        with self._mutex:
            if not self._buffer:
                if self._closed:
                    raise ChannelClosed(f"Channel {self.name!r} is closed and drained")
                raise ChannelEmpty(f"Channel {self.name!r} is empty")
            item = self._buffer.popleft()
            depth = len(self._buffer)
            self._not_full.notify()
        metrics.record_channel_op(self.name, "take_nowait", "ok", depth=depth)
        return item

    def close(self) -> None:
        """Close the channel. Idempotent."""
        with self._mutex:
            if self._closed:
                return
            self._closed = True
            buffered = len(self._buffer)
            self._not_full.notify_all()
            self._not_empty.notify_all()
        logger.debug(f"Closed channel {self.name!r} with {buffered} buffered item(s)")

    def _wake_all(self) -> None:
        with self._mutex:
            self._not_full.notify_all()
            self._not_empty.notify_all()

    def _cancel_scope(self, ctx: Optional[Context]):
        if ctx is None:
            return nullcontext()
        return ctx.on_cancel(self._wake_all)
