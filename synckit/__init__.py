"""In-process concurrency primitives: lazy singleton registries and bounded channels."""

from synckit.channel import BoundedChannel
from synckit.context import Context, with_cancel, with_timeout
from synckit.errors import (
    Cancelled,
    ChannelClosed,
    ChannelEmpty,
    ChannelFull,
    DeadlineExceeded,
    InitializationFailed,
    ReentrantInitialization,
    SynckitError,
)
from synckit.registry import EntryState, LazyRegistry, LazySingleton

__all__ = [
    "BoundedChannel",
    "Cancelled",
    "ChannelClosed",
    "ChannelEmpty",
    "ChannelFull",
    "Context",
    "DeadlineExceeded",
    "EntryState",
    "InitializationFailed",
    "LazyRegistry",
    "LazySingleton",
    "ReentrantInitialization",
    "SynckitError",
    "with_cancel",
    "with_timeout",
]
