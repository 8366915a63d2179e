"""Exception hierarchy for synckit primitives."""

from __future__ import annotations


class SynckitError(Exception):
    """Base class for all synckit errors."""


class InitializationFailed(SynckitError):
    """A registry initializer raised; shared by every waiter of that attempt."""

    def __init__(self, key: str, cause: BaseException):
        self.key = key
        self.cause = cause
        super().__init__(f"Initialization of {key!r} failed: {cause}")


class ReentrantInitialization(SynckitError):
    """An initializer asked the registry for the key it is building."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Initializer for {key!r} re-entered its own key")


class ChannelClosed(SynckitError):
    """Put on a closed channel, or take on a closed and drained one."""


class ChannelFull(SynckitError):
    """Non-blocking put found no free slot."""


class ChannelEmpty(SynckitError):
    """Non-blocking take found no buffered item."""


class Cancelled(SynckitError):
    """The caller's context fired before the operation could complete."""


class DeadlineExceeded(Cancelled):
    """The caller's context reached its deadline."""
