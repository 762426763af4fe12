"""
errors.py - Failure Taxonomy for a Refresh Cycle

Every per-item failure is one of the RefreshError subclasses below. The
orchestrator records them as error entries and moves on; none of them stops
the cycle. PoolStartupError is the single cycle-level failure.
"""
from __future__ import annotations


class RefreshError(Exception):
    """Base class for errors raised while refreshing a single item."""


class PermissionDenied(RefreshError):
    """The host refused a durable read grant for a content reference."""

    def __init__(self, location: str) -> None:
        super().__init__("Permission denied")
        self.location = location


class InvalidLocation(RefreshError):
    """The item location looks like a network URL but cannot be parsed."""

    def __init__(self, location: str) -> None:
        super().__init__(f"Invalid URL: {location}")
        self.location = location


class UpstreamError(RefreshError):
    """The server answered with something other than 200 or 304."""

    def __init__(self, code: int, reason: str | None) -> None:
        super().__init__(f"Server responded with {code} {reason or ''}".rstrip())
        self.code = code
        self.reason = reason


class IOFailure(RefreshError):
    """Network or filesystem failure while transferring an item."""


class ConcurrentWriteConflict(IOFailure):
    """A second write was started while another one is still staged."""


class PoolStartupError(Exception):
    """The refresh cycle could not be started at all."""
