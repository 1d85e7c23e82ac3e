"""Error types for the monitoring service.

None of these are fatal to the process; each one is handled where it occurs.
"""

from __future__ import annotations


class PingWatchError(Exception):
    """Base class for service errors."""


class PersistenceReadError(PingWatchError):
    """State file exists but cannot be read or decoded."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot read state file '{path}': {reason}")


class PersistenceWriteError(PingWatchError):
    """State file could not be written; retried on the next scheduled flush."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Cannot write state file '{path}': {reason}")


class SinkDeliveryError(PingWatchError):
    """A subscriber sink refused a message (closed or backlog full)."""

    def __init__(self, sink_id: str, reason: str):
        self.sink_id = sink_id
        self.reason = reason
        super().__init__(f"Delivery to sink '{sink_id}' failed: {reason}")
