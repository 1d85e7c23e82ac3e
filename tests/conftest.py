"""Shared fixtures for the monitor tests.

Time is always passed explicitly in epoch milliseconds; ``T0`` sits on an
aggregation boundary for the 10 minute interval used throughout.
"""

from typing import List

import pytest

from ping_api.core.broadcast import BroadcastHub
from ping_api.core.ledger import TargetLedger
from ping_api.core.monitor import ProbeMonitor

INTERVAL_MS = 10 * 60 * 1000
WINDOW_MS = 2 * INTERVAL_MS
T0 = 1_700_000_400_000  # multiple of INTERVAL_MS

TARGET_A = "1.1.1.1"
TARGET_B = "192.168.1.1"


def success_line(seq: int, rtt: float, host: str = TARGET_A) -> str:
    return f"64 bytes from {host}: icmp_seq={seq} ttl=57 time={rtt} ms"


def unreachable_line(seq: int, host: str = TARGET_B) -> str:
    return f"From {host} icmp_seq={seq} Destination Host Unreachable"


class RecordingSink:
    """Sink that keeps every delivered frame."""

    def __init__(self, sink_id: str = "recording", fail: bool = False):
        self.sink_id = sink_id
        self.fail = fail
        self.messages: List[str] = []
        self.closed = False

    def deliver(self, message: str) -> None:
        if self.fail:
            raise RuntimeError("broken pipe")
        self.messages.append(message)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def ledger() -> TargetLedger:
    return TargetLedger(TARGET_A, WINDOW_MS)


@pytest.fixture
def hub() -> BroadcastHub:
    return BroadcastHub()


@pytest.fixture
def monitor(hub) -> ProbeMonitor:
    return ProbeMonitor([TARGET_A, TARGET_B], WINDOW_MS, hub=hub, clock=lambda: T0)
