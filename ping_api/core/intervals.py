"""Interval boundaries and the millisecond clock used by the ledgers."""

from __future__ import annotations

import time


def now_ms() -> int:
    return int(time.time() * 1000)


def interval_start(timestamp_ms: int, interval_ms: int) -> int:
    """Start of the aggregation interval that contains ``timestamp_ms``.

    Boundaries are aligned to the epoch, so every process agrees on them.
    """
    if interval_ms <= 0:
        raise ValueError(f"interval_ms must be positive, got {interval_ms}")
    return (int(timestamp_ms) // int(interval_ms)) * int(interval_ms)
