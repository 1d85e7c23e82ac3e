"""Folding of expired window samples into interval buckets.

The pure functions here decide what a pass does; ``Aggregator`` runs the
pass periodically on a background thread, one ledger at a time, each under
that ledger's lock.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from .domain import AggregateBucket, Sample
from .intervals import interval_start, now_ms

if TYPE_CHECKING:
    from .ledger import TargetLedger

logger = logging.getLogger(__name__)


def mean_rtt(values: Iterable[Optional[float]]) -> Optional[float]:
    """Mean of the non-None values rounded to 2 decimals, None if there are none."""
    valid = [float(v) for v in values if v is not None]
    if not valid:
        return None
    return round(sum(valid) / len(valid), 2)


def build_bucket(
    bucket_start: int,
    batch: Sequence[Sample],
    fallback_seq: Optional[int] = None,
) -> AggregateBucket:
    if batch:
        representative = batch[0].logical_seq
    else:
        representative = fallback_seq if fallback_seq is not None else 0
    return AggregateBucket(
        bucket_start=bucket_start,
        representative_seq=representative,
        mean_rtt=mean_rtt(s.rtt for s in batch),
        samples=len(batch),
    )


def merge_bucket(existing: AggregateBucket, batch: Sequence[Sample]) -> AggregateBucket:
    """Merge a late batch into a bucket written by an earlier pass.

    The existing mean is weighted as a single sample next to the batch RTTs.
    """
    rtts: List[Optional[float]] = [existing.mean_rtt]
    rtts.extend(s.rtt for s in batch)
    return AggregateBucket(
        bucket_start=existing.bucket_start,
        representative_seq=batch[0].logical_seq if batch else existing.representative_seq,
        mean_rtt=mean_rtt(rtts),
        samples=existing.samples + len(batch),
    )


@dataclass
class FoldResult:
    window: List[Sample]
    aggregates: List[AggregateBucket]
    folded_starts: List[int] = field(default_factory=list)
    merged_starts: List[int] = field(default_factory=list)

    @property
    def last_boundary(self) -> Optional[int]:
        return max(self.folded_starts) if self.folded_starts else None


def fold_window(
    window: Sequence[Sample],
    aggregates: Sequence[AggregateBucket],
    now: int,
    interval_ms: int,
    last_seq: Optional[int] = None,
) -> FoldResult:
    """Fold every window sample older than the current interval into buckets.

    Samples are grouped by the interval they fall in. Normally that is only
    the interval that just closed; after a missed tick (process paused, job
    delayed) every skipped interval still present in the window gets its
    own bucket. Samples of the current interval stay in the window.
    """
    current = interval_start(now, interval_ms)

    kept: List[Sample] = []
    groups: "OrderedDict[int, List[Sample]]" = OrderedDict()
    for sample in window:
        if sample.observed_at >= current:
            kept.append(sample)
            continue
        start = interval_start(sample.observed_at, interval_ms)
        groups.setdefault(start, []).append(sample)

    buckets = list(aggregates)
    result = FoldResult(window=kept, aggregates=buckets)
    if not groups:
        return result

    index_by_start: Dict[int, int] = {b.bucket_start: i for i, b in enumerate(buckets)}
    for start in sorted(groups):
        batch = groups[start]
        existing_index = index_by_start.get(start)
        if existing_index is not None:
            buckets[existing_index] = merge_bucket(buckets[existing_index], batch)
            result.merged_starts.append(start)
        else:
            buckets.append(build_bucket(start, batch, fallback_seq=last_seq))
            index_by_start[start] = len(buckets) - 1
        result.folded_starts.append(start)

    buckets.sort(key=lambda b: b.bucket_start)
    return result


class Aggregator:
    """Periodic aggregation job over a fixed set of ledgers.

    Without an explicit ``period_seconds`` each pass is scheduled just after
    the next interval boundary, so a closed interval is folded before its
    samples can age out of the window.
    """

    BOUNDARY_GRACE_MS = 100

    def __init__(
        self,
        ledgers: Mapping[str, "TargetLedger"],
        interval_ms: int,
        period_seconds: Optional[float] = None,
        clock: Callable[[], int] = now_ms,
        on_pass: Optional[Callable[[Dict[str, int]], None]] = None,
    ):
        self._ledgers = ledgers
        self._interval_ms = int(interval_ms)
        self._period_seconds = float(period_seconds) if period_seconds is not None else None
        self._clock = clock
        self._on_pass = on_pass

        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._total_passes = 0
        self._total_buckets = 0
        self._total_failures = 0

    @property
    def interval_ms(self) -> int:
        return self._interval_ms

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="aggregator", daemon=True)
        self._thread.start()
        logger.info(
            "[Aggregator] started interval=%.0fs period=%s targets=%d",
            self._interval_ms / 1000.0,
            f"{self._period_seconds:.1f}s" if self._period_seconds is not None else "aligned",
            len(self._ledgers),
        )

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        logger.info(
            "[Aggregator] stopped passes=%d buckets=%d failures=%d",
            self._total_passes, self._total_buckets, self._total_failures,
        )

    def next_delay(self, now: Optional[int] = None) -> float:
        """Seconds to wait before the next pass."""
        if self._period_seconds is not None:
            return self._period_seconds
        now = self._clock() if now is None else int(now)
        boundary = interval_start(now, self._interval_ms) + self._interval_ms
        return (boundary - now + self.BOUNDARY_GRACE_MS) / 1000.0

    def _loop(self) -> None:
        while not self._stop_event.wait(self.next_delay()):
            self.run_once()

    def run_once(self, now: Optional[int] = None) -> Dict[str, int]:
        """Run one pass over every ledger; returns buckets written per target."""
        now = self._clock() if now is None else int(now)
        written: Dict[str, int] = {}

        for name, ledger in list(self._ledgers.items()):
            try:
                result = ledger.fold_expired(now, self._interval_ms)
            except Exception:
                self._total_failures += 1
                logger.exception("[Aggregator] pass failed target=%s", name)
                continue

            written[name] = len(result.folded_starts)
            self._total_buckets += len(result.folded_starts)
            if result.folded_starts:
                logger.info(
                    "[Aggregator] target=%s folded=%d merged=%d boundary=%s window=%d",
                    name, len(result.folded_starts), len(result.merged_starts),
                    result.last_boundary, len(result.window),
                )

        self._total_passes += 1
        if self._on_pass is not None:
            try:
                self._on_pass(written)
            except Exception:
                logger.exception("[Aggregator] on_pass callback failed")
        return written

    def get_stats(self) -> dict:
        return {
            "interval_seconds": self._interval_ms / 1000.0,
            "period_seconds": self._period_seconds,
            "total_passes": self._total_passes,
            "total_buckets": self._total_buckets,
            "total_failures": self._total_failures,
        }
