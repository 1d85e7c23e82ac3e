"""Per-target accounting: totals, gaps, sliding window and aggregate history.

Every mutation happens under the ledger's own re-entrant lock. Callers that
need an update and its broadcast to be atomic (the probe monitor) hold
``ledger.lock`` around both.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Deque, Dict, List, Optional

from ..schemas import GapOut, LiveEvent, TargetHistory
from .aggregator import FoldResult, fold_window, mean_rtt
from .domain import AggregateBucket, Gap, Sample
from .reconciler import SequenceReconciler

logger = logging.getLogger(__name__)


UPDATE_PING = "ping"
UPDATE_LOSS = "loss"


@dataclass(frozen=True)
class LedgerUpdate:
    """Result of one recorded probe event, ready to be broadcast."""

    kind: str
    target: str
    point: Sample
    received: int
    lost: int
    loss_percent: float
    avg_rtt: Optional[float]
    gaps: List[Gap]

    def to_event(self) -> LiveEvent:
        return LiveEvent(
            type=self.kind,
            target=self.target,
            received=self.received,
            lost=self.lost,
            loss_percent=self.loss_percent,
            avg_rtt=self.avg_rtt,
            gaps=[GapOut.model_validate(g.to_dict()) for g in self.gaps],
            point=self.point.to_point(),
        )


@dataclass
class LedgerSnapshot:
    """Durable fields of a ledger at one point in time."""

    target: str
    aggregates: List[AggregateBucket] = field(default_factory=list)
    gaps: List[Gap] = field(default_factory=list)
    received: int = 0
    lost: int = 0
    last_seq: Optional[int] = None


class TargetLedger:
    """Mutable state of one probed target."""

    def __init__(self, target: str, window_ms: int) -> None:
        if window_ms <= 0:
            raise ValueError(f"window_ms must be positive, got {window_ms}")
        self.target = target
        self.window_ms = int(window_ms)
        self.lock = threading.RLock()

        self.reconciler = SequenceReconciler(target)
        self.last_seq: Optional[int] = None
        self.received = 0
        self.lost = 0
        self.gaps: List[Gap] = []
        self.window: Deque[Sample] = deque()
        self.aggregates: List[AggregateBucket] = []
        self.last_aggregated_boundary: Optional[int] = None

    # ------------------------------------------------------------------
    # Sequence
    # ------------------------------------------------------------------

    @property
    def seq_offset(self) -> int:
        return self.reconciler.seq_offset

    @property
    def seen_first_sample(self) -> bool:
        return self.reconciler.seen_first_sample

    def reconcile(self, raw_seq: int) -> int:
        with self.lock:
            return self.reconciler.reconcile(raw_seq, self.last_seq)

    def source_restarted(self) -> None:
        with self.lock:
            self.reconciler.mark_source_restart()

    # ------------------------------------------------------------------
    # Updates
    # ------------------------------------------------------------------

    def record_success(self, logical_seq: int, rtt: float, now: int) -> Optional[LedgerUpdate]:
        """Account a reply for ``logical_seq``.

        Returns None when the sequence is not ahead of the last one
        (duplicate or stale reply); nothing is changed in that case.
        """
        with self.lock:
            if not self._accepts(logical_seq):
                return None
            self._record_missing_before(logical_seq)
            self.last_seq = logical_seq
            self.received += 1
            return self._append_and_describe(UPDATE_PING, Sample(logical_seq, float(rtt), int(now)))

    def record_loss(self, logical_seq: int, now: int) -> Optional[LedgerUpdate]:
        """Account ``logical_seq`` as lost (unreachable / no answer)."""
        with self.lock:
            if not self._accepts(logical_seq):
                return None
            self._record_missing_before(logical_seq)
            self._add_gap(logical_seq, logical_seq)
            self.lost += 1
            self.last_seq = logical_seq
            return self._append_and_describe(UPDATE_LOSS, Sample(logical_seq, None, int(now)))

    def _accepts(self, logical_seq: int) -> bool:
        if self.last_seq is not None and logical_seq <= self.last_seq:
            logger.debug(
                "[Ledger] ignoring non-increasing seq target=%s seq=%d last=%d",
                self.target, logical_seq, self.last_seq,
            )
            return False
        return True

    def _record_missing_before(self, logical_seq: int) -> None:
        if self.last_seq is None or logical_seq == self.last_seq + 1:
            return
        first_missing = self.last_seq + 1
        last_missing = logical_seq - 1
        self._add_gap(first_missing, last_missing)
        self.lost += last_missing - first_missing + 1

    def _add_gap(self, from_seq: int, to_seq: int) -> None:
        if self.gaps and self.gaps[-1].to_seq + 1 == from_seq:
            self.gaps[-1] = self.gaps[-1].extend_to(to_seq)
        else:
            self.gaps.append(Gap(from_seq=from_seq, to_seq=to_seq))

    def _append_and_describe(self, kind: str, sample: Sample) -> LedgerUpdate:
        self.window.append(sample)
        self.evict(sample.observed_at)
        return LedgerUpdate(
            kind=kind,
            target=self.target,
            point=sample,
            received=self.received,
            lost=self.lost,
            loss_percent=self.loss_percent(),
            avg_rtt=self.mean_rtt(),
            gaps=list(self.gaps),
        )

    def evict(self, now: int) -> int:
        """Drop window samples older than the sliding-window horizon."""
        horizon = int(now) - self.window_ms
        dropped = 0
        with self.lock:
            while self.window and self.window[0].observed_at < horizon:
                self.window.popleft()
                dropped += 1
            if any(s.observed_at < horizon for s in self.window):
                # Out-of-order timestamps (clock stepped back): full filter.
                before = len(self.window)
                self.window = deque(s for s in self.window if s.observed_at >= horizon)
                dropped += before - len(self.window)
        return dropped

    # ------------------------------------------------------------------
    # Aggregation
    # ------------------------------------------------------------------

    def fold_expired(self, now: int, interval_ms: int) -> FoldResult:
        """Fold samples of closed intervals into ``aggregates``."""
        with self.lock:
            result = fold_window(
                list(self.window),
                self.aggregates,
                now=now,
                interval_ms=interval_ms,
                last_seq=self.last_seq,
            )
            self.window = deque(result.window)
            self.aggregates = result.aggregates
            if result.last_boundary is not None:
                self.last_aggregated_boundary = result.last_boundary
            return result

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    def loss_percent(self) -> float:
        with self.lock:
            total = self.received + self.lost
            if total == 0:
                return 0.0
            return self.lost / total * 100

    def mean_rtt(self) -> Optional[float]:
        """Mean RTT over aggregate buckets (one value each) and window samples."""
        with self.lock:
            values = [b.mean_rtt for b in self.aggregates]
            values.extend(s.rtt for s in self.window)
            return mean_rtt(values)

    def history(self) -> List[Dict[str, Any]]:
        """Aggregates and raw window samples as wire points, oldest first."""
        with self.lock:
            points = [b.to_point() for b in self.aggregates]
            points.extend(s.to_point() for s in self.window)
        points.sort(key=lambda p: (p["timestamp"], p["seq"]))
        return points

    def summary(self) -> TargetHistory:
        with self.lock:
            return TargetHistory(
                history_data=self.history(),
                gaps=[GapOut.model_validate(g.to_dict()) for g in self.gaps],
                received=self.received,
                lost=self.lost,
                avg_rtt=self.mean_rtt(),
            )

    def stats(self) -> Dict[str, Any]:
        with self.lock:
            return {
                "received": self.received,
                "lost": self.lost,
                "loss_percent": round(self.loss_percent(), 3),
                "avg_rtt": self.mean_rtt(),
                "last_seq": self.last_seq,
                "seq_offset": self.seq_offset,
                "gaps": len(self.gaps),
                "window_samples": len(self.window),
                "aggregate_buckets": len(self.aggregates),
                "last_aggregated_boundary": self.last_aggregated_boundary,
            }

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def snapshot(self) -> LedgerSnapshot:
        with self.lock:
            return LedgerSnapshot(
                target=self.target,
                aggregates=list(self.aggregates),
                gaps=list(self.gaps),
                received=self.received,
                lost=self.lost,
                last_seq=self.last_seq,
            )

    def restore(self, snapshot: LedgerSnapshot) -> None:
        """Hydrate from persisted state; only valid before the first event."""
        with self.lock:
            if self.reconciler.seen_first_sample:
                raise RuntimeError(f"ledger {self.target} already received events")

            self.aggregates = sorted(snapshot.aggregates, key=lambda b: b.bucket_start)
            self.gaps = sorted(snapshot.gaps, key=lambda g: g.from_seq)
            self.received = int(snapshot.received)
            self.lost = int(snapshot.lost)

            last_seq = snapshot.last_seq
            if last_seq is None and self.aggregates:
                last_seq = self.aggregates[-1].representative_seq
            if self.gaps and (last_seq is None or self.gaps[-1].to_seq > last_seq):
                last_seq = self.gaps[-1].to_seq
            self.last_seq = last_seq
            self.reconciler.seq_offset = last_seq if last_seq is not None else 0

            if self.aggregates:
                self.last_aggregated_boundary = self.aggregates[-1].bucket_start
