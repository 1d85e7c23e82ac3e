"""Sample, Gap and AggregateBucket - the per-target history records.

All timestamps are epoch milliseconds, the same unit the dashboard receives.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


@dataclass(frozen=True)
class Sample:
    """One probe result placed on the logical sequence.

    ``rtt`` is None when the probe went unanswered.
    """

    logical_seq: int
    rtt: Optional[float]
    observed_at: int

    def to_point(self) -> Dict[str, Any]:
        return {"seq": self.logical_seq, "rtt": self.rtt, "timestamp": self.observed_at}


@dataclass(frozen=True)
class Gap:
    """Contiguous run of missing logical sequence numbers, inclusive on both ends."""

    from_seq: int
    to_seq: int

    @property
    def count(self) -> int:
        return self.to_seq - self.from_seq + 1

    def extend_to(self, to_seq: int) -> "Gap":
        return Gap(from_seq=self.from_seq, to_seq=to_seq)

    def to_dict(self) -> Dict[str, int]:
        return {"from": self.from_seq, "to": self.to_seq, "count": self.count}


@dataclass(frozen=True)
class AggregateBucket:
    """Time-aligned summary of the samples of one aggregation interval."""

    bucket_start: int
    representative_seq: int
    mean_rtt: Optional[float]
    samples: int = 0

    def to_point(self) -> Dict[str, Any]:
        return {
            "seq": self.representative_seq,
            "rtt": self.mean_rtt,
            "timestamp": self.bucket_start,
            "aggregated": True,
            "samples": self.samples,
        }
