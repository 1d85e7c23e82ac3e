"""Schema of the state file.

Compatible with the ``aggregated.json`` files written by earlier
deployments: ``lastSeq`` and the bucket ``samples`` counter are optional.
"""

from __future__ import annotations

from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from ..core.domain import AggregateBucket, Gap
from ..core.ledger import LedgerSnapshot


class PersistedBucket(BaseModel):
    seq: int = 0
    rtt: Optional[float] = None
    timestamp: int
    aggregated: bool = True
    samples: int = 0

    def to_bucket(self) -> AggregateBucket:
        return AggregateBucket(
            bucket_start=self.timestamp,
            representative_seq=self.seq,
            mean_rtt=self.rtt,
            samples=self.samples,
        )

    @classmethod
    def from_bucket(cls, bucket: AggregateBucket) -> "PersistedBucket":
        return cls(
            seq=bucket.representative_seq,
            rtt=bucket.mean_rtt,
            timestamp=bucket.bucket_start,
            samples=bucket.samples,
        )


class PersistedGap(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_seq: int = Field(..., alias="from")
    to: int
    count: Optional[int] = None

    @model_validator(mode="after")
    def check_range(self) -> "PersistedGap":
        if self.to < self.from_seq:
            raise ValueError(f"gap ends before it starts: {self.from_seq}..{self.to}")
        return self


class PersistedTarget(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    aggregated_data: List[PersistedBucket] = Field(default_factory=list, alias="aggregatedData")
    gaps: List[PersistedGap] = Field(default_factory=list)
    received: int = Field(default=0, ge=0)
    lost: int = Field(default=0, ge=0)
    last_seq: Optional[int] = Field(default=None, alias="lastSeq")

    def to_snapshot(self, target: str) -> LedgerSnapshot:
        return LedgerSnapshot(
            target=target,
            aggregates=[b.to_bucket() for b in self.aggregated_data],
            gaps=[Gap(from_seq=g.from_seq, to_seq=g.to) for g in self.gaps],
            received=self.received,
            lost=self.lost,
            last_seq=self.last_seq,
        )

    @classmethod
    def from_snapshot(cls, snapshot: LedgerSnapshot) -> "PersistedTarget":
        return cls(
            aggregated_data=[PersistedBucket.from_bucket(b) for b in snapshot.aggregates],
            gaps=[
                PersistedGap(from_seq=g.from_seq, to=g.to_seq, count=g.count)
                for g in snapshot.gaps
            ],
            received=snapshot.received,
            lost=snapshot.lost,
            last_seq=snapshot.last_seq,
        )


class StateFile(BaseModel):
    targets: Dict[str, PersistedTarget] = Field(default_factory=dict)
