from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class GapOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_seq: int = Field(..., alias="from")
    to: int
    count: int = Field(..., ge=1)


class LiveEvent(BaseModel):
    """``ping`` / ``loss`` update pushed after every processed probe line."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["ping", "loss"]
    target: str
    received: int
    lost: int
    loss_percent: float = Field(..., alias="lossPercent")
    avg_rtt: Optional[float] = Field(default=None, alias="avgRtt")
    gaps: List[GapOut] = Field(default_factory=list)
    # {seq, rtt, timestamp}
    point: Dict[str, Any]


class TargetHistory(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # Aggregate buckets and raw samples, oldest first.
    history_data: List[Dict[str, Any]] = Field(default_factory=list, alias="historyData")
    gaps: List[GapOut] = Field(default_factory=list)
    received: int = 0
    lost: int = 0
    avg_rtt: Optional[float] = Field(default=None, alias="avgRtt")


class HistoryEvent(BaseModel):
    """First message on every new event stream."""

    type: Literal["history"] = "history"
    targets: Dict[str, TargetHistory] = Field(default_factory=dict)
