"""Parser for the text output of a continuous ``ping`` process.

Two line shapes carry information:

    64 bytes from 1.1.1.1: icmp_seq=12 ttl=57 time=13.4 ms      -> success
    From 192.168.1.1 icmp_seq=13 Destination Host Unreachable   -> unreachable
    no answer yet for icmp_seq=14                               -> unreachable
    Request timeout for icmp_seq 15                             -> unreachable (BSD/macOS)

Anything else (banner, statistics footer, blank lines) is not a probe line.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

_SEQ_RE = re.compile(r"icmp_seq[= ](\d+)")
_TIME_RE = re.compile(r"time[=<]\s*(\d+(?:\.\d+)?)")
_DUP_MARKER = "(DUP!)"


class ProbeEventKind(str, Enum):
    SUCCESS = "success"
    UNREACHABLE = "unreachable"


@dataclass(frozen=True)
class ProbeEvent:
    """Structured result of one probe line."""

    kind: ProbeEventKind
    seq: int
    rtt: Optional[float] = None
    duplicate: bool = False

    @property
    def is_success(self) -> bool:
        return self.kind is ProbeEventKind.SUCCESS


def parse_line(line: str) -> Optional[ProbeEvent]:
    """Classify one line of probe output.

    Returns None for lines that are not probe results. Never raises.
    """
    if not line:
        return None

    seq_match = _SEQ_RE.search(line)
    if seq_match is None:
        return None

    try:
        seq = int(seq_match.group(1))
    except ValueError:
        return None

    time_match = _TIME_RE.search(line, seq_match.end())
    if time_match is None:
        return ProbeEvent(kind=ProbeEventKind.UNREACHABLE, seq=seq)

    try:
        rtt = float(time_match.group(1))
    except ValueError:
        return None

    return ProbeEvent(
        kind=ProbeEventKind.SUCCESS,
        seq=seq,
        rtt=rtt,
        duplicate=_DUP_MARKER in line,
    )
