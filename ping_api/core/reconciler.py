"""Maps tool-local ICMP sequence numbers onto a per-target logical sequence.

A ``ping`` process numbers its probes from 0 or 1 every time it starts, and
the 16-bit counter wraps. The logical sequence keeps counting across host
process restarts (the prior value comes from the state file), across
restarts of the probe process itself and across counter wraps.

Replies can arrive late: with ``ping -O`` a reply slower than the probe
interval is printed after the "no answer yet" line of its own probe, so its
tool-local number is a little lower than the previous one. Such a reply maps
to a logical number the ledger has already passed and is ignored there.
"""

from __future__ import annotations

import logging
from typing import Optional

logger = logging.getLogger(__name__)


class SequenceReconciler:
    """Offset bookkeeping for one target.

    The offset is fixed on the first event after startup, or after the probe
    supervisor reports a restart, to the last known logical sequence. Inside
    one probe lifetime it only moves on a counter wrap or on a backwards jump
    too large to be a late reply.
    """

    SEQ_MODULUS = 65536  # icmp_seq is 16 bits
    REORDER_WINDOW = 1024  # largest backwards step still read as a late reply

    def __init__(self, target: str = "") -> None:
        self.target = target
        self.seq_offset = 0
        self.seen_first_sample = False
        self._last_raw_seq: Optional[int] = None

    def reconcile(self, raw_seq: int, prior_logical_seq: Optional[int]) -> int:
        """Return the logical sequence for ``raw_seq``.

        ``prior_logical_seq`` is the last sequence assigned by the ledger, or
        None when the target has no history at all. A late reply comes back
        at or below ``prior_logical_seq`` and leaves the state untouched.
        """
        anchored = False
        last_raw = self._last_raw_seq

        if not self.seen_first_sample:
            self.seq_offset = prior_logical_seq if prior_logical_seq is not None else 0
            self.seen_first_sample = True
            anchored = True
        elif last_raw is not None and raw_seq < last_raw:
            if last_raw - raw_seq <= self.REORDER_WINDOW:
                logger.debug(
                    "[Reconciler] late reply target=%s raw=%d previous_raw=%d",
                    self.target, raw_seq, last_raw,
                )
                return self.seq_offset + raw_seq
            if last_raw >= self.SEQ_MODULUS - self.REORDER_WINDOW and raw_seq < self.REORDER_WINDOW:
                self.seq_offset += self.SEQ_MODULUS
                logger.info("[Reconciler] tool sequence wrapped target=%s raw=%d", self.target, raw_seq)
            else:
                base = prior_logical_seq if prior_logical_seq is not None else 0
                logger.warning(
                    "[Reconciler] tool sequence went back target=%s raw=%d previous_raw=%d, continuing after %d",
                    self.target, raw_seq, last_raw, base,
                )
                self.seq_offset = base - raw_seq + 1
                anchored = True
        elif last_raw is not None and raw_seq - last_raw > self.SEQ_MODULUS - self.REORDER_WINDOW:
            # Late reply from just before a wrap.
            logger.debug(
                "[Reconciler] late reply across wrap target=%s raw=%d previous_raw=%d",
                self.target, raw_seq, last_raw,
            )
            return self.seq_offset - self.SEQ_MODULUS + raw_seq

        # Tools that count from 0 would land on the prior value itself.
        if anchored and prior_logical_seq is not None and self.seq_offset + raw_seq <= prior_logical_seq:
            self.seq_offset = prior_logical_seq - raw_seq + 1

        self._last_raw_seq = raw_seq
        return self.seq_offset + raw_seq

    def mark_source_restart(self) -> None:
        """The probe process was restarted; re-anchor on its next event."""
        self.seen_first_sample = False
        self._last_raw_seq = None
