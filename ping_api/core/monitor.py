"""Hot path of the service: probe line → ledger update → broadcast.

``ProbeMonitor`` owns one ``TargetLedger`` per configured target and the
``BroadcastHub``. Lock order is always ledger(s) first, then the hub, so a
history snapshot taken for a new subscriber can never interleave with an
update: the subscriber sees exactly the state in its history event plus
every update published afterwards.
"""

from __future__ import annotations

import logging
from contextlib import ExitStack
from typing import Callable, Dict, Iterable, Mapping, Optional

from ..schemas import HistoryEvent
from .broadcast import BroadcastHub, Sink
from .intervals import now_ms
from .ledger import LedgerSnapshot, LedgerUpdate, TargetLedger
from .line_parser import ProbeEvent, parse_line

logger = logging.getLogger(__name__)


class UnknownTargetError(KeyError):
    pass


class ProbeMonitor:
    """Per-target ledgers plus the live update hub."""

    def __init__(
        self,
        targets: Iterable[str],
        window_ms: int,
        hub: Optional[BroadcastHub] = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self.ledgers: Dict[str, TargetLedger] = {}
        for target in targets:
            if target not in self.ledgers:
                self.ledgers[target] = TargetLedger(target, window_ms)
        if not self.ledgers:
            raise ValueError("at least one target is required")

        self.hub = hub if hub is not None else BroadcastHub()
        self._clock = clock
        self._ignored_lines = 0
        self._ignored_duplicates = 0
        self._ignored_stale = 0

    @property
    def targets(self) -> list[str]:
        return list(self.ledgers)

    def ledger(self, target: str) -> TargetLedger:
        try:
            return self.ledgers[target]
        except KeyError:
            raise UnknownTargetError(target)

    # ------------------------------------------------------------------
    # Probe input
    # ------------------------------------------------------------------

    def handle_line(self, target: str, line: str, now: Optional[int] = None) -> Optional[LedgerUpdate]:
        """Process one raw probe output line for ``target``."""
        event = parse_line(line)
        if event is None:
            self._ignored_lines += 1
            return None
        return self.handle_event(target, event, now=now)

    def handle_event(
        self,
        target: str,
        event: ProbeEvent,
        now: Optional[int] = None,
    ) -> Optional[LedgerUpdate]:
        ledger = self.ledger(target)
        if event.duplicate:
            self._ignored_duplicates += 1
            return None

        now = self._clock() if now is None else int(now)
        with ledger.lock:
            logical_seq = ledger.reconcile(event.seq)
            if event.is_success:
                update = ledger.record_success(logical_seq, event.rtt, now)
            else:
                update = ledger.record_loss(logical_seq, now)
            if update is None:
                self._ignored_stale += 1
                return None
            self.hub.publish(update.to_event())
        return update

    def source_restarted(self, target: str) -> None:
        """The probe process of ``target`` was (re)spawned."""
        self.ledger(target).source_restarted()
        logger.info("[Monitor] probe source restarted target=%s", target)

    # ------------------------------------------------------------------
    # Subscribers
    # ------------------------------------------------------------------

    def _locked_ledgers(self, stack: ExitStack) -> None:
        for ledger in self.ledgers.values():
            stack.enter_context(ledger.lock)

    def history_event(self) -> HistoryEvent:
        with ExitStack() as stack:
            self._locked_ledgers(stack)
            return HistoryEvent(
                targets={name: ledger.summary() for name, ledger in self.ledgers.items()}
            )

    def subscribe(self, sink: Sink) -> HistoryEvent:
        """Register ``sink`` and hand it the current history first."""
        with ExitStack() as stack:
            self._locked_ledgers(stack)
            snapshot = self.history_event()
            self.hub.subscribe(sink, snapshot)
        return snapshot

    def unsubscribe(self, sink: Sink) -> None:
        self.hub.unsubscribe(sink)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    def restore(self, snapshots: Mapping[str, LedgerSnapshot]) -> list[str]:
        """Hydrate ledgers from persisted state; unknown targets are skipped."""
        restored = []
        for name, snapshot in snapshots.items():
            ledger = self.ledgers.get(name)
            if ledger is None:
                logger.warning("[State] ignoring persisted state for unknown target=%s", name)
                continue
            ledger.restore(snapshot)
            restored.append(name)
            logger.info(
                "[State] restored target=%s received=%d lost=%d buckets=%d last_seq=%s",
                name, ledger.received, ledger.lost, len(ledger.aggregates), ledger.last_seq,
            )
        return restored

    def export_state(self) -> Dict[str, LedgerSnapshot]:
        """Point-in-time copy of every ledger's durable fields."""
        with ExitStack() as stack:
            self._locked_ledgers(stack)
            return {name: ledger.snapshot() for name, ledger in self.ledgers.items()}

    def get_stats(self) -> dict:
        return {
            "targets": {name: ledger.stats() for name, ledger in self.ledgers.items()},
            "ignored_lines": self._ignored_lines,
            "ignored_duplicates": self._ignored_duplicates,
            "ignored_stale": self._ignored_stale,
            "hub": self.hub.get_stats(),
        }
