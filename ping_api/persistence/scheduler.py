"""Periodic flush of ledger state to the state file.

Same shape as the other background workers: a daemon thread, a stop event,
a final flush on stop. A failed write is logged and retried on the next
tick; it never stops the thread.
"""

from __future__ import annotations

import logging
import threading
import time
from typing import Callable, Dict, Mapping, Optional

from ..core.ledger import LedgerSnapshot
from ..errors import PersistenceWriteError
from .state_store import StateStore

logger = logging.getLogger(__name__)


class PersistenceScheduler:
    """Writes ``snapshot_source()`` to ``store`` every ``interval`` seconds."""

    DEFAULT_INTERVAL = 10.0  # seconds

    def __init__(
        self,
        store: StateStore,
        snapshot_source: Callable[[], Mapping[str, LedgerSnapshot]],
        interval: float = DEFAULT_INTERVAL,
    ):
        self._store = store
        self._snapshot_source = snapshot_source
        self._interval = float(interval)

        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Metrics
        self._total_writes = 0
        self._total_failures = 0
        self._last_write_at: Optional[float] = None
        self._last_error: Optional[str] = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(target=self._flush_loop, name="state-flush", daemon=True)
        self._thread.start()
        logger.info("[State] persistence started file=%s interval=%.1fs", self._store.path, self._interval)

    def stop(self, flush_remaining: bool = True) -> None:
        self._stop_event.set()

        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None

        if flush_remaining:
            self.flush()

        logger.info(
            "[State] persistence stopped writes=%d failures=%d",
            self._total_writes, self._total_failures,
        )

    def _flush_loop(self) -> None:
        while not self._stop_event.wait(self._interval):
            self.flush()

    def flush(self) -> bool:
        """Write one snapshot now; returns False if the write failed."""
        with self._lock:
            try:
                snapshots: Dict[str, LedgerSnapshot] = dict(self._snapshot_source())
            except Exception as e:
                self._total_failures += 1
                self._last_error = f"snapshot failed: {type(e).__name__}"
                logger.exception("[State] snapshot failed; retrying on next flush")
                return False

            try:
                self._store.save(snapshots)
            except PersistenceWriteError as e:
                self._total_failures += 1
                self._last_error = str(e)
                logger.error("[State] %s; retrying on next flush", e)
                return False

            self._total_writes += 1
            self._last_write_at = time.time()
            self._last_error = None
            logger.debug("[State] saved %d targets to %s", len(snapshots), self._store.path)
            return True

    def get_stats(self) -> dict:
        return {
            "file": str(self._store.path),
            "interval_seconds": self._interval,
            "total_writes": self._total_writes,
            "total_failures": self._total_failures,
            "last_write_at": self._last_write_at,
            "last_error": self._last_error,
        }
