"""Supervised ``ping`` subprocess, one per target.

The process runs until the service stops. Every stdout line goes to
``on_line(target, line)``. When the process exits it is started again with
exponential backoff, and ``on_restart(target)`` is called before the new
process produces output so the sequence reconciler can re-anchor.
"""

from __future__ import annotations

import logging
import shlex
import subprocess
import threading
import time
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)

LineHandler = Callable[[str, str], None]
RestartHandler = Callable[[str], None]


def build_command(template: str, target: str) -> List[str]:
    """``"ping -O {target}"`` → ``["ping", "-O", "1.1.1.1"]``."""
    if "{target}" in template:
        return shlex.split(template.format(target=target))
    return shlex.split(template) + [target]


class PingProcess:
    """Runs and restarts the probe process for one target."""

    INITIAL_BACKOFF = 1.0  # seconds
    MAX_BACKOFF = 60.0

    def __init__(
        self,
        target: str,
        command_template: str,
        on_line: LineHandler,
        on_restart: Optional[RestartHandler] = None,
        popen: Callable[..., subprocess.Popen] = subprocess.Popen,
    ):
        self.target = target
        self.command = build_command(command_template, target)
        self._on_line = on_line
        self._on_restart = on_restart
        self._popen = popen

        self._process: Optional[subprocess.Popen] = None
        self._process_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        # Stats
        self._starts = 0
        self._lines = 0
        self._handler_errors = 0
        self._last_line_at: float = 0
        self._last_exit_code: Optional[int] = None

    @property
    def running(self) -> bool:
        with self._process_lock:
            return self._process is not None and self._process.poll() is None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._supervise, name=f"ping-{self.target}", daemon=True
        )
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        with self._process_lock:
            process = self._process
        if process is not None and process.poll() is None:
            process.terminate()
            try:
                process.wait(timeout=3.0)
            except subprocess.TimeoutExpired:
                logger.warning("[Probe] target=%s did not terminate, killing", self.target)
                process.kill()
        if self._thread is not None:
            self._thread.join(timeout=5.0)
            self._thread = None
        logger.info(
            "[Probe] stopped target=%s starts=%d lines=%d",
            self.target, self._starts, self._lines,
        )

    def _supervise(self) -> None:
        backoff = self.INITIAL_BACKOFF
        while not self._stop_event.is_set():
            started_at = time.monotonic()
            self._run_once()
            if self._stop_event.is_set():
                break

            # A process that ran for a while resets the backoff.
            if time.monotonic() - started_at > self.MAX_BACKOFF:
                backoff = self.INITIAL_BACKOFF
            logger.error(
                "[Probe] process for target=%s exited code=%s, restarting in %.1fs",
                self.target, self._last_exit_code, backoff,
            )
            if self._stop_event.wait(backoff):
                break
            backoff = min(backoff * 2, self.MAX_BACKOFF)

    def _run_once(self) -> None:
        try:
            process = self._popen(
                self.command,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                bufsize=1,
            )
        except OSError as e:
            self._last_exit_code = None
            logger.error("[Probe] cannot start %s: %s", self.command, e)
            return

        with self._process_lock:
            self._process = process
        self._starts += 1
        logger.info("[Probe] started target=%s pid=%s cmd=%s", self.target, process.pid, self.command)

        if self._on_restart is not None:
            try:
                self._on_restart(self.target)
            except Exception:
                logger.exception("[Probe] restart handler failed target=%s", self.target)

        try:
            for line in process.stdout:
                self._dispatch(line.rstrip("\r\n"))
        finally:
            self._last_exit_code = process.wait()
            with self._process_lock:
                self._process = None

    def _dispatch(self, line: str) -> None:
        self._lines += 1
        self._last_line_at = time.time()
        try:
            self._on_line(self.target, line)
        except Exception:
            self._handler_errors += 1
            logger.exception("[Probe] line handler failed target=%s line=%r", self.target, line)

    def get_stats(self) -> dict:
        return {
            "command": self.command,
            "running": self.running,
            "starts": self._starts,
            "lines": self._lines,
            "handler_errors": self._handler_errors,
            "last_line_at": self._last_line_at,
            "last_exit_code": self._last_exit_code,
        }
