"""Probe sources feeding raw lines into the monitor."""

from .ping_process import PingProcess, build_command

__all__ = [
    "PingProcess",
    "build_command",
]
