from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from dotenv import load_dotenv


DEFAULT_TARGETS = "1.1.1.1,192.168.1.1"
DEFAULT_PING_COMMAND = "ping -O {target}"


def _default_env_file() -> str:
    return str(Path.cwd() / ".env")


def _parse_targets(raw: str) -> Tuple[str, ...]:
    targets: list[str] = []
    for item in raw.split(","):
        name = item.strip()
        if name and name not in targets:
            targets.append(name)
    return tuple(targets)


@dataclass(frozen=True)
class Settings:
    host: str
    port: int
    static_root: str

    targets: Tuple[str, ...]
    ping_command: str

    window_seconds: float
    aggregation_interval_seconds: float
    persist_interval_seconds: float
    state_file: str

    sse_queue_size: int
    sse_keepalive_seconds: float

    log_level: str

    @property
    def window_ms(self) -> int:
        return int(self.window_seconds * 1000)

    @property
    def aggregation_interval_ms(self) -> int:
        return int(self.aggregation_interval_seconds * 1000)


def get_settings() -> Settings:
    # Load env file (if present) but still allow overriding via real environment variables.
    env_file = os.getenv("PING_ENV_FILE", _default_env_file())
    if env_file and Path(env_file).exists():
        load_dotenv(env_file, override=False)

    targets = _parse_targets(os.getenv("TARGETS", DEFAULT_TARGETS))
    if not targets:
        targets = _parse_targets(DEFAULT_TARGETS)

    return Settings(
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "5050")),
        static_root=os.getenv("STATIC_ROOT", "public"),
        targets=targets,
        ping_command=os.getenv("PING_COMMAND", DEFAULT_PING_COMMAND),
        window_seconds=float(os.getenv("WINDOW_SECONDS", "1200")),
        aggregation_interval_seconds=float(os.getenv("AGGREGATION_INTERVAL_SECONDS", "600")),
        persist_interval_seconds=float(os.getenv("PERSIST_INTERVAL_SECONDS", "10")),
        state_file=os.getenv("STATE_FILE", "aggregated.json"),
        sse_queue_size=int(os.getenv("SSE_QUEUE_SIZE", "1000")),
        sse_keepalive_seconds=float(os.getenv("SSE_KEEPALIVE_SECONDS", "15")),
        log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
    )
