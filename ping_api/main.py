from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, Optional

from fastapi import FastAPI
from fastapi.staticfiles import StaticFiles

from common.config import Settings, get_settings

from . import __version__
from .core.aggregator import Aggregator
from .core.intervals import now_ms
from .core.monitor import ProbeMonitor
from .endpoints import events_router, health_router
from .persistence import PersistenceScheduler, StateStore
from .probes import PingProcess

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Everything the service runs: ledgers, hub, background workers."""

    settings: Settings
    monitor: ProbeMonitor
    store: StateStore
    aggregator: Aggregator
    persistence: PersistenceScheduler
    probes: Dict[str, PingProcess] = field(default_factory=dict)

    def start(self) -> None:
        self.persistence.start()
        self.aggregator.start()
        for probe in self.probes.values():
            probe.start()
        logger.info("[Runtime] started targets=%s", ",".join(self.monitor.targets))

    def stop(self) -> None:
        for probe in self.probes.values():
            probe.stop()
        self.aggregator.stop()
        self.persistence.stop(flush_remaining=True)
        self.monitor.hub.close_all()
        logger.info("[Runtime] stopped")

    def get_stats(self) -> dict:
        stats = self.monitor.get_stats()
        stats["aggregator"] = self.aggregator.get_stats()
        stats["persistence"] = self.persistence.get_stats()
        stats["probes"] = {name: probe.get_stats() for name, probe in self.probes.items()}
        return stats


def build_runtime(settings: Settings, clock: Callable[[], int] = now_ms) -> Runtime:
    """Create ledgers, hydrate them from the state file and wire the workers."""
    if settings.window_ms < 2 * settings.aggregation_interval_ms:
        logger.warning(
            "WINDOW_SECONDS=%.0f is shorter than two aggregation intervals (%.0fs); "
            "samples may age out before their interval is folded",
            settings.window_seconds, settings.aggregation_interval_seconds,
        )

    monitor = ProbeMonitor(settings.targets, settings.window_ms, clock=clock)
    store = StateStore(settings.state_file)
    monitor.restore(store.load())

    persistence = PersistenceScheduler(
        store,
        monitor.export_state,
        interval=settings.persist_interval_seconds,
    )
    aggregator = Aggregator(
        monitor.ledgers,
        settings.aggregation_interval_ms,
        clock=clock,
        on_pass=lambda _written: persistence.flush(),
    )
    probes = {
        target: PingProcess(
            target,
            settings.ping_command,
            on_line=monitor.handle_line,
            on_restart=monitor.source_restarted,
        )
        for target in settings.targets
    }
    return Runtime(
        settings=settings,
        monitor=monitor,
        store=store,
        aggregator=aggregator,
        persistence=persistence,
        probes=probes,
    )


def create_app(
    settings: Optional[Settings] = None,
    runtime: Optional[Runtime] = None,
    start_background: bool = True,
) -> FastAPI:
    settings = settings or get_settings()
    runtime = runtime or build_runtime(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if start_background:
            runtime.start()
        try:
            yield
        finally:
            if start_background:
                runtime.stop()

    app = FastAPI(title="ICMP Watch", version=__version__, lifespan=lifespan)
    app.state.runtime = runtime

    app.include_router(health_router)
    app.include_router(events_router)

    # Static dashboard last so the API routes win.
    static_root = Path(settings.static_root)
    if static_root.is_dir():
        app.mount("/", StaticFiles(directory=str(static_root), html=True), name="static")
    else:
        logger.warning("[HTTP] static root %s not found, dashboard assets not served", static_root)

    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler()],
    )

    app = create_app(settings)
    logger.info("running on port %d", settings.port)
    uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    main()
