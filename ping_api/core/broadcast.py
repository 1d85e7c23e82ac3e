"""Fan-out of live update events to connected subscribers.

Each subscriber owns a bounded queue (``QueueSink``) living on the event
loop; the HTTP layer awaits it for its SSE response. Publishing never
blocks: a sink that is closed or whose backlog is full is dropped from the
hub.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import uuid
from typing import Any, Dict, List, Mapping, Optional, Protocol, Union

from pydantic import BaseModel

from ..errors import SinkDeliveryError

logger = logging.getLogger(__name__)


def format_sse(payload: str) -> str:
    """One SSE frame: ``data:`` lines terminated by a blank line."""
    lines = payload.splitlines() or [""]
    return "".join(f"data: {line}\n" for line in lines) + "\n"


def serialize_event(event: Union[BaseModel, Mapping[str, Any]]) -> str:
    if isinstance(event, BaseModel):
        return event.model_dump_json(by_alias=True)
    return json.dumps(event, separators=(",", ":"))


def _close_quietly(sink: "Sink") -> None:
    close = getattr(sink, "close", None)
    if close is None:
        return
    try:
        close()
    except Exception:
        logger.exception("[SSE] closing sink=%s failed", sink.sink_id)


class Sink(Protocol):
    sink_id: str

    def deliver(self, message: str) -> None:
        """Accept one framed message or raise ``SinkDeliveryError``."""
        ...


class QueueSink:
    """Bounded message queue for one subscriber, drained on the event loop.

    ``deliver`` may be called from any thread; messages are handed to the
    loop with ``call_soon_threadsafe`` so the reader awaits without holding
    a worker thread.
    """

    def __init__(
        self,
        maxsize: int = 1000,
        sink_id: Optional[str] = None,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ) -> None:
        self.sink_id = sink_id or uuid.uuid4().hex[:12]
        self._maxsize = maxsize
        self._loop = loop or asyncio.get_running_loop()
        self._queue: "asyncio.Queue[Optional[str]]" = asyncio.Queue()
        self._lock = threading.Lock()
        self._backlog = 0
        self._closed = False
        self._drained = False

    @property
    def closed(self) -> bool:
        return self._closed

    def deliver(self, message: str) -> None:
        with self._lock:
            if self._closed:
                raise SinkDeliveryError(self.sink_id, "closed")
            if self._backlog >= self._maxsize:
                raise SinkDeliveryError(self.sink_id, "backlog full")
            self._backlog += 1
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, message)
        except RuntimeError:
            raise SinkDeliveryError(self.sink_id, "event loop closed")

    async def next_message(self, timeout: Optional[float] = None) -> Optional[str]:
        """Next queued message; None once the sink is closed and drained.

        Raises ``asyncio.TimeoutError`` when nothing arrives within ``timeout``.
        """
        if self._drained:
            return None
        message = await asyncio.wait_for(self._queue.get(), timeout)
        if message is None:
            self._drained = True
            return None
        with self._lock:
            self._backlog -= 1
        return message

    def close(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._closed = True
        # Queued after every delivered message; wakes the reader.
        try:
            self._loop.call_soon_threadsafe(self._queue.put_nowait, None)
        except RuntimeError:
            self._drained = True


class BroadcastHub:
    """Registry of subscriber sinks with best-effort delivery."""

    def __init__(self) -> None:
        self._sinks: Dict[str, Sink] = {}
        self._lock = threading.Lock()
        self._total_published = 0
        self._total_dropped = 0

    def subscribe(self, sink: Sink, snapshot: Optional[Union[BaseModel, Mapping[str, Any]]] = None):
        """Register ``sink``; ``snapshot`` is delivered to it before any later event."""
        with self._lock:
            if snapshot is not None:
                sink.deliver(format_sse(serialize_event(snapshot)))
            self._sinks[sink.sink_id] = sink
            count = len(self._sinks)
        logger.info("[SSE] subscriber added sink=%s subscribers=%d", sink.sink_id, count)
        return snapshot

    def unsubscribe(self, sink: Sink) -> bool:
        with self._lock:
            removed = self._sinks.pop(sink.sink_id, None) is not None
            count = len(self._sinks)
        if removed:
            logger.info("[SSE] subscriber removed sink=%s subscribers=%d", sink.sink_id, count)
        return removed

    def publish(self, event: Union[BaseModel, Mapping[str, Any]]) -> int:
        """Deliver ``event`` to every current sink; returns how many accepted it."""
        message = format_sse(serialize_event(event))

        with self._lock:
            sinks: List[Sink] = list(self._sinks.values())
            self._total_published += 1

        delivered = 0
        for sink in sinks:
            try:
                sink.deliver(message)
                delivered += 1
            except Exception as e:
                logger.warning("[SSE] dropping subscriber sink=%s err=%s", sink.sink_id, e)
                with self._lock:
                    if self._sinks.pop(sink.sink_id, None) is not None:
                        self._total_dropped += 1
                _close_quietly(sink)
        return delivered

    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._sinks)

    def close_all(self) -> None:
        with self._lock:
            sinks = list(self._sinks.values())
            self._sinks.clear()
        for sink in sinks:
            _close_quietly(sink)

    def get_stats(self) -> dict:
        with self._lock:
            return {
                "subscribers": len(self._sinks),
                "total_published": self._total_published,
                "total_dropped": self._total_dropped,
            }
