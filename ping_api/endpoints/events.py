"""Server-Sent Events stream of history and live probe updates.

Protocol:
1. Server → ``data: {"type": "history", "targets": {...}}``
2. Server → ``data: {"type": "ping" | "loss", ...}`` for every processed probe line
3. Server → ``: keepalive`` comment after a quiet period

The stream ends when the client disconnects or the hub drops the
subscriber (backlog full, shutdown).
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from fastapi import APIRouter, Request
from fastapi.responses import StreamingResponse

from ..core.broadcast import QueueSink
from ..core.monitor import ProbeMonitor

logger = logging.getLogger(__name__)

router = APIRouter(tags=["events"])

KEEPALIVE_FRAME = ": keepalive\n\n"

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "Access-Control-Allow-Origin": "*",
    "X-Accel-Buffering": "no",
}


async def event_stream(
    request: Request,
    monitor: ProbeMonitor,
    sink: QueueSink,
    keepalive_seconds: float = 15.0,
) -> AsyncIterator[str]:
    """Drain ``sink`` into SSE frames until the client goes away."""
    try:
        while True:
            if await request.is_disconnected():
                logger.info("[SSE] client disconnected sink=%s", sink.sink_id)
                break
            try:
                message = await sink.next_message(keepalive_seconds)
            except asyncio.TimeoutError:
                yield KEEPALIVE_FRAME
                continue
            if message is None:
                break
            yield message
    finally:
        monitor.unsubscribe(sink)
        sink.close()


@router.get("/events")
async def events(request: Request):
    runtime = request.app.state.runtime
    settings = runtime.settings

    sink = QueueSink(maxsize=settings.sse_queue_size)
    runtime.monitor.subscribe(sink)

    return StreamingResponse(
        event_stream(request, runtime.monitor, sink, settings.sse_keepalive_seconds),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )
