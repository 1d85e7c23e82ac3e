"""Tests for the broadcast hub and queue sinks."""

import asyncio
import json
import threading

import pytest

from ping_api.core.broadcast import BroadcastHub, QueueSink, format_sse
from ping_api.errors import SinkDeliveryError
from ping_api.schemas import HistoryEvent

from conftest import RecordingSink


def _decode(frame: str) -> dict:
    assert frame.startswith("data: ")
    assert frame.endswith("\n\n")
    return json.loads(frame[len("data: "):-2])


class TestFraming:

    def test_single_line_payload(self):
        assert format_sse('{"a":1}') == 'data: {"a":1}\n\n'

    def test_multi_line_payload(self):
        assert format_sse("a\nb") == "data: a\ndata: b\n\n"


class TestQueueSink:

    @pytest.mark.asyncio
    async def test_full_backlog_raises(self):
        sink = QueueSink(maxsize=1)
        sink.deliver("one")

        with pytest.raises(SinkDeliveryError):
            sink.deliver("two")

    @pytest.mark.asyncio
    async def test_reading_frees_backlog(self):
        sink = QueueSink(maxsize=1)
        sink.deliver("one")

        assert await sink.next_message(timeout=0.5) == "one"
        sink.deliver("two")
        assert await sink.next_message(timeout=0.5) == "two"

    @pytest.mark.asyncio
    async def test_closed_sink_rejects_and_drains(self):
        sink = QueueSink(maxsize=5)
        sink.deliver("one")
        sink.close()

        with pytest.raises(SinkDeliveryError):
            sink.deliver("two")
        assert await sink.next_message(timeout=0.5) == "one"
        assert await sink.next_message(timeout=0.5) is None
        assert await sink.next_message(timeout=0.5) is None

    @pytest.mark.asyncio
    async def test_empty_sink_times_out(self):
        sink = QueueSink()

        with pytest.raises(asyncio.TimeoutError):
            await sink.next_message(timeout=0.01)

    @pytest.mark.asyncio
    async def test_delivery_from_another_thread_wakes_reader(self):
        sink = QueueSink()
        publisher = threading.Thread(target=sink.deliver, args=("from-probe-thread",))

        publisher.start()
        message = await sink.next_message(timeout=2.0)
        publisher.join()

        assert message == "from-probe-thread"


class TestHub:

    def test_publish_reaches_every_sink_with_same_frame(self, hub):
        a, b = RecordingSink("a"), RecordingSink("b")
        hub.subscribe(a)
        hub.subscribe(b)

        delivered = hub.publish({"type": "ping", "target": "x"})

        assert delivered == 2
        assert a.messages == b.messages
        assert _decode(a.messages[0]) == {"type": "ping", "target": "x"}

    def test_failing_sink_is_dropped_and_others_still_served(self, hub):
        good, bad = RecordingSink("good"), RecordingSink("bad", fail=True)
        hub.subscribe(bad)
        hub.subscribe(good)

        delivered = hub.publish({"n": 1})
        hub.publish({"n": 2})

        assert delivered == 1
        assert [_decode(m)["n"] for m in good.messages] == [1, 2]
        assert bad.closed is True
        assert hub.subscriber_count() == 1
        assert hub.get_stats()["total_dropped"] == 1

    def test_snapshot_is_delivered_first(self, hub):
        sink = RecordingSink()

        returned = hub.subscribe(sink, HistoryEvent())
        hub.publish({"type": "ping"})

        assert isinstance(returned, HistoryEvent)
        assert [_decode(m)["type"] for m in sink.messages] == ["history", "ping"]

    def test_unsubscribe_is_idempotent(self, hub):
        sink = RecordingSink()
        hub.subscribe(sink)

        assert hub.unsubscribe(sink) is True
        assert hub.unsubscribe(sink) is False
        assert hub.publish({"n": 1}) == 0

    def test_unsubscribe_during_delivery(self, hub):
        others = [RecordingSink(f"s{i}") for i in range(3)]

        class Unsubscriber(RecordingSink):
            def deliver(self, message):
                super().deliver(message)
                for other in others:
                    hub.unsubscribe(other)

        first = Unsubscriber("first")
        hub.subscribe(first)
        for other in others:
            hub.subscribe(other)

        hub.publish({"n": 1})

        # The delivery pass works on a copy; later passes see the removal.
        assert all(len(o.messages) == 1 for o in others)
        hub.publish({"n": 2})
        assert all(len(o.messages) == 1 for o in others)
        assert len(first.messages) == 2

    @pytest.mark.asyncio
    async def test_close_all(self, hub):
        sinks = [QueueSink(), QueueSink()]
        for sink in sinks:
            hub.subscribe(sink)

        hub.close_all()

        assert hub.subscriber_count() == 0
        assert all(s.closed for s in sinks)
