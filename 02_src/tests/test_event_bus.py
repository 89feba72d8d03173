"""Tests for EventBus."""

from datetime import datetime, timezone

import pytest

from campus_messaging.models import BusMessage, Topic


def bus_message(topic=Topic.MESSAGE_SENT, payload=None, source="test"):
    return BusMessage(
        id="bus1",
        topic=topic,
        payload=payload if payload is not None else {},
        source=source,
        timestamp=datetime.now(timezone.utc),
    )


class TestEventBusSubscribe:
    """Tests for EventBus subscription."""

    @pytest.mark.asyncio
    async def test_unsubscribe_stops_delivery(self, event_bus):
        """Test that an unsubscribed handler no longer receives messages."""
        calls = []

        async def handler(msg: BusMessage):
            calls.append(msg)

        event_bus.subscribe(Topic.MESSAGE_SENT, handler)
        event_bus.unsubscribe(Topic.MESSAGE_SENT, handler)
        # Removing twice is harmless
        event_bus.unsubscribe(Topic.MESSAGE_SENT, handler)

        await event_bus.publish(bus_message())

        assert calls == []


class TestEventBusPublish:
    """Tests for EventBus publishing."""

    @pytest.mark.asyncio
    async def test_publish_multiple_subscribers(self, event_bus):
        """Test publishing to multiple subscribers."""
        calls = []

        async def handler1(msg: BusMessage):
            calls.append(("h1", msg.id))

        async def handler2(msg: BusMessage):
            calls.append(("h2", msg.id))

        event_bus.subscribe(Topic.BROADCAST_COMPLETED, handler1)
        event_bus.subscribe(Topic.BROADCAST_COMPLETED, handler2)

        await event_bus.publish(bus_message(Topic.BROADCAST_COMPLETED))

        assert sorted(calls) == [("h1", "bus1"), ("h2", "bus1")]

    @pytest.mark.asyncio
    async def test_publish_different_topics(self, event_bus):
        """Test that subscribers only receive messages from their topic."""
        sent_calls = []
        attendance_calls = []

        async def sent_handler(msg: BusMessage):
            sent_calls.append(msg)

        async def attendance_handler(msg: BusMessage):
            attendance_calls.append(msg)

        event_bus.subscribe(Topic.MESSAGE_SENT, sent_handler)
        event_bus.subscribe(Topic.ATTENDANCE_MARKED, attendance_handler)

        await event_bus.publish(bus_message(Topic.MESSAGE_SENT))

        assert len(sent_calls) == 1
        assert len(attendance_calls) == 0

    @pytest.mark.asyncio
    async def test_emit_builds_and_persists_message(self, event_bus, storage):
        """Test that emit() assigns id and timestamp and stores the message."""
        emitted = await event_bus.emit(
            Topic.ATTENDANCE_MARKED, {"class_id": "10A - 2024"}, source="attendance"
        )

        assert emitted.id
        stored = await storage.get_bus_messages()
        assert len(stored) == 1
        assert stored[0].topic == Topic.ATTENDANCE_MARKED
        assert stored[0].payload == {"class_id": "10A - 2024"}
        assert stored[0].source == "attendance"

    @pytest.mark.asyncio
    async def test_publish_error_in_handler(self, event_bus, storage):
        """Test that errors in one handler don't affect others."""
        calls = []

        async def failing_handler(msg: BusMessage):
            calls.append("failing")
            raise RuntimeError("Test error")

        async def normal_handler(msg: BusMessage):
            calls.append("normal")

        event_bus.subscribe(Topic.MESSAGE_SENT, failing_handler)
        event_bus.subscribe(Topic.MESSAGE_SENT, normal_handler)

        # Should not raise error
        await event_bus.publish(bus_message())

        assert sorted(calls) == ["failing", "normal"]
        assert len(await storage.get_bus_messages()) == 1
