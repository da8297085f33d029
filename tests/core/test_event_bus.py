"""
Tests for the in-process event bus.
"""
import asyncio

import pytest

from sniper.core.event_bus import Event, EventBus, EventType


async def drain(bus):
    for _ in range(50):
        if bus._event_queue.empty():
            break
        await asyncio.sleep(0.01)
    await asyncio.sleep(0.01)


@pytest.mark.asyncio
async def test_handlers_receive_published_events():
    bus = EventBus()
    received = []

    async def on_opened(event):
        received.append(event)

    bus.subscribe(EventType.POSITION_OPENED, on_opened)
    bus.subscribe("position_opened", lambda event: received.append(event.source))

    await bus.start()
    await bus.publish(EventType.POSITION_OPENED, {"tokenAddress": "A"}, source="position_manager")
    await drain(bus)
    await bus.stop()

    assert isinstance(received[0], Event)
    assert received[0].type == "position_opened"
    assert received[0].data == {"tokenAddress": "A"}
    assert received[1] == "position_manager"


@pytest.mark.asyncio
async def test_failing_handler_does_not_stop_dispatch():
    bus = EventBus()
    received = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(EventType.POSITION_CLOSED, broken)
    bus.subscribe(EventType.POSITION_CLOSED, received.append)

    await bus.dispatch(Event("position_closed", None, None, "test"))
    assert len(received) == 1
    assert bus.handler_errors == 1


@pytest.mark.asyncio
async def test_full_queue_drops_events():
    bus = EventBus(max_queue_size=1)
    await bus.publish(EventType.TOKEN_DISCOVERED, "a")
    await bus.publish(EventType.TOKEN_DISCOVERED, "b")

    assert bus.published_count == 1
    assert bus.dropped_count == 1


@pytest.mark.asyncio
async def test_unsubscribe():
    bus = EventBus()
    received = []
    bus.subscribe(EventType.CONNECTION_LOST, received.append)
    bus.unsubscribe(EventType.CONNECTION_LOST, received.append)

    await bus.dispatch(Event("connection_lost", "closed", None, "test"))
    assert received == []


@pytest.mark.asyncio
async def test_history_and_stats():
    bus = EventBus(history_size=2)
    await bus.start()
    assert bus.is_running

    for source in ("a", "b", "c"):
        await bus.publish(EventType.TOKEN_DISCOVERED, source, source=source)
    await drain(bus)

    stats = bus.get_stats()
    assert stats["published"] == 3
    assert [e["source"] for e in stats["recent"]] == ["b", "c"]
    assert bus.recent_events(limit=1)[0]["type"] == "token_discovered"

    await bus.stop()
    assert bus.is_running is False
    assert bus.get_stats()["running"] is False
