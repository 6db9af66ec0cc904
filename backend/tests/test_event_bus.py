from __future__ import annotations

import asyncio

from backend.app.models.session import SessionEvent
from backend.app.services.event_bus import SessionEventBus


def test_events_reach_only_listeners_of_that_session() -> None:
    async def scenario() -> None:
        bus = SessionEventBus()
        first = await bus.subscribe("a")
        other = await bus.subscribe("b")

        await bus.publish(SessionEvent(session_id="a", type="program_updated"))

        assert first.get_nowait().type == "program_updated"
        assert other.empty()

    asyncio.run(scenario())


def test_full_queue_drops_oldest_event() -> None:
    async def scenario() -> None:
        bus = SessionEventBus(queue_size=2)
        queue = await bus.subscribe("a")

        for index in range(3):
            await bus.publish(SessionEvent(session_id="a", type="preview_values", payload={"frame": index}))

        frames = [queue.get_nowait().payload["frame"] for _ in range(queue.qsize())]
        assert frames == [1, 2]

    asyncio.run(scenario())


def test_unsubscribe_removes_listener() -> None:
    async def scenario() -> None:
        bus = SessionEventBus()
        queue = await bus.subscribe("a")
        assert await bus.listener_count("a") == 1

        assert await bus.unsubscribe("a", queue) is not None
        assert await bus.unsubscribe("a", queue) is None

        assert await bus.listener_count("a") == 0
        await bus.publish(SessionEvent(session_id="a", type="session_closed"))
        assert queue.empty()

    asyncio.run(scenario())


def test_dropped_events_are_counted_per_listener() -> None:
    async def scenario() -> None:
        bus = SessionEventBus(queue_size=1)
        slow = await bus.subscribe("a")
        fast = await bus.subscribe("a")

        await bus.publish(SessionEvent(session_id="a", type="preview_values", payload={"frame": 0}))
        fast.get_nowait()
        await bus.publish(SessionEvent(session_id="a", type="preview_values", payload={"frame": 1}))

        slow_listener = await bus.unsubscribe("a", slow)
        fast_listener = await bus.unsubscribe("a", fast)
        assert slow_listener is not None and fast_listener is not None
        assert (slow_listener.delivered, slow_listener.dropped) == (2, 1)
        assert (fast_listener.delivered, fast_listener.dropped) == (2, 0)
        assert slow.get_nowait().payload["frame"] == 1

    asyncio.run(scenario())


def test_listeners_can_filter_by_event_type() -> None:
    async def scenario() -> None:
        bus = SessionEventBus()
        structural = await bus.subscribe("a", ["graph_updated", "parse_failed"])
        everything = await bus.subscribe("a")

        preview = await bus.publish(SessionEvent(session_id="a", type="preview_values"))
        update = await bus.publish(SessionEvent(session_id="a", type="graph_updated"))

        assert (preview, update) == (1, 2)
        assert [structural.get_nowait().type for _ in range(structural.qsize())] == ["graph_updated"]
        assert everything.qsize() == 2

    asyncio.run(scenario())
