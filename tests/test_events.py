"""Tests for the room event bus."""

import asyncio

import pytest

from burnroom.events import InMemoryRoomEventBus


@pytest.fixture
def bus():
    """Create a fresh InMemoryRoomEventBus for each test."""
    return InMemoryRoomEventBus()


class TestPublishAndSubscribe:
    """Tests for basic publish/subscribe behavior."""

    @pytest.mark.asyncio
    async def test_subscriber_receives_event(self, bus):
        async with bus.subscribe("ROOM1") as sub:
            delivered = await bus.publish("ROOM1", {"sender": "u1", "message": "ct"})
            event = await sub.get(timeout=1.0)

        assert delivered == 1
        assert event == {"sender": "u1", "message": "ct"}

    @pytest.mark.asyncio
    async def test_publish_without_subscribers(self, bus):
        """Publishing to a room nobody listens to is a no-op."""
        assert await bus.publish("ROOM1", {"sender": "u1", "message": "ct"}) == 0

    @pytest.mark.asyncio
    async def test_fan_out_to_all_subscribers(self, bus):
        async with bus.subscribe("ROOM1") as a, bus.subscribe("ROOM1") as b:
            delivered = await bus.publish("ROOM1", {"sender": "u1", "message": "ct"})

            assert delivered == 2
            assert await a.get(timeout=1.0) == {"sender": "u1", "message": "ct"}
            assert await b.get(timeout=1.0) == {"sender": "u1", "message": "ct"}

    @pytest.mark.asyncio
    async def test_events_scoped_per_room(self, bus):
        """A subscriber only sees its own room's events."""
        async with bus.subscribe("ROOM1") as sub:
            await bus.publish("ROOM2", {"sender": "u1", "message": "other"})
            assert await sub.get(timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_no_replay_for_late_subscribers(self, bus):
        await bus.publish("ROOM1", {"sender": "u1", "message": "early"})

        async with bus.subscribe("ROOM1") as sub:
            assert await sub.get(timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_events_arrive_in_publish_order(self, bus):
        async with bus.subscribe("ROOM1") as sub:
            for i in range(5):
                await bus.publish("ROOM1", {"sender": "u1", "message": str(i)})

            received = [(await sub.get(timeout=1.0))["message"] for _ in range(5)]

        assert received == ["0", "1", "2", "3", "4"]

    @pytest.mark.asyncio
    async def test_async_iteration(self, bus):
        async with bus.subscribe("ROOM1") as sub:

            async def delayed_publish():
                await asyncio.sleep(0.05)
                await bus.publish("ROOM1", {"sender": "u2", "message": "ct"})

            task = asyncio.create_task(delayed_publish())
            event = await asyncio.wait_for(sub.__anext__(), timeout=1.0)
            await task

        assert event["sender"] == "u2"


class TestSubscriptionLifecycle:
    @pytest.mark.asyncio
    async def test_subscriber_count(self, bus):
        assert bus.subscriber_count("ROOM1") == 0

        async with bus.subscribe("ROOM1"):
            assert bus.subscriber_count("ROOM1") == 1
            async with bus.subscribe("ROOM1"):
                assert bus.subscriber_count("ROOM1") == 2
            assert bus.subscriber_count("ROOM1") == 1

        assert bus.subscriber_count("ROOM1") == 0

    @pytest.mark.asyncio
    async def test_unsubscribe_on_error(self, bus):
        """The subscription is removed even if the consumer raises."""
        with pytest.raises(RuntimeError):
            async with bus.subscribe("ROOM1"):
                raise RuntimeError("consumer crashed")

        assert bus.subscriber_count("ROOM1") == 0


class TestSlowSubscribers:
    @pytest.mark.asyncio
    async def test_full_queue_drops_events(self):
        """A subscriber that falls behind loses events instead of blocking."""
        bus = InMemoryRoomEventBus(queue_size=2)

        async with bus.subscribe("ROOM1") as slow, bus.subscribe("ROOM1") as fast:
            results = []
            for i in range(3):
                results.append(await bus.publish("ROOM1", {"sender": "u1", "message": str(i)}))
                # Drain the fast subscriber so only the slow one fills up
                await fast.get(timeout=1.0)

            assert results == [2, 2, 1]
            assert slow.dropped == 1
            assert (await slow.get(timeout=1.0))["message"] == "0"
            assert (await slow.get(timeout=1.0))["message"] == "1"
            assert await slow.get(timeout=0.05) is None
