"""Event bus for live room notifications.

Provides a pub/sub channel scoped per room. When a message is sent, the room
registry publishes ``{"sender": user_id, "message": ciphertext}`` to every
current subscriber of that room. Subscribers receive ciphertext, never plaintext.

Architecture:
    - RoomEventBus ABC defines the interface (swappable for Redis later)
    - InMemoryRoomEventBus fans out to per-subscriber asyncio queues
    - Delivery is at-most-once and best-effort: no persistence, no replay
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

logger = logging.getLogger(__name__)

# Events buffered per subscriber before new events are dropped for it
DEFAULT_QUEUE_SIZE = 100


class Subscription:
    """A single subscriber's view of one room's events.

    Iterate with ``async for`` to receive events as they are published.
    """

    def __init__(self, room_id: str, maxsize: int = DEFAULT_QUEUE_SIZE):
        self.room_id = room_id
        self.dropped = 0
        self._queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)

    def deliver(self, event: dict[str, Any]) -> bool:
        """Queue an event without blocking. Returns False if it was dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            self.dropped += 1
            return False
        return True

    async def get(self, timeout: float | None = None) -> dict[str, Any] | None:
        """Wait for the next event. Returns None on timeout."""
        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    def __aiter__(self) -> AsyncIterator[dict[str, Any]]:
        return self

    async def __anext__(self) -> dict[str, Any]:
        return await self._queue.get()


class RoomEventBus(ABC):
    """Abstract per-room event bus.

    Implementations must be async-compatible. The interface is designed
    to be backed by Redis pub/sub later without changing callers.
    """

    @abstractmethod
    async def publish(self, room_id: str, event: dict[str, Any]) -> int:
        """Deliver an event to all current subscribers of a room.

        Args:
            room_id: Room identifier
            event: Event payload, e.g. {"sender": ..., "message": ...}

        Returns:
            Number of subscribers the event was delivered to.
        """

    @abstractmethod
    def subscribe(self, room_id: str) -> Any:
        """Async context manager yielding a Subscription for a room.

        The subscription is registered on enter and removed on exit.
        """

    @abstractmethod
    def subscriber_count(self, room_id: str) -> int:
        """Number of live subscribers for a room."""


class InMemoryRoomEventBus(RoomEventBus):
    """In-memory event bus using asyncio queues.

    Suitable for single-instance deployments. Each subscriber owns a bounded
    queue; a subscriber that falls behind loses events rather than blocking
    the publisher.
    """

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self.queue_size = queue_size
        self._subscribers: dict[str, set[Subscription]] = defaultdict(set)

    async def publish(self, room_id: str, event: dict[str, Any]) -> int:
        delivered = 0
        for subscription in list(self._subscribers.get(room_id, ())):
            if subscription.deliver(event):
                delivered += 1
            else:
                logger.warning(f"Dropped event for slow subscriber in room {room_id}")
        return delivered

    @asynccontextmanager
    async def subscribe(self, room_id: str) -> AsyncIterator[Subscription]:
        subscription = Subscription(room_id, maxsize=self.queue_size)
        self._subscribers[room_id].add(subscription)
        logger.debug(f"Subscriber added to room {room_id}")
        try:
            yield subscription
        finally:
            subscribers = self._subscribers.get(room_id)
            if subscribers is not None:
                subscribers.discard(subscription)
                if not subscribers:
                    del self._subscribers[room_id]
            logger.debug(f"Subscriber removed from room {room_id}")

    def subscriber_count(self, room_id: str) -> int:
        return len(self._subscribers.get(room_id, ()))
