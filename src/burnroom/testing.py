"""Pytest fixtures for testing with burnroom.

Usage in conftest.py:
    pytest_plugins = ["burnroom.testing"]

Available fixtures:
    - memory_store: Fresh InMemoryStore
    - codec: AES-GCM codec with a fixed test secret
    - event_bus: Fresh InMemoryRoomEventBus
    - registry: RoomRegistry wired to the fixtures above
    - purge_scheduler: PurgeScheduler over memory_store (not started)

Test doubles:
    - FailingStore: every operation raises ConnectionError
    - CountingCodec: wraps a codec and counts encrypt/decrypt calls
"""

from __future__ import annotations

from typing import AsyncGenerator

import pytest
import pytest_asyncio

from .crypto import Codec, make_codec
from .events import InMemoryRoomEventBus
from .purge import PurgeScheduler
from .rooms import RoomRegistry
from .store import InMemoryStore, KeyValueStore

TEST_SECRET = "burnroom-test-secret"


class FailingStore(KeyValueStore):
    """Store whose every operation fails, to exercise StorageError paths."""

    def __init__(self, message: str = "store unreachable"):
        self.message = message
        self.calls = 0

    async def get(self, key: str) -> str | None:
        self.calls += 1
        raise ConnectionError(self.message)

    async def set(self, key: str, value: str) -> None:
        self.calls += 1
        raise ConnectionError(self.message)

    async def clear(self) -> None:
        self.calls += 1
        raise ConnectionError(self.message)


class CountingCodec(Codec):
    """Codec wrapper that records how often it was used."""

    def __init__(self, inner: Codec | None = None):
        self.inner = inner if inner is not None else make_codec(TEST_SECRET)
        self.name = self.inner.name
        self.encrypt_calls = 0
        self.decrypt_calls = 0

    def encrypt(self, plaintext: str) -> str:
        self.encrypt_calls += 1
        return self.inner.encrypt(plaintext)

    def decrypt(self, ciphertext: str) -> str:
        self.decrypt_calls += 1
        return self.inner.decrypt(ciphertext)


@pytest.fixture
def memory_store() -> InMemoryStore:
    """Fresh in-memory store. No cleanup needed."""
    return InMemoryStore()


@pytest.fixture
def codec() -> CountingCodec:
    """AES-GCM codec with a fixed secret, wrapped to count calls."""
    return CountingCodec()


@pytest.fixture
def event_bus() -> InMemoryRoomEventBus:
    return InMemoryRoomEventBus()


@pytest.fixture
def registry(
    memory_store: InMemoryStore,
    codec: CountingCodec,
    event_bus: InMemoryRoomEventBus,
) -> RoomRegistry:
    """RoomRegistry over memory_store, codec, and event_bus.

    Example:
        @pytest.mark.asyncio
        async def test_send(registry):
            room_id = await registry.create_room("u1")
            await registry.send_message(room_id, "u1", "hi")
    """
    return RoomRegistry(memory_store, codec, event_bus)


@pytest_asyncio.fixture
async def purge_scheduler(memory_store: InMemoryStore) -> AsyncGenerator[PurgeScheduler, None]:
    """PurgeScheduler over memory_store. Stopped after the test if started."""
    scheduler = PurgeScheduler(memory_store)
    yield scheduler
    await scheduler.stop()
