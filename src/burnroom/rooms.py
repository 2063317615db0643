"""Room registry and message log.

The registry owns room existence and membership transitions on top of a
KeyValueStore. Message bodies pass through a Codec before they are written,
so only ciphertext is ever persisted.

Every mutating operation is a read-modify-write of the whole room record with
no version check. Two concurrent operations on the same room can race and the
later write wins. A purge can also land between the read and the write, in
which case the write brings the room back until the next purge.

Usage:
    registry = RoomRegistry(InMemoryStore(), make_codec(secret))

    room_id = await registry.create_room("u1")
    await registry.join_room(room_id, "u2")
    await registry.send_message(room_id, "u1", "hello")
    messages = await registry.get_messages(room_id)
"""

from __future__ import annotations

import json
import logging
import secrets
import string
from dataclasses import dataclass, field
from typing import Any

from .crypto import Codec
from .errors import Conflict, Forbidden, NotFound, StorageError
from .events import InMemoryRoomEventBus, RoomEventBus
from .store import KeyValueStore, room_key

logger = logging.getLogger(__name__)

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 20


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    """Generate a random room code of uppercase letters and digits."""
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(length))


@dataclass
class StoredMessage:
    """A message as persisted: sender plus ciphertext."""

    user_id: str
    ciphertext: str

    def to_dict(self) -> dict:
        return {"userId": self.user_id, "message": self.ciphertext}

    @classmethod
    def from_dict(cls, data: dict) -> "StoredMessage":
        return cls(user_id=data["userId"], ciphertext=data["message"])


@dataclass
class Message:
    """A decrypted message returned to callers."""

    user_id: str
    plaintext: str

    def to_dict(self) -> dict:
        return {"userId": self.user_id, "message": self.plaintext}


@dataclass
class Room:
    """A room record: members in join order and an append-only message log."""

    room_id: str
    users: list[str] = field(default_factory=list)
    messages: list[StoredMessage] = field(default_factory=list)

    def has_member(self, user_id: str) -> bool:
        return user_id in self.users

    def to_json(self) -> str:
        return json.dumps(
            {
                "users": self.users,
                "messages": [m.to_dict() for m in self.messages],
            }
        )

    @classmethod
    def from_json(cls, room_id: str, raw: str) -> "Room":
        """Decode a stored record.

        Raises:
            StorageError: If the stored value is not a valid room record.
        """
        try:
            data = json.loads(raw)
            users = list(data["users"])
            messages = [StoredMessage.from_dict(m) for m in data["messages"]]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise StorageError(f"Malformed record for room {room_id}") from e
        return cls(room_id=room_id, users=users, messages=messages)


class RoomRegistry:
    """Create, join, leave, send to, and read rooms.

    Args:
        store: Key-value store holding room records
        codec: Codec used to encrypt message bodies at rest
        event_bus: Per-room pub/sub for live notifications
        members_only_read: If True, get_messages requires a member user_id
    """

    def __init__(
        self,
        store: KeyValueStore,
        codec: Codec,
        event_bus: RoomEventBus | None = None,
        members_only_read: bool = False,
    ):
        self.store = store
        self.codec = codec
        self.event_bus = event_bus if event_bus is not None else InMemoryRoomEventBus()
        self.members_only_read = members_only_read

    # --- Store access ---

    async def _load(self, room_id: str) -> Room | None:
        try:
            raw = await self.store.get(room_key(room_id))
        except Exception as e:
            raise StorageError(f"Failed to read room {room_id}") from e
        if raw is None:
            return None
        return Room.from_json(room_id, raw)

    async def _require(self, room_id: str) -> Room:
        room = await self._load(room_id)
        if room is None:
            raise NotFound(f"Room {room_id} not found")
        return room

    async def _save(self, room: Room) -> None:
        try:
            await self.store.set(room_key(room.room_id), room.to_json())
        except Exception as e:
            raise StorageError(f"Failed to write room {room.room_id}") from e

    # --- Room Operations ---

    async def create_room(self, user_id: str) -> str:
        """Create a room with user_id as its only member.

        A code collision with an existing room is not retried: if user_id is
        already in that room the call fails with Conflict, otherwise the old
        record is overwritten.

        Returns:
            The new room ID.
        """
        room_id = generate_room_code()

        existing = await self._load(room_id)
        if existing is not None:
            if existing.has_member(user_id):
                raise Conflict("User already in room")
            logger.warning(f"Room code {room_id} collided with an existing room, overwriting")

        await self._save(Room(room_id=room_id, users=[user_id]))
        logger.info(f"Room {room_id} created by {user_id}")
        return room_id

    async def get_room(self, room_id: str) -> Room:
        """Get the stored room record (members and ciphertext)."""
        return await self._require(room_id)

    async def join_room(self, room_id: str, user_id: str) -> None:
        """Add user_id to a room's members."""
        room = await self._require(room_id)
        if room.has_member(user_id):
            raise Conflict("User already in room")

        room.users.append(user_id)
        await self._save(room)
        logger.info(f"User {user_id} joined room {room_id}")

    async def leave_room(self, room_id: str, user_id: str) -> None:
        """Remove user_id from a room. Leaving as a non-member is a no-op."""
        room = await self._require(room_id)
        room.users = [u for u in room.users if u != user_id]
        await self._save(room)
        logger.info(f"User {user_id} left room {room_id}")

    async def send_message(self, room_id: str, user_id: str, plaintext: str) -> None:
        """Encrypt and append a message, then notify live subscribers.

        Raises:
            NotFound: Room does not exist (the codec is not invoked)
            Forbidden: user_id is not a member
        """
        room = await self._require(room_id)
        if not room.has_member(user_id):
            raise Forbidden("User not in room")

        ciphertext = self.codec.encrypt(plaintext)
        room.messages.append(StoredMessage(user_id=user_id, ciphertext=ciphertext))
        await self._save(room)

        try:
            await self.event_bus.publish(room_id, {"sender": user_id, "message": ciphertext})
        except Exception:
            logger.warning(f"Failed to publish message event for room {room_id}", exc_info=True)

    async def get_messages(self, room_id: str, user_id: str | None = None) -> list[Message]:
        """Decrypt and return a room's messages in append order.

        Raises:
            NotFound: Room does not exist
            Forbidden: members_only_read is enabled and user_id is not a member
            DecryptionError: A stored message could not be decrypted
        """
        room = await self._require(room_id)
        if self.members_only_read and (user_id is None or not room.has_member(user_id)):
            raise Forbidden("User not in room")

        return [
            Message(user_id=m.user_id, plaintext=self.codec.decrypt(m.ciphertext))
            for m in room.messages
        ]

    def subscribe(self, room_id: str) -> Any:
        """Async context manager yielding a live Subscription for a room."""
        return self.event_bus.subscribe(room_id)
