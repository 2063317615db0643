"""burnroom - Ephemeral encrypted chat rooms.

Usage:
    from burnroom import BurnroomConfig, build_registry

    registry = build_registry(BurnroomConfig.load())

    room_id = await registry.create_room("u1")
    await registry.join_room(room_id, "u2")
    await registry.send_message(room_id, "u1", "hello")
    messages = await registry.get_messages(room_id)

Run the server with `burnroom serve`. Every two hours all rooms are purged.
"""

from burnroom._version import __version__
from burnroom.config import BurnroomConfig, BurnroomConfigError, build_registry
from burnroom.errors import (
    Conflict,
    DecryptionError,
    Forbidden,
    NotFound,
    RoomError,
    StorageError,
)
from burnroom.purge import PurgeScheduler
from burnroom.rooms import Message, Room, RoomRegistry

__all__ = [
    "__version__",
    "BurnroomConfig",
    "BurnroomConfigError",
    "build_registry",
    "RoomRegistry",
    "Room",
    "Message",
    "PurgeScheduler",
    "RoomError",
    "NotFound",
    "Conflict",
    "Forbidden",
    "StorageError",
    "DecryptionError",
]
