"""Error taxonomy for burnroom.

Domain errors (NotFound, Conflict, Forbidden) are expected outcomes the caller
can recover from. StorageError and DecryptionError signal infrastructure
failure. All of them share RoomError so the transport can map them in one place.
"""


class RoomError(Exception):
    """Base class for errors raised by room operations."""

    status_code = 500
    public_message = "Internal error"

    def __init__(self, message: str | None = None):
        super().__init__(message or self.public_message)
        self.message = message or self.public_message


class NotFound(RoomError):
    """Referenced room does not exist."""

    status_code = 404
    public_message = "Room not found"


class Conflict(RoomError):
    """Duplicate membership, or a room-code collision on create."""

    status_code = 409
    public_message = "User already in room"


class Forbidden(RoomError):
    """Non-member attempting a member-only action."""

    status_code = 403
    public_message = "User not in room"


class StorageError(RoomError):
    """Underlying store unreachable, or a stored record could not be read."""

    status_code = 500
    public_message = "Storage failure"


class DecryptionError(RoomError):
    """Ciphertext could not be reversed with the configured key."""

    status_code = 500
    public_message = "Message decryption failed"
