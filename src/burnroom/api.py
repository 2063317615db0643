"""FastAPI application for burnroom.

Thin transport over the RoomRegistry. Request and response bodies keep the
camelCase field names (roomId, userId) used by existing chat clients.
"""

import json
import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import FastAPI, Query, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field

from ._version import __version__
from .config import BurnroomConfig, build_registry
from .errors import DecryptionError, RoomError, StorageError
from .purge import PurgeScheduler
from .rooms import RoomRegistry

logger = logging.getLogger(__name__)


# --- Request/Response Models ---


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class CreateRoomRequest(_CamelModel):
    user_id: str = Field(alias="userId", min_length=1)


class CreateRoomResponse(_CamelModel):
    room_id: str = Field(serialization_alias="roomId")


class RoomMembershipRequest(_CamelModel):
    room_id: str = Field(alias="roomId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)


class SendMessageRequest(_CamelModel):
    room_id: str = Field(alias="roomId", min_length=1)
    user_id: str = Field(alias="userId", min_length=1)
    message: str


class MessageInfo(_CamelModel):
    user_id: str = Field(serialization_alias="userId")
    message: str


class MessagesResponse(BaseModel):
    messages: list[MessageInfo]


def _registry(request: Request) -> RoomRegistry:
    return request.app.state.registry


def create_app(
    config: BurnroomConfig | None = None,
    registry: RoomRegistry | None = None,
    purge_scheduler: PurgeScheduler | None = None,
) -> FastAPI:
    """Build the application.

    Collaborators are created eagerly so routes work even when the lifespan
    does not run. The lifespan only starts and stops the purge scheduler.
    """
    if config is None:
        config = BurnroomConfig.load()
    if registry is None:
        registry = build_registry(config)
    if purge_scheduler is None:
        purge_scheduler = PurgeScheduler(registry.store)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Start the purge scheduler and release the store on shutdown."""
        if config.purge_enabled:
            purge_scheduler.start()
        else:
            logger.info("Purge scheduler disabled via BURNROOM_PURGE=0")

        yield

        await purge_scheduler.stop()
        await registry.store.close()

    app = FastAPI(
        title="burnroom",
        description="Ephemeral encrypted chat rooms",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.registry = registry
    app.state.purge = purge_scheduler

    @app.exception_handler(RoomError)
    async def room_error_handler(request: Request, exc: RoomError):
        """Map room errors to JSON responses with their status code."""
        if isinstance(exc, (StorageError, DecryptionError)):
            logger.error(
                f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}",
                exc_info=exc,
            )
            return JSONResponse({"error": exc.public_message}, status_code=exc.status_code)
        return JSONResponse({"error": exc.message}, status_code=exc.status_code)

    # --- Room Endpoints ---

    @app.post("/rooms/create", status_code=201)
    async def create_room(body: CreateRoomRequest, request: Request):
        """Create a room. The caller becomes its first member."""
        room_id = await _registry(request).create_room(body.user_id)
        return CreateRoomResponse(room_id=room_id).model_dump(by_alias=True)

    @app.post("/rooms/join")
    async def join_room(body: RoomMembershipRequest, request: Request):
        """Join an existing room."""
        await _registry(request).join_room(body.room_id, body.user_id)
        return {"message": "Joined room successfully"}

    @app.post("/rooms/leave")
    async def leave_room(body: RoomMembershipRequest, request: Request):
        """Leave a room. Leaving a room you are not in is not an error."""
        await _registry(request).leave_room(body.room_id, body.user_id)
        return {"message": "Left room successfully"}

    @app.post("/rooms/message")
    async def send_message(body: SendMessageRequest, request: Request):
        """Send a message to a room. Requires membership."""
        await _registry(request).send_message(body.room_id, body.user_id, body.message)
        return {"message": "Message sent successfully"}

    @app.get("/rooms/{room_id}/messages")
    async def get_messages(
        room_id: str,
        request: Request,
        user_id: Annotated[str | None, Query(alias="userId")] = None,
    ):
        """Get a room's decrypted messages in send order.

        userId is only required when the server runs with members-only reads.
        """
        messages = await _registry(request).get_messages(room_id, user_id=user_id)
        response = MessagesResponse(
            messages=[MessageInfo(user_id=m.user_id, message=m.plaintext) for m in messages]
        )
        return response.model_dump(by_alias=True)

    @app.get("/rooms/{room_id}/events")
    async def room_events(room_id: str, request: Request):
        """Stream live room events as Server-Sent Events.

        Each ``newMessage`` event carries ``{"sender", "message"}`` where
        message is ciphertext. Events are not replayed on reconnect.
        """
        registry_ = _registry(request)
        # Fail fast with 404 before opening the stream
        await registry_.get_room(room_id)

        async def event_generator():
            async with registry_.subscribe(room_id) as subscription:
                # Subscribed before "connected" so no message falls in between
                yield "event: connected\ndata: {}\n\n"
                async for event in subscription:
                    yield f"event: newMessage\ndata: {json.dumps(event)}\n\n"

        return StreamingResponse(
            event_generator(),
            media_type="text/event-stream",
            headers={
                "Cache-Control": "no-cache",
                "Connection": "keep-alive",
                "X-Accel-Buffering": "no",
            },
        )

    # --- Health ---

    @app.get("/health")
    async def health(request: Request):
        """Health check with purge scheduler status."""
        return {"status": "ok", "purge": request.app.state.purge.status()}

    return app


app = create_app()
