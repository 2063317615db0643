"""CLI for burnroom.

Server-side commands run against the locally configured store:
- serve: Run the HTTP server
- purge: Clear every room now (same operation the scheduler runs)
- keygen: Print a fresh secret for BURNROOM_SECRET_KEY
- config show: Print the effective configuration

Room commands talk to a running server over HTTP, for manual testing.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys

import cyclopts
import httpx
import yaml

from .config import BurnroomConfig, BurnroomConfigError, build_store
from .crypto import generate_secret_key
from .purge import PurgeScheduler

DEFAULT_SERVER_URL = "http://localhost:8000"

app = cyclopts.App(
    name="burnroom",
    help="Ephemeral encrypted chat rooms",
)

config_app = cyclopts.App(name="config", help="Configuration inspection")
room_app = cyclopts.App(name="room", help="Room operations against a running server")

app.command(config_app)
app.command(room_app)


def setup_logging(level: str = "INFO") -> None:
    """Configure root logging for the server process."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(levelname)s:     %(name)s - %(message)s",
    )


def load_config() -> BurnroomConfig:
    """Load config or exit with an error."""
    try:
        return BurnroomConfig.load()
    except BurnroomConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(1)


def api_request(
    method: str,
    path: str,
    *,
    url: str = DEFAULT_SERVER_URL,
    json_data: dict | None = None,
    params: dict | None = None,
) -> httpx.Response:
    """Make an API request, exiting on error responses."""
    try:
        response = httpx.request(
            method,
            f"{url.rstrip('/')}{path}",
            json=json_data,
            params=params,
            timeout=30.0,
        )
    except httpx.HTTPError as e:
        print(f"Error: could not reach {url}: {e}", file=sys.stderr)
        raise SystemExit(1)

    if response.status_code >= 400:
        print(f"Error {response.status_code}: {response.text}", file=sys.stderr)
        sys.exit(1)

    return response


def print_json(data):
    """Pretty print JSON data."""
    print(json.dumps(data, indent=2, default=str))


# --- Server Commands ---


@app.command
def serve(
    *,
    host: str = "0.0.0.0",
    port: int = 8000,
    reload: bool = False,
):
    """Run the burnroom server.

    The purge scheduler starts with the server unless BURNROOM_PURGE=0.
    """
    import uvicorn

    config = load_config()
    setup_logging(config.log_level)

    if config.uses_default_secret:
        print("WARNING: Using the default secret key. Set BURNROOM_SECRET_KEY in production.\n")

    uvicorn.run(
        "burnroom.api:app",
        host=host,
        port=port,
        reload=reload,
        log_level=config.log_level.lower(),
    )


@app.command
def purge():
    """Clear every room in the configured store now.

    Only the sqlite store is shared with a running server. The memory store
    lives inside the server process, so this command refuses to run for it.
    """
    config = load_config()
    setup_logging(config.log_level)

    if config.store == "memory":
        print(
            "Error: the memory store lives inside the server process and cannot be "
            "purged from the CLI. Set BURNROOM_STORE=sqlite.",
            file=sys.stderr,
        )
        sys.exit(1)

    async def _purge() -> bool:
        store = build_store(config)
        try:
            return await PurgeScheduler(store).purge_now()
        finally:
            await store.close()

    if not asyncio.run(_purge()):
        print("Purge failed", file=sys.stderr)
        sys.exit(1)
    print(f"All rooms purged ({config.store} store)")


@app.command
def keygen():
    """Print a random secret suitable for BURNROOM_SECRET_KEY."""
    print(generate_secret_key())


@config_app.command(name="show")
def config_show(*, show_secret: bool = False):
    """Print the effective configuration as YAML.

    Args:
        show_secret: Include the secret key in the output
    """
    config = load_config()
    data = config.to_dict(include_secret=show_secret)
    if not show_secret:
        data["secret_key"] = "<default>" if config.uses_default_secret else "<set>"
    print(yaml.safe_dump(data, default_flow_style=False, sort_keys=False), end="")


# --- Room Commands ---


@room_app.command(name="create")
def room_create(user_id: str, *, url: str = DEFAULT_SERVER_URL):
    """Create a room and print its ID.

    Args:
        user_id: User creating (and joining) the room
        url: burnroom server URL
    """
    resp = api_request("POST", "/rooms/create", url=url, json_data={"userId": user_id})
    print(resp.json()["roomId"])


@room_app.command(name="join")
def room_join(room_id: str, user_id: str, *, url: str = DEFAULT_SERVER_URL):
    """Join a room.

    Args:
        room_id: Room ID
        user_id: User joining
        url: burnroom server URL
    """
    resp = api_request(
        "POST", "/rooms/join", url=url, json_data={"roomId": room_id, "userId": user_id}
    )
    print(resp.json()["message"])


@room_app.command(name="leave")
def room_leave(room_id: str, user_id: str, *, url: str = DEFAULT_SERVER_URL):
    """Leave a room.

    Args:
        room_id: Room ID
        user_id: User leaving
        url: burnroom server URL
    """
    resp = api_request(
        "POST", "/rooms/leave", url=url, json_data={"roomId": room_id, "userId": user_id}
    )
    print(resp.json()["message"])


@room_app.command(name="send")
def room_send(room_id: str, user_id: str, body: str, *, url: str = DEFAULT_SERVER_URL):
    """Send a message to a room.

    Args:
        room_id: Room ID
        user_id: Sender (must be a member)
        body: Message text
        url: burnroom server URL
    """
    resp = api_request(
        "POST",
        "/rooms/message",
        url=url,
        json_data={"roomId": room_id, "userId": user_id, "message": body},
    )
    print(resp.json()["message"])


@room_app.command(name="messages")
def room_messages(
    room_id: str,
    *,
    user_id: str | None = None,
    url: str = DEFAULT_SERVER_URL,
    as_json: bool = False,
):
    """Read a room's messages.

    Args:
        room_id: Room ID
        user_id: Reader (needed when the server requires members-only reads)
        url: burnroom server URL
        as_json: Print the raw JSON response
    """
    params = {"userId": user_id} if user_id else None
    resp = api_request("GET", f"/rooms/{room_id}/messages", url=url, params=params)
    data = resp.json()

    if as_json:
        print_json(data)
        return

    messages = data.get("messages", [])
    if not messages:
        print("No messages in room")
        return

    for msg in messages:
        print(f"{msg['userId']}: {msg['message']}")


def main():
    app()


if __name__ == "__main__":
    main()
