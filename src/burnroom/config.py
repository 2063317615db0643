"""Configuration for burnroom.

Settings come from three layers, later layers winning:
- Dataclass defaults
- An optional YAML file (``BURNROOM_CONFIG`` or an explicit path)
- Environment variables

Environment Variables:
    BURNROOM_SECRET_KEY: Process-wide message encryption secret (falls back to SECRET_KEY)
    BURNROOM_CIPHER: "aesgcm" (default) or "secretbox"
    BURNROOM_STORE: "memory" (default) or "sqlite"
    BURNROOM_DB: SQLite database path for the sqlite store
    BURNROOM_PURGE: Enable the two-hourly purge (default on)
    BURNROOM_MEMBERS_ONLY_READ: Require membership to read messages (default off)
    BURNROOM_LOG_LEVEL: Logging level name (default INFO)

The config is loaded once at startup and treated as immutable afterwards.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import yaml

from .crypto import CIPHERS, make_codec
from .events import InMemoryRoomEventBus, RoomEventBus
from .rooms import RoomRegistry
from .store import InMemoryStore, KeyValueStore, SqliteStore

DEFAULT_SECRET_KEY = "defaultSecretKey"
STORES = ("memory", "sqlite")
LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

logger = logging.getLogger(__name__)


class BurnroomConfigError(Exception):
    """Raised when burnroom configuration is invalid."""

    pass


def _parse_bool(value: str | bool) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ("1", "true", "yes", "on")


@dataclass
class BurnroomConfig:
    """Runtime configuration for the burnroom server."""

    secret_key: str = DEFAULT_SECRET_KEY
    """Secret the message key is derived from. Set once at startup."""

    cipher: str = "aesgcm"
    """Message cipher: "aesgcm" or "secretbox"."""

    store: str = "memory"
    """Store driver: "memory" or "sqlite"."""

    db_path: str = "burnroom.db"
    """SQLite database path (sqlite store only)."""

    purge_enabled: bool = True
    """Run the two-hourly purge scheduler."""

    members_only_read: bool = False
    """Require membership for get_messages as well as send_message."""

    log_level: str = "INFO"

    def __post_init__(self) -> None:
        self._validate()

    def _validate(self) -> None:
        for name in ("secret_key", "cipher", "store", "db_path", "log_level"):
            value = getattr(self, name)
            if not isinstance(value, str):
                raise BurnroomConfigError(
                    f"{name} must be a string, got {type(value).__name__}"
                )
        if self.cipher not in CIPHERS:
            raise BurnroomConfigError(
                f"Unknown cipher: {self.cipher!r}. Supported: {', '.join(CIPHERS)}"
            )
        if self.store not in STORES:
            raise BurnroomConfigError(
                f"Unknown store: {self.store!r}. Supported: {', '.join(STORES)}"
            )
        if self.log_level.upper() not in LOG_LEVELS:
            raise BurnroomConfigError(f"Unknown log level: {self.log_level!r}")
        if not self.secret_key:
            raise BurnroomConfigError("secret_key must not be empty")
        self.log_level = self.log_level.upper()

    @property
    def uses_default_secret(self) -> bool:
        return self.secret_key == DEFAULT_SECRET_KEY

    @classmethod
    def load(cls, path: str | Path | None = None) -> "BurnroomConfig":
        """Load config from an optional YAML file, then apply env overrides."""
        data: dict[str, Any] = {}

        config_path = path or os.environ.get("BURNROOM_CONFIG")
        if config_path:
            config_file = Path(config_path)
            if not config_file.exists():
                raise BurnroomConfigError(f"Config file not found: {config_file}")
            with open(config_file) as f:
                loaded = yaml.safe_load(f) or {}
            if not isinstance(loaded, dict):
                raise BurnroomConfigError(f"Config file must contain a mapping: {config_file}")
            known = {f.name for f in fields(cls)}
            unknown = set(loaded) - known
            if unknown:
                raise BurnroomConfigError(f"Unknown config keys: {', '.join(sorted(unknown))}")
            data.update(loaded)

        data.update(_env_overrides())

        for key in ("purge_enabled", "members_only_read"):
            if key in data:
                data[key] = _parse_bool(data[key])

        return cls(**data)

    def to_dict(self, include_secret: bool = False) -> dict[str, Any]:
        """Convert to dictionary for YAML serialization."""
        data: dict[str, Any] = {
            "cipher": self.cipher,
            "store": self.store,
            "db_path": self.db_path,
            "purge_enabled": self.purge_enabled,
            "members_only_read": self.members_only_read,
            "log_level": self.log_level,
        }
        if include_secret:
            data["secret_key"] = self.secret_key
        return data

    def save(self, path: str | Path, include_secret: bool = False) -> None:
        """Save config to a YAML file."""
        with open(path, "w") as f:
            yaml.safe_dump(
                self.to_dict(include_secret=include_secret),
                f,
                default_flow_style=False,
                sort_keys=False,
            )


def _env_overrides() -> dict[str, Any]:
    """Collect config values set in the environment."""
    overrides: dict[str, Any] = {}

    secret = os.environ.get("BURNROOM_SECRET_KEY") or os.environ.get("SECRET_KEY")
    if secret:
        overrides["secret_key"] = secret

    env_map = {
        "BURNROOM_CIPHER": "cipher",
        "BURNROOM_STORE": "store",
        "BURNROOM_DB": "db_path",
        "BURNROOM_PURGE": "purge_enabled",
        "BURNROOM_MEMBERS_ONLY_READ": "members_only_read",
        "BURNROOM_LOG_LEVEL": "log_level",
    }
    for env_var, key in env_map.items():
        value = os.environ.get(env_var)
        if value is not None and value != "":
            overrides[key] = value

    return overrides


def build_store(config: BurnroomConfig) -> KeyValueStore:
    """Create the store driver selected by config."""
    if config.store == "sqlite":
        logger.info(f"Using SQLite store at {config.db_path}")
        return SqliteStore(config.db_path)
    logger.info("Using in-memory store")
    return InMemoryStore()


def build_registry(
    config: BurnroomConfig,
    store: KeyValueStore | None = None,
    event_bus: RoomEventBus | None = None,
) -> RoomRegistry:
    """Wire a RoomRegistry from config."""
    if config.uses_default_secret:
        logger.warning("Using the default secret key; set BURNROOM_SECRET_KEY in production")
    return RoomRegistry(
        store=store if store is not None else build_store(config),
        codec=make_codec(config.secret_key, config.cipher),
        event_bus=event_bus if event_bus is not None else InMemoryRoomEventBus(),
        members_only_read=config.members_only_read,
    )
