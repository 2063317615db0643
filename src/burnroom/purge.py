"""Scheduled purge of all stored rooms.

The purge is unconditional: at minute 0 of every even hour (cron ``0 */2 * * *``,
UTC) the whole store is cleared. There is no notion of per-room age or
retention, so every room disappears at once.

Each tick is independent. A failed clear is logged and recorded, and the
next tick runs on schedule with no retry or backoff.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any

from .store import KeyValueStore

logger = logging.getLogger(__name__)

PURGE_INTERVAL_HOURS = 2


class PurgeState(enum.Enum):
    IDLE = "idle"
    FIRING = "firing"


def next_fire_time(now: datetime) -> datetime:
    """Next even-hour boundary strictly after now (minute 0 of hours 0, 2, ... 22)."""
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    hour_start = now.replace(minute=0, second=0, microsecond=0)
    hours_ahead = PURGE_INTERVAL_HOURS - (hour_start.hour % PURGE_INTERVAL_HOURS)
    return hour_start + timedelta(hours=hours_ahead)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PurgeScheduler:
    """Background task that clears the store on a fixed cadence.

    The scheduler is an explicitly owned asyncio task: call start() from a
    running loop and await stop() on shutdown. purge_now() runs a single tick
    on demand.

    Args:
        store: Store to clear
        clock: Returns the current time (UTC)
        next_fire: Maps the current time to the next fire time
        stop_timeout: Seconds stop() waits for an in-flight purge
    """

    def __init__(
        self,
        store: KeyValueStore,
        clock: Callable[[], datetime] = _utcnow,
        next_fire: Callable[[datetime], datetime] = next_fire_time,
        stop_timeout: float = 5.0,
    ):
        self.store = store
        self.clock = clock
        self.next_fire = next_fire
        self.stop_timeout = stop_timeout

        self.state = PurgeState.IDLE
        self.runs = 0
        self.failures = 0
        self.last_run_at: datetime | None = None
        self.last_error: str | None = None

        self._task: asyncio.Task | None = None
        self._shutdown_event: asyncio.Event | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def purge_now(self) -> bool:
        """Run one purge tick. Returns True on success.

        Failures are recorded and logged, never raised.
        """
        self.state = PurgeState.FIRING
        try:
            await self.store.clear()
        except Exception as e:
            self.failures += 1
            self.last_error = str(e) or type(e).__name__
            logger.error(f"Error purging rooms: {self.last_error}", exc_info=True)
            return False
        else:
            self.last_error = None
            logger.info("All rooms purged successfully")
            return True
        finally:
            self.runs += 1
            self.last_run_at = self.clock()
            self.state = PurgeState.IDLE

    async def _run(self) -> None:
        assert self._shutdown_event is not None
        last_fire: datetime | None = None
        while not self._shutdown_event.is_set():
            now = self.clock()
            # The loop timer can wake slightly before the wall-clock boundary;
            # never schedule the same boundary twice
            fire_at = self.next_fire(now if last_fire is None else max(now, last_fire))
            delay = max((fire_at - now).total_seconds(), 0.0)
            logger.debug(f"Next purge at {fire_at.isoformat()} (in {delay:.0f}s)")

            try:
                # Wait for the fire time or shutdown signal
                await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass

            await self.purge_now()
            last_fire = fire_at

    def start(self) -> None:
        """Start the background purge loop. Must be called from a running loop."""
        if self.running:
            return
        self._shutdown_event = asyncio.Event()
        self._task = asyncio.get_running_loop().create_task(self._run())
        logger.info(f"Purge scheduled every {PURGE_INTERVAL_HOURS}h")

    async def stop(self) -> None:
        """Signal the purge loop to stop and wait for it to exit."""
        if self._task is None:
            return
        assert self._shutdown_event is not None
        self._shutdown_event.set()
        try:
            await asyncio.wait_for(self._task, timeout=self.stop_timeout)
        except asyncio.TimeoutError:
            # wait_for has already cancelled the task
            logger.warning(
                f"Purge task did not stop within {self.stop_timeout}s and was cancelled"
            )
        self._task = None
        logger.info("Purge scheduler stopped")

    def status(self) -> dict[str, Any]:
        """Snapshot for health reporting."""
        return {
            "running": self.running,
            "state": self.state.value,
            "runs": self.runs,
            "failures": self.failures,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_error": self.last_error,
        }
