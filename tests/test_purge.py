"""Tests for the scheduled room purge."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from burnroom.purge import PurgeScheduler, PurgeState, next_fire_time
from burnroom.store import InMemoryStore
from burnroom.testing import FailingStore


def utc(hour, minute=0, second=0):
    return datetime(2026, 3, 14, hour, minute, second, tzinfo=timezone.utc)


class TestNextFireTime:
    """Tests for the even-hour cadence."""

    @pytest.mark.parametrize(
        "now,expected",
        [
            (utc(0, 0, 1), utc(2)),
            (utc(1, 59, 59), utc(2)),
            (utc(2, 0, 0), utc(4)),
            (utc(3, 30), utc(4)),
            (utc(13, 5), utc(14)),
        ],
    )
    def test_next_even_hour(self, now, expected):
        assert next_fire_time(now) == expected

    def test_strictly_after_boundary(self):
        """A call at exactly a fire time schedules the next one."""
        assert next_fire_time(utc(10)) == utc(12)

    def test_wraps_past_midnight(self):
        assert next_fire_time(utc(23, 15)) == datetime(2026, 3, 15, 0, 0, tzinfo=timezone.utc)

    def test_naive_time_treated_as_utc(self):
        naive = datetime(2026, 3, 14, 5, 45)
        assert next_fire_time(naive) == utc(6)

    def test_always_minute_zero_of_even_hour(self):
        now = utc(0)
        for _ in range(30):
            now = now + timedelta(minutes=37)
            fire = next_fire_time(now)
            assert fire > now
            assert fire.minute == 0 and fire.second == 0
            assert fire.hour % 2 == 0
            assert fire - now <= timedelta(hours=2)


class TestPurgeNow:
    """Tests for a single purge tick."""

    @pytest.mark.asyncio
    async def test_clears_store(self):
        store = InMemoryStore()
        await store.set("rooms.a", "1")
        await store.set("rooms.b", "2")
        scheduler = PurgeScheduler(store)

        assert await scheduler.purge_now() is True

        assert len(store) == 0
        assert scheduler.runs == 1
        assert scheduler.failures == 0
        assert scheduler.last_run_at is not None
        assert scheduler.state == PurgeState.IDLE

    @pytest.mark.asyncio
    async def test_empty_store(self):
        scheduler = PurgeScheduler(InMemoryStore())
        assert await scheduler.purge_now() is True

    @pytest.mark.asyncio
    async def test_failure_is_recorded_not_raised(self):
        scheduler = PurgeScheduler(FailingStore("db down"))

        assert await scheduler.purge_now() is False

        assert scheduler.runs == 1
        assert scheduler.failures == 1
        assert scheduler.last_error == "db down"
        assert scheduler.state == PurgeState.IDLE

    @pytest.mark.asyncio
    async def test_success_clears_last_error(self):
        class FlakyStore(InMemoryStore):
            fail = True

            async def clear(self):
                if self.fail:
                    self.fail = False
                    raise ConnectionError("flaky")
                await super().clear()

        scheduler = PurgeScheduler(FlakyStore())

        assert await scheduler.purge_now() is False
        assert scheduler.last_error == "flaky"
        assert await scheduler.purge_now() is True
        assert scheduler.last_error is None
        assert scheduler.runs == 2
        assert scheduler.failures == 1

    @pytest.mark.asyncio
    async def test_uses_injected_clock(self):
        fixed = utc(8)
        scheduler = PurgeScheduler(InMemoryStore(), clock=lambda: fixed)

        await scheduler.purge_now()

        assert scheduler.last_run_at == fixed


def _fast_schedule(now):
    return now + timedelta(milliseconds=10)


class TestSchedulerLoop:
    @pytest.mark.asyncio
    async def test_fires_repeatedly(self):
        store = InMemoryStore()
        scheduler = PurgeScheduler(store, next_fire=_fast_schedule)

        scheduler.start()
        try:
            for _ in range(100):
                if scheduler.runs >= 3:
                    break
                await asyncio.sleep(0.01)
        finally:
            await scheduler.stop()

        assert scheduler.runs >= 3

    @pytest.mark.asyncio
    async def test_failed_tick_does_not_stop_schedule(self):
        """Every tick runs independently; failures do not halt the loop."""
        scheduler = PurgeScheduler(FailingStore(), next_fire=_fast_schedule)

        scheduler.start()
        try:
            for _ in range(100):
                if scheduler.failures >= 3:
                    break
                await asyncio.sleep(0.01)
        finally:
            await scheduler.stop()

        assert scheduler.failures >= 3
        assert scheduler.runs == scheduler.failures

    @pytest.mark.asyncio
    async def test_early_wakeup_does_not_fire_twice(self):
        """A timer that wakes just before the boundary still fires once for it."""
        just_before = datetime(2026, 3, 14, 1, 59, 59, 999000, tzinfo=timezone.utc)
        scheduler = PurgeScheduler(InMemoryStore(), clock=lambda: just_before)

        scheduler.start()
        await asyncio.sleep(0.1)
        await scheduler.stop()

        assert scheduler.runs == 1

    @pytest.mark.asyncio
    async def test_stop_cancels_stuck_purge(self):
        class HangingStore(InMemoryStore):
            async def clear(self):
                await asyncio.sleep(60)

        scheduler = PurgeScheduler(HangingStore(), next_fire=_fast_schedule, stop_timeout=0.05)

        scheduler.start()
        for _ in range(100):
            if scheduler.state == PurgeState.FIRING:
                break
            await asyncio.sleep(0.01)
        task = scheduler._task

        await scheduler.stop()

        assert task.cancelled()
        assert scheduler.running is False

    @pytest.mark.asyncio
    async def test_waits_until_fire_time(self):
        scheduler = PurgeScheduler(InMemoryStore())

        scheduler.start()
        await asyncio.sleep(0.05)
        await scheduler.stop()

        assert scheduler.runs == 0

    @pytest.mark.asyncio
    async def test_start_stop(self, purge_scheduler):
        assert purge_scheduler.running is False

        purge_scheduler.start()
        assert purge_scheduler.running is True

        await purge_scheduler.stop()
        assert purge_scheduler.running is False

    @pytest.mark.asyncio
    async def test_start_is_idempotent(self, purge_scheduler):
        purge_scheduler.start()
        task = purge_scheduler._task
        purge_scheduler.start()

        assert purge_scheduler._task is task

    @pytest.mark.asyncio
    async def test_stop_without_start(self, purge_scheduler):
        await purge_scheduler.stop()
        assert purge_scheduler.running is False


class TestStatus:
    @pytest.mark.asyncio
    async def test_initial_status(self, purge_scheduler):
        assert purge_scheduler.status() == {
            "running": False,
            "state": "idle",
            "runs": 0,
            "failures": 0,
            "last_run_at": None,
            "last_error": None,
        }

    @pytest.mark.asyncio
    async def test_status_after_run(self):
        scheduler = PurgeScheduler(InMemoryStore(), clock=lambda: utc(4))
        await scheduler.purge_now()

        status = scheduler.status()
        assert status["runs"] == 1
        assert status["last_run_at"] == "2026-03-14T04:00:00+00:00"
