"""Tests for the expired-session sweeper."""

from datetime import timedelta
from unittest.mock import AsyncMock

from promptty.platforms.types import Platform
from promptty.routing.session_manager import SessionManager
from promptty.scheduler.sweeper import SWEEP_JOB_ID, SessionSweeper
from promptty.storage.sessions import SessionKey, SessionStore


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TestSweep:
    """Single sweep runs."""

    async def test_removes_expired_sessions(self, db_manager):
        clock = FakeClock()
        store = SessionStore(db_manager, clock=clock)
        await store.get_or_create(
            SessionKey(Platform.SLACK, "T1", "C1", "1.0"), timedelta(minutes=5)
        )
        live = await store.get_or_create(
            SessionKey(Platform.SLACK, "T1", "C1", "2.0"), timedelta(hours=2)
        )
        clock.now += 600

        sweeper = SessionSweeper(SessionManager(store))

        assert await sweeper.sweep() == 1
        assert sweeper.last_removed == 1
        assert await store.get_by_id(live.id) is not None

    async def test_errors_are_swallowed(self):
        manager = AsyncMock()
        manager.expire_sweep.side_effect = RuntimeError("database is locked")
        sweeper = SessionSweeper(manager)

        assert await sweeper.sweep() == 0
        assert sweeper.last_removed is None


class TestLifecycle:
    """Scheduler start and stop."""

    async def test_start_sweeps_and_schedules(self):
        manager = AsyncMock()
        manager.expire_sweep.return_value = 0
        sweeper = SessionSweeper(manager, interval_seconds=30)

        await sweeper.start()
        try:
            manager.expire_sweep.assert_awaited_once()
            job = sweeper._scheduler.get_job(SWEEP_JOB_ID)
            assert job is not None
            assert job.trigger.interval == timedelta(seconds=30)
        finally:
            await sweeper.stop()

        assert sweeper._scheduler.running is False

    async def test_stop_without_start(self):
        sweeper = SessionSweeper(AsyncMock())
        await sweeper.stop()
