"""Tests for the session manager."""

from datetime import timedelta

import pytest

from promptty.platforms.types import Platform
from promptty.routing.session_manager import SessionManager
from promptty.storage.database import DatabaseManager
from promptty.storage.sessions import SessionKey, SessionStore


class _Clock:
    def __init__(self):
        self.now = 1_700_000_000.0

    def __call__(self):
        return self.now


@pytest.fixture
def clock():
    return _Clock()


@pytest.fixture
async def manager(tmp_path, clock):
    db = DatabaseManager(tmp_path / "manager.db")
    await db.initialize()
    yield SessionManager(SessionStore(db, clock=clock))
    await db.close()


KEY = SessionKey(Platform.SLACK, "T1", "C1", "1.0")


class TestSessionManager:
    """Lifecycle operations."""

    async def test_bind_is_idempotent(self, manager):
        session = await manager.get_or_create(KEY, timedelta(hours=1))

        await manager.bind_agent_session(session.id, "agent-1")
        await manager.bind_agent_session(session.id, "agent-1")

        assert (await manager.get(session.id)).agent_session_id == "agent-1"

    async def test_bind_unknown_session_does_not_raise(self, manager):
        await manager.bind_agent_session("missing", "agent-1")

    async def test_extend_keeps_session_alive(self, manager, clock):
        session = await manager.get_or_create(KEY, timedelta(minutes=10))
        clock.now += 9 * 60
        await manager.extend(session.id, timedelta(minutes=10))
        clock.now += 9 * 60

        assert (await manager.get(session.id)) is not None

    async def test_expire_sweep(self, manager, clock):
        session = await manager.get_or_create(KEY, timedelta(minutes=1))
        await manager.log_message(session.id, "in", "hello")
        clock.now += 61

        assert await manager.expire_sweep() == 1
        assert await manager.get(session.id) is None
        assert await manager.expire_sweep() == 0

    async def test_delete(self, manager):
        session = await manager.get_or_create(KEY, timedelta(hours=1))
        assert await manager.delete(session.id) is True
        assert await manager.get(session.id) is None

    async def test_sweep_skips_sessions_in_use(self, manager, clock):
        session = await manager.get_or_create(KEY, timedelta(minutes=1))
        clock.now += 61

        async with manager.in_use(session.id):
            assert await manager.expire_sweep() == 0
            assert await manager.log_message(session.id, "out", "late") is True

        assert await manager.expire_sweep() == 1
