"""Tests for the message orchestrator."""

import asyncio
from typing import List, Optional

import pytest

from promptty.agent.types import ExecuteOptions, ExecuteResult
from promptty.bot.orchestrator import MessageOrchestrator
from promptty.config.channels import AppConfig
from promptty.platforms.types import InboundMessage, Platform
from promptty.routing.session_manager import SessionManager
from promptty.storage.sessions import SessionStore


class FakeExecutor:
    """Returns canned results and records what it was asked to run."""

    def __init__(self, results: Optional[List[ExecuteResult]] = None, adapter=None):
        self.results = list(results or [])
        self.adapter = adapter
        self.calls: List[ExecuteOptions] = []
        self.registered_during_run: List[bool] = []
        self.gate: Optional[asyncio.Event] = None

    async def execute(self, prompt: str, options: ExecuteOptions) -> ExecuteResult:
        self.calls.append(options)
        if self.adapter is not None:
            self.registered_during_run.append(
                options.callback_session_id in self.adapter.contexts
            )
        if self.gate is not None:
            await self.gate.wait()
        if self.results:
            return self.results.pop(0)
        return ExecuteResult(success=True, output=f"echo: {prompt}", duration_ms=5)


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    return AppConfig.model_validate(
        {
            "channels": {
                "slack:T1/C1": {
                    "workingDirectory": str(tmp_path),
                    "systemPrompt": "Be brief",
                    "responseFilter": {"mode": "mentions"},
                },
                "slack:T1/C2": {
                    "workingDirectory": str(tmp_path),
                    "responseFilter": {"mode": "none"},
                },
            }
        }
    )


@pytest.fixture
def adapter(make_adapter):
    return make_adapter(Platform.SLACK)


@pytest.fixture
def executor(adapter) -> FakeExecutor:
    return FakeExecutor(adapter=adapter)


@pytest.fixture
def orchestrator(app_config, session_store, executor) -> MessageOrchestrator:
    return MessageOrchestrator(
        app_config, SessionManager(session_store), executor, timeout_seconds=30
    )


def _message(text="fix the build", channel="C1", thread="1.0", **overrides) -> InboundMessage:
    fields = dict(
        platform=Platform.SLACK,
        workspace_id="T1",
        channel_id=channel,
        thread_id=thread,
        user_id="U1",
        text=text,
        is_mention=True,
    )
    fields.update(overrides)
    return InboundMessage(**fields)


async def _session_count(db_manager) -> int:
    async with db_manager.get_connection() as conn:
        cursor = await conn.execute("SELECT COUNT(*) FROM sessions")
        row = await cursor.fetchone()
        return row[0]


class TestHappyPath:
    """Engaged messages."""

    async def test_full_turn(self, orchestrator, adapter, executor, session_store):
        result = await orchestrator.handle_message(adapter, _message(), "handle-1")

        assert result.success is True
        assert adapter.acknowledged == ["handle-1"]
        assert adapter.results == [({"handle": "handle-1"}, result)]
        assert executor.registered_during_run == [True]
        assert len(adapter.contexts) == 0

        options = executor.calls[0]
        assert options.system_prompt == "Be brief"
        assert options.timeout_seconds == 30
        assert options.session_id is None
        assert options.message_context.channel_id == "C1"
        session = await session_store.get_by_id(options.callback_session_id)
        assert session.thread_id == "1.0"

    async def test_agent_session_bound_and_resumed(
        self, orchestrator, adapter, executor, session_store
    ):
        executor.results = [
            ExecuteResult(
                success=True, output="first", duration_ms=1, external_session_id="agent-1"
            )
        ]

        await orchestrator.handle_message(adapter, _message(), None)
        await orchestrator.handle_message(adapter, _message("and again"), None)

        first, second = executor.calls
        assert first.callback_session_id == second.callback_session_id
        assert second.session_id == "agent-1"
        session = await session_store.get_by_id(first.callback_session_id)
        assert session.agent_session_id == "agent-1"

    async def test_threads_get_separate_sessions(self, orchestrator, adapter, executor):
        await orchestrator.handle_message(adapter, _message(thread="1.0"), None)
        await orchestrator.handle_message(adapter, _message(thread="2.0"), None)

        first, second = executor.calls
        assert first.callback_session_id != second.callback_session_id

    async def test_same_thread_turns_are_serialized(self, orchestrator, adapter, executor):
        executor.gate = asyncio.Event()
        first = asyncio.create_task(orchestrator.handle_message(adapter, _message("one"), "h1"))
        second = asyncio.create_task(orchestrator.handle_message(adapter, _message("two"), "h2"))
        for _ in range(100):
            if executor.calls:
                break
            await asyncio.sleep(0.01)
        await asyncio.sleep(0.1)

        assert len(executor.calls) == 1
        assert len(adapter.acknowledged) == 1

        executor.gate.set()
        await asyncio.gather(first, second)
        assert len(executor.calls) == 2
        assert len(adapter.contexts) == 0


class TestFailures:
    """Failures surface once and leave nothing registered."""

    async def test_timeout_delivered_once(self, orchestrator, adapter, executor):
        executor.results = [
            ExecuteResult(
                success=False,
                output="Execution timed out",
                error="Timeout",
                duration_ms=300_000,
            )
        ]

        result = await orchestrator.handle_message(adapter, _message(), "h")

        assert result.timed_out is True
        assert len(adapter.results) == 1
        assert adapter.results[0][1].error == "Timeout"
        assert len(adapter.contexts) == 0

    async def test_executor_exception_becomes_failure(
        self, orchestrator, adapter, executor
    ):
        async def explode(prompt, options):
            raise RuntimeError("spawn failed")

        executor.execute = explode

        result = await orchestrator.handle_message(adapter, _message(), "h")

        assert result.success is False
        assert result.error == "spawn failed"
        assert len(adapter.results) == 1
        assert len(adapter.contexts) == 0

    async def test_acknowledgement_failure(self, orchestrator, adapter, executor):
        async def broken_ack(handle):
            raise RuntimeError("channel_not_found")

        adapter.send_acknowledgement = broken_ack

        assert await orchestrator.handle_message(adapter, _message(), "h") is None
        assert executor.calls == []
        assert len(adapter.contexts) == 0

    async def test_delivery_failure_still_unregisters(self, orchestrator, adapter):
        async def broken_update(context, result):
            raise RuntimeError("message_not_found")

        adapter.update_or_send = broken_update

        result = await orchestrator.handle_message(adapter, _message(), "h")

        assert result.success is True
        assert len(adapter.contexts) == 0


class TestIgnored:
    """Messages the bot does not engage with."""

    async def test_unconfigured_channel(self, orchestrator, adapter, executor, db_manager):
        result = await orchestrator.handle_message(adapter, _message(channel="C404"), "h")

        assert result is None
        assert adapter.acknowledged == []
        assert executor.calls == []
        assert await _session_count(db_manager) == 0

    async def test_filtered_message_creates_no_session(
        self, orchestrator, adapter, executor, db_manager
    ):
        result = await orchestrator.handle_message(
            adapter, _message(is_mention=False), "h"
        )

        assert result is None
        assert executor.calls == []
        assert await _session_count(db_manager) == 0

    async def test_none_mode_channel(self, orchestrator, adapter, executor):
        assert await orchestrator.handle_message(adapter, _message(channel="C2"), "h") is None
        assert executor.calls == []


class _Clock:
    def __init__(self):
        self.now = 1_700_000_000.0

    def __call__(self):
        return self.now


class TestSessionExpiryDuringTurn:
    """A session that runs out of time mid-turn."""

    @pytest.fixture
    def clock(self):
        return _Clock()

    @pytest.fixture
    def manager(self, db_manager, clock):
        return SessionManager(SessionStore(db_manager, clock=clock))

    @pytest.fixture
    def short_ttl_orchestrator(self, tmp_path, manager, executor):
        config = AppConfig.model_validate(
            {
                "sessionTTL": 60_000,
                "channels": {"slack:T1/C1": {"workingDirectory": str(tmp_path)}},
            }
        )
        return MessageOrchestrator(config, manager, executor, timeout_seconds=30)

    async def test_sweep_during_long_run_keeps_session(
        self, short_ttl_orchestrator, adapter, executor, manager, clock, db_manager
    ):
        await short_ttl_orchestrator.handle_message(adapter, _message("one"), "h1")
        clock.now += 50
        swept = []

        async def slow_run(prompt, options):
            executor.calls.append(options)
            clock.now += 61
            swept.append(await manager.expire_sweep())
            return ExecuteResult(success=True, output="done", duration_ms=61_000)

        executor.execute = slow_run

        result = await short_ttl_orchestrator.handle_message(adapter, _message("two"), "h2")

        assert result.success is True
        assert swept == [0]
        assert await manager.get(executor.calls[-1].callback_session_id) is not None
        async with db_manager.get_connection() as conn:
            cursor = await conn.execute("SELECT COUNT(*) FROM message_log")
            assert (await cursor.fetchone())[0] == 4

    async def test_session_deleted_during_run_does_not_raise(
        self, short_ttl_orchestrator, adapter, executor, manager
    ):
        async def deleting_run(prompt, options):
            await manager.delete(options.callback_session_id)
            return ExecuteResult(
                success=True, output="done", duration_ms=1, external_session_id="agent-1"
            )

        executor.execute = deleting_run

        result = await short_ttl_orchestrator.handle_message(adapter, _message(), "h")

        assert result.success is True
        assert len(adapter.results) == 1
        assert len(adapter.contexts) == 0
