"""Tests for the router."""

from datetime import timedelta

import pytest

from promptty.config.channels import AppConfig
from promptty.platforms.types import ChannelInfo, ChannelTarget, Platform, UpdateType
from promptty.routing.router import Router
from promptty.storage.sessions import SessionKey


@pytest.fixture
def store(session_store):
    return session_store


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig.model_validate(
        {
            "channels": {
                "slack:T1/C1": {"workingDirectory": "/srv/a"},
                "teams:tenant/19:x": {"workingDirectory": "/srv/b"},
            }
        }
    )


@pytest.fixture
def slack(make_adapter):
    return make_adapter(
        Platform.SLACK,
        channels=[
            ChannelInfo(Platform.SLACK, "C1", name="general", workspace_id="T1"),
            ChannelInfo(Platform.SLACK, "C9", name="random", workspace_id="T1"),
        ],
    )


@pytest.fixture
def router(store, slack, app_config) -> Router:
    return Router(store, {Platform.SLACK: slack}, app_config)


async def _session(store, platform=Platform.SLACK, thread="1.0"):
    return await store.get_or_create(
        SessionKey(platform, "T1", "C1", thread), timedelta(hours=1)
    )


class TestSendUpdate:
    """Interim updates for running sessions."""

    async def test_unknown_session_returns_false(self, router):
        assert await router.send_update("no-such-session", "hi") is False

    async def test_session_without_active_context(self, router, store, slack):
        session = await _session(store)
        assert await router.send_update(session.id, "hi") is False
        assert slack.updates == []

    async def test_delivers_to_active_context(self, router, store, slack):
        session = await _session(store)
        slack.contexts.register(session.id, "ctx-1")

        assert await router.send_update(session.id, "Running tests", UpdateType.WARNING)
        assert slack.updates == [("ctx-1", "Running tests", UpdateType.WARNING)]
        assert await router.has_active_context(session.id) is True

    async def test_late_callback_after_unregister(self, router, store, slack):
        session = await _session(store)
        slack.contexts.register(session.id, "ctx-1")
        slack.contexts.unregister(session.id, "ctx-1")

        assert await router.send_update(session.id, "too late") is False
        assert await router.has_active_context(session.id) is False

    async def test_platform_without_adapter(self, router, store):
        session = await _session(store, platform=Platform.TEAMS)
        assert await router.send_update(session.id, "hi") is False


class TestSendToChannel:
    """Proactive cross-channel sends."""

    async def test_success(self, router, slack):
        result = await router.send_to_channel(
            ChannelTarget(Platform.SLACK, "C9", "Build finished", thread_ts="5.5")
        )
        assert result.success is True
        assert result.thread_ts == "5.5"
        assert slack.proactive == [("C9", "Build finished", "5.5")]

    async def test_missing_adapter(self, router):
        result = await router.send_to_channel(ChannelTarget(Platform.TEAMS, "19:x", "hi"))
        assert result.success is False
        assert result.error == "Teams adapter not initialized"

    async def test_adapter_exception_becomes_failure(self, store, app_config, make_adapter):
        broken = make_adapter(Platform.SLACK, send_error=RuntimeError("channel_not_found"))
        router = Router(store, {Platform.SLACK: broken}, app_config)

        result = await router.send_to_channel(ChannelTarget(Platform.SLACK, "CX", "hi"))

        assert result.success is False
        assert result.error == "channel_not_found"


class TestListAvailableChannels:
    """Configured and live channel merge."""

    async def test_merges_and_deduplicates(self, router, store):
        session = await _session(store)

        channels = await router.list_available_channels(session.id)
        by_key = {(c.platform, c.channel_id): c for c in channels}

        assert len(channels) == 3
        c1 = by_key[(Platform.SLACK, "C1")]
        assert c1.configured is True
        assert c1.name == "general"
        assert by_key[(Platform.SLACK, "C9")].configured is False
        assert by_key[(Platform.TEAMS, "19:x")].configured is True

    async def test_live_listing_failure_degrades(self, store, app_config, make_adapter):
        broken = make_adapter(Platform.SLACK, listing_error=RuntimeError("ratelimited"))
        router = Router(store, {Platform.SLACK: broken}, app_config)
        session = await _session(store)

        channels = await router.list_available_channels(session.id)

        assert {c.channel_id for c in channels} == {"C1", "19:x"}
        assert all(c.configured for c in channels)

    async def test_unknown_session_lists_configured_only(self, router):
        channels = await router.list_available_channels("missing")
        assert {c.channel_id for c in channels} == {"C1", "19:x"}

    async def test_add_adapter(self, store, app_config, make_adapter):
        router = Router(store, {}, app_config)
        router.add_adapter(make_adapter(Platform.TEAMS))
        assert Platform.TEAMS in router.adapters
