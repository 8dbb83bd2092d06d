"""Tests for the loopback callback ingress."""

from datetime import timedelta

import pytest
from aiohttp.test_utils import TestClient, TestServer

from promptty.callbacks import CallbackHandler, CallbackServer, create_callback_app
from promptty.config.channels import AppConfig
from promptty.exceptions import ConfigurationError
from promptty.platforms.types import ChannelInfo, Platform, UpdateType
from promptty.routing.router import Router
from promptty.storage.sessions import SessionKey


@pytest.fixture
def slack(make_adapter):
    return make_adapter(
        Platform.SLACK,
        channels=[ChannelInfo(Platform.SLACK, "C7", name="deploys", workspace_id="T1")],
    )


@pytest.fixture
def router(session_store, slack) -> Router:
    app_config = AppConfig.model_validate(
        {"channels": {"slack:T1/C1": {"workingDirectory": "/srv/app"}}}
    )
    return Router(session_store, {Platform.SLACK: slack}, app_config)


@pytest.fixture
async def client(router):
    async with TestClient(TestServer(create_callback_app(CallbackHandler(router)))) as client:
        yield client


@pytest.fixture
async def session(session_store):
    return await session_store.get_or_create(
        SessionKey(Platform.SLACK, "T1", "C1", "1.0"), timedelta(hours=1)
    )


async def test_health(client):
    response = await client.get("/health")
    assert response.status == 200
    body = await response.json()
    assert body["status"] == "ok"
    assert "timestamp" in body


class TestCallback:
    """POST /callback"""

    async def test_delivered(self, client, session, slack):
        slack.contexts.register(session.id, "ctx")

        response = await client.post(
            "/callback",
            json={"session_id": session.id, "message": "Tests passing", "type": "success"},
        )

        assert response.status == 200
        assert await response.json() == {"success": True}
        assert slack.updates == [("ctx", "Tests passing", UpdateType.SUCCESS)]

    async def test_type_defaults_to_progress(self, client, session, slack):
        slack.contexts.register(session.id, "ctx")

        response = await client.post(
            "/callback", json={"session_id": session.id, "message": "Working"}
        )

        assert response.status == 200
        assert slack.updates[0][2] is UpdateType.PROGRESS

    async def test_inactive_session(self, client, session):
        response = await client.post(
            "/callback", json={"session_id": session.id, "message": "late"}
        )
        assert response.status == 404
        assert await response.json() == {"error": "Session not found or inactive"}

    async def test_unknown_session(self, client):
        response = await client.post(
            "/callback", json={"session_id": "nope", "message": "hi"}
        )
        assert response.status == 404

    @pytest.mark.parametrize(
        "payload",
        [
            {"message": "no session"},
            {"session_id": "s1"},
            {"session_id": "", "message": "hi"},
            {"session_id": "s1", "message": "hi", "type": "shouting"},
        ],
    )
    async def test_invalid_payload(self, client, payload):
        response = await client.post("/callback", json=payload)
        assert response.status == 400
        assert (await response.json())["error"].startswith("Invalid request")

    async def test_malformed_json(self, client):
        response = await client.post(
            "/callback", data="{not json", headers={"Content-Type": "application/json"}
        )
        assert response.status == 400
        assert await response.json() == {"error": "Invalid JSON body"}


class TestMessage:
    """POST /message"""

    async def test_sent(self, client, slack):
        response = await client.post(
            "/message",
            json={
                "session_id": "s1",
                "platform": "slack",
                "channel_id": "C7",
                "message": "Release tagged",
            },
        )

        assert response.status == 200
        body = await response.json()
        assert body["success"] is True
        assert body["messageId"] == "m1"
        assert slack.proactive == [("C7", "Release tagged", None)]

    async def test_platform_without_adapter(self, client):
        response = await client.post(
            "/message",
            json={
                "session_id": "s1",
                "platform": "teams",
                "channel_id": "19:x",
                "message": "hi",
            },
        )

        assert response.status == 400
        assert await response.json() == {
            "success": False,
            "error": "Teams adapter not initialized",
        }

    async def test_missing_fields(self, client):
        response = await client.post("/message", json={"session_id": "s1"})
        body = await response.json()
        assert response.status == 400
        assert body["success"] is False


class TestChannels:
    """GET /channels"""

    async def test_lists_merged_channels(self, client, session):
        response = await client.get("/channels", params={"session_id": session.id})

        assert response.status == 200
        channels = {c["channelId"]: c for c in (await response.json())["channels"]}
        assert channels["C1"]["configured"] is True
        assert channels["C7"]["name"] == "deploys"
        assert channels["C7"]["configured"] is False

    async def test_missing_session_id(self, client):
        response = await client.get("/channels")
        assert response.status == 400
        assert await response.json() == {"error": "Missing session_id"}


class TestCallbackServer:
    """Lifecycle and bind address."""

    def test_rejects_non_loopback_host(self, router):
        with pytest.raises(ConfigurationError):
            CallbackServer(CallbackHandler(router), host="0.0.0.0")

    async def test_start_and_stop(self, router):
        server = CallbackServer(CallbackHandler(router), host="127.0.0.1", port=0)

        await server.start()
        assert server.is_running is True
        await server.stop()
        assert server.is_running is False
