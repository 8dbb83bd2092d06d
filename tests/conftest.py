"""Shared fixtures: a recording platform adapter and a temp session store."""

from typing import Any, Callable, List, Optional

import pytest

from promptty.agent.types import ExecuteResult
from promptty.platforms.base import PlatformAdapter
from promptty.platforms.types import ChannelInfo, Platform, SendMessageResult, UpdateType
from promptty.storage.database import DatabaseManager
from promptty.storage.sessions import SessionStore


class RecordingAdapter(PlatformAdapter[Any]):
    """Platform adapter that records outbound calls instead of sending them."""

    def __init__(
        self,
        platform: Platform = Platform.SLACK,
        channels: Optional[List[ChannelInfo]] = None,
        listing_error: Optional[Exception] = None,
        send_error: Optional[Exception] = None,
    ):
        self.platform = platform
        super().__init__()
        self.channels = channels or []
        self.listing_error = listing_error
        self.send_error = send_error
        self.acknowledged: list = []
        self.results: list = []
        self.updates: list = []
        self.proactive: list = []

    async def start(self) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def send_acknowledgement(self, handle: Any) -> Any:
        self.acknowledged.append(handle)
        return {"handle": handle}

    async def update_or_send(self, context: Any, result: ExecuteResult) -> None:
        self.results.append((context, result))

    async def post_to_context(
        self, context: Any, message: str, update_type: UpdateType
    ) -> None:
        self.updates.append((context, message, update_type))

    async def send_proactive(
        self, channel_id, message, thread_ts=None, workspace_id=None
    ) -> SendMessageResult:
        if self.send_error:
            raise self.send_error
        self.proactive.append((channel_id, message, thread_ts))
        return SendMessageResult(success=True, message_id="m1", thread_ts=thread_ts or "m1")

    async def list_channels(self) -> List[ChannelInfo]:
        if self.listing_error:
            raise self.listing_error
        return self.channels


@pytest.fixture
def make_adapter() -> Callable[..., RecordingAdapter]:
    return RecordingAdapter


@pytest.fixture
async def db_manager(tmp_path):
    manager = DatabaseManager(tmp_path / "promptty-test.db")
    await manager.initialize()
    yield manager
    await manager.close()


@pytest.fixture
def session_store(db_manager) -> SessionStore:
    return SessionStore(db_manager)
