"""Capability interface every chat platform adapter implements.

The router and the message orchestrator only ever talk to adapters
through this interface; Slack and Teams specifics stay in their modules.
"""

from abc import ABC, abstractmethod
from typing import Any, Generic, List, Optional, TypeVar

import structlog

from ..agent.types import ExecuteResult
from ..routing.active_context import ActiveContextRegistry
from .types import ChannelInfo, Platform, SendMessageResult, UpdateType

logger = structlog.get_logger()

C = TypeVar("C")


class PlatformAdapter(ABC, Generic[C]):
    """Inbound normalization plus outbound send/update primitives.

    ``C`` is the adapter's active context type: whatever it needs to reach
    the originating thread again while an invocation is running.
    """

    platform: Platform

    def __init__(self) -> None:
        self.contexts: ActiveContextRegistry[C] = ActiveContextRegistry(
            self.platform.value
        )

    # -- lifecycle -------------------------------------------------------

    @abstractmethod
    async def start(self) -> None:
        """Connect and serve until stopped."""

    @abstractmethod
    async def stop(self) -> None:
        """Disconnect."""

    # -- request/response path ------------------------------------------

    @abstractmethod
    async def send_acknowledgement(self, handle: Any) -> C:
        """Post the "working on it" message and return the reply context."""

    @abstractmethod
    async def update_or_send(self, context: C, result: ExecuteResult) -> None:
        """Replace the acknowledgement with the final result."""

    @abstractmethod
    async def post_to_context(
        self, context: C, message: str, update_type: UpdateType
    ) -> None:
        """Post an interim update into the thread behind ``context``."""

    async def send_update(
        self,
        session_id: str,
        message: str,
        update_type: UpdateType = UpdateType.PROGRESS,
    ) -> bool:
        """Post an interim update for a running session.

        False when the session has no active context (finished, timed out,
        or never started here) or when the platform rejects the message.
        """
        context = self.contexts.get(session_id)
        if context is None:
            logger.debug(
                "No active context for update",
                platform=self.platform.value,
                session_id=session_id,
            )
            return False
        try:
            await self.post_to_context(context, message, update_type)
        except Exception as e:
            logger.error(
                "Failed to send update",
                platform=self.platform.value,
                session_id=session_id,
                error=str(e),
            )
            return False
        return True

    # -- proactive path --------------------------------------------------

    @abstractmethod
    async def send_proactive(
        self,
        channel_id: str,
        message: str,
        thread_ts: Optional[str] = None,
        workspace_id: Optional[str] = None,
    ) -> SendMessageResult:
        """Send to a channel outside any in-flight request."""

    async def list_channels(self) -> List[ChannelInfo]:
        """Channels this adapter can currently reach (best effort)."""
        return []
