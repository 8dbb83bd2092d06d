"""Router: resolve session and channel targets to platform sends."""

from typing import Dict, List, Mapping, Optional, Tuple

import structlog

from ..config.channels import AppConfig
from ..platforms.base import PlatformAdapter
from ..platforms.types import (
    ChannelInfo,
    ChannelTarget,
    Platform,
    SendMessageResult,
    UpdateType,
)
from ..storage.sessions import SessionStore

logger = structlog.get_logger()


class Router:
    """Stateless dispatcher between callbacks and platform adapters."""

    def __init__(
        self,
        store: SessionStore,
        adapters: Mapping[Platform, PlatformAdapter],
        app_config: Optional[AppConfig] = None,
    ):
        self.store = store
        self.adapters: Dict[Platform, PlatformAdapter] = dict(adapters)
        self.app_config = app_config or AppConfig()

    def add_adapter(self, adapter: PlatformAdapter) -> None:
        self.adapters[adapter.platform] = adapter

    async def _adapter_for_session(self, session_id: str) -> Optional[PlatformAdapter]:
        # Expired rows still route: an invocation may outlive the TTL.
        session = await self.store.get_by_id(session_id, include_expired=True)
        if session is None:
            return None
        return self.adapters.get(session.platform)

    async def send_update(
        self,
        session_id: str,
        message: str,
        update_type: UpdateType = UpdateType.PROGRESS,
    ) -> bool:
        """Post an interim update to the thread a running session came from.

        Returns False for unknown sessions and sessions with no in-flight
        invocation; both are normal for late callbacks.
        """
        adapter = await self._adapter_for_session(session_id)
        if adapter is None:
            logger.debug("Update for unknown session", session_id=session_id)
            return False
        return await adapter.send_update(session_id, message, update_type)

    async def has_active_context(self, session_id: str) -> bool:
        adapter = await self._adapter_for_session(session_id)
        return adapter is not None and session_id in adapter.contexts

    async def send_to_channel(self, target: ChannelTarget) -> SendMessageResult:
        """Proactive cross-channel send; failures come back as results."""
        adapter = self.adapters.get(target.platform)
        if adapter is None:
            return SendMessageResult(
                success=False,
                error=f"{target.platform.display_name} adapter not initialized",
            )

        try:
            result = await adapter.send_proactive(
                target.channel_id,
                target.message,
                thread_ts=target.thread_ts,
                workspace_id=target.workspace_id,
            )
        except Exception as e:
            logger.error(
                "Cross-channel send failed",
                platform=target.platform.value,
                channel_id=target.channel_id,
                error=str(e),
            )
            return SendMessageResult(success=False, error=str(e))

        if not result.success:
            logger.warning(
                "Cross-channel send rejected",
                platform=target.platform.value,
                channel_id=target.channel_id,
                error=result.error,
            )
        return result

    async def list_available_channels(self, session_id: str) -> List[ChannelInfo]:
        """Configured channels merged with what the session's platform sees.

        Entries are unique per (platform, channel id). Configured entries
        keep ``configured=True``; live data only contributes names and
        channels missing from the config.
        """
        merged: Dict[Tuple[Platform, str], ChannelInfo] = {}
        for key in self.app_config.configured_channels():
            merged[(key.platform, key.channel_id)] = ChannelInfo(
                platform=key.platform,
                channel_id=key.channel_id,
                workspace_id=key.workspace_id,
                configured=True,
            )

        adapter = await self._adapter_for_session(session_id)
        if adapter is None:
            return list(merged.values())

        try:
            live = await adapter.list_channels()
        except Exception as e:
            logger.warning(
                "Live channel listing failed, using configured channels only",
                platform=adapter.platform.value,
                error=str(e),
            )
            return list(merged.values())

        for channel in live:
            known = merged.get((channel.platform, channel.channel_id))
            if known is None:
                merged[(channel.platform, channel.channel_id)] = ChannelInfo(
                    platform=channel.platform,
                    channel_id=channel.channel_id,
                    name=channel.name,
                    workspace_id=channel.workspace_id,
                    configured=False,
                )
            else:
                known.name = known.name or channel.name
                known.workspace_id = known.workspace_id or channel.workspace_id

        return list(merged.values())
