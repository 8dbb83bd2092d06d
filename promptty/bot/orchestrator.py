"""Platform-independent handling of one inbound chat message.

Flow: channel config -> response filter -> session find-or-create ->
acknowledgement -> active context registered -> agent invocation ->
final result replaces the acknowledgement -> context unregistered ->
agent session bound and session extended.

Messages for the same session are processed one at a time; a message that
arrives while its thread is busy waits for the running invocation.
"""

import asyncio
from collections import defaultdict
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

import structlog

from ..agent.executor import ClaudeExecutor
from ..agent.types import ExecuteOptions, ExecuteResult, MessageContext, StreamUpdate
from ..config.channels import AppConfig, ChannelConfig, ChannelKey
from ..platforms.base import PlatformAdapter
from ..platforms.types import InboundMessage
from ..routing.filter import MessageFilterContext, should_respond
from ..routing.session_manager import SessionManager
from ..storage.sessions import Session, SessionKey

logger = structlog.get_logger()


class MessageOrchestrator:
    """Routes inbound messages through filter, session and executor."""

    def __init__(
        self,
        app_config: AppConfig,
        session_manager: SessionManager,
        executor: ClaudeExecutor,
        timeout_seconds: Optional[float] = None,
    ):
        self.app_config = app_config
        self.session_manager = session_manager
        self.executor = executor
        self.timeout_seconds = timeout_seconds
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = defaultdict(int)

    @asynccontextmanager
    async def _session_turn(self, session_id: str) -> AsyncIterator[None]:
        lock = self._session_locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] += 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if self._lock_users[session_id] == 0:
                del self._lock_users[session_id]
                self._session_locks.pop(session_id, None)

    async def handle_message(
        self, adapter: PlatformAdapter, message: InboundMessage, handle: Any
    ) -> Optional[ExecuteResult]:
        """Process one message; returns the agent result if the bot engaged.

        ``handle`` is whatever the adapter needs to acknowledge the message
        (Bolt's ``say`` plus event data, a Bot Framework turn context).
        Nothing here raises for per-message failures.
        """
        log = logger.bind(
            platform=message.platform.value,
            channel_id=message.channel_id,
            thread_id=message.thread_id,
        )

        channel_config = self.app_config.get_channel_config(
            ChannelKey(message.platform, message.workspace_id, message.channel_id)
        )
        if channel_config is None:
            log.debug("No configuration for this channel, ignoring", is_dm=message.is_dm)
            return None

        filter_context = MessageFilterContext(
            text=message.text,
            is_mention=message.is_mention,
            is_dm=message.is_dm,
            is_thread=message.is_thread,
        )
        if not should_respond(channel_config.response_filter, filter_context):
            log.debug(
                "Message filtered out",
                filter_mode=(
                    channel_config.response_filter.mode.value
                    if channel_config.response_filter
                    else None
                ),
            )
            return None

        key = SessionKey(
            message.platform, message.workspace_id, message.channel_id, message.thread_id
        )
        session = await self.session_manager.get_or_create(key, channel_config.ttl)
        log = log.bind(session_id=session.id)

        # Queued and running turns keep the session out of the expiry sweep.
        async with self.session_manager.in_use(session.id), self._session_turn(
            session.id
        ):
            # Re-read: a turn that finished while we waited may have bound
            # the agent session id.
            session = await self.session_manager.get(session.id) or session
            await self.session_manager.extend(session.id, channel_config.ttl)
            await self.session_manager.log_message(session.id, "in", message.text)

            try:
                context = await adapter.send_acknowledgement(handle)
            except Exception as e:
                log.error("Failed to send acknowledgement", error=str(e))
                return None

            adapter.contexts.register(session.id, context)
            try:
                log.info("Processing message", text_length=len(message.text))
                result = await self._execute(message, channel_config, session, log)
                try:
                    await adapter.update_or_send(context, result)
                except Exception as e:
                    log.error("Failed to deliver result", error=str(e))
            finally:
                adapter.contexts.unregister(session.id, context)

            if (
                result.external_session_id
                and result.external_session_id != session.agent_session_id
            ):
                await self.session_manager.bind_agent_session(
                    session.id, result.external_session_id
                )
            await self.session_manager.extend(session.id, channel_config.ttl)
            await self.session_manager.log_message(
                session.id,
                "out",
                result.output if result.success else (result.error or result.output),
                {"success": result.success, "duration_ms": result.duration_ms},
            )
            return result

    async def _execute(
        self,
        message: InboundMessage,
        channel_config: ChannelConfig,
        session: Session,
        log: Any,
    ) -> ExecuteResult:
        options = ExecuteOptions(
            working_directory=channel_config.working_directory,
            command=channel_config.command,
            session_id=session.agent_session_id,
            callback_session_id=session.id,
            system_prompt=channel_config.system_prompt,
            allowed_tools=channel_config.allowed_tools,
            skip_permissions=channel_config.skip_permissions,
            timeout_seconds=self.timeout_seconds,
            message_context=MessageContext(
                platform=message.platform,
                channel_id=message.channel_id,
                workspace_id=message.workspace_id,
                user_id=message.user_id,
                thread_id=message.thread_id,
                is_dm=message.is_dm,
                is_thread=message.is_thread,
                channel_name=message.channel_name,
                workspace_name=message.workspace_name,
                user_name=message.user_name,
            ),
            on_update=self._log_stream_update,
        )
        try:
            result = await self.executor.execute(message.text, options)
        except Exception as e:
            log.error("Agent execution raised", error=str(e))
            return ExecuteResult(
                success=False, output="", error=str(e) or type(e).__name__, duration_ms=0
            )
        if not result.success:
            log.warning("Agent execution failed", error=result.error)
        return result

    @staticmethod
    def _log_stream_update(update: StreamUpdate) -> None:
        if update.tool_calls:
            for call in update.tool_calls:
                logger.debug("Agent tool call", tool=call.get("tool_name"))
        elif update.type == "error":
            logger.warning("Agent stream error", error=update.content)
