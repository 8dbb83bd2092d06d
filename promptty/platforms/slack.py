"""Slack adapter.

Features:
- Slack Bolt App with Socket Mode
- Message event normalization (mentions, DMs, threads)
- Acknowledgement replaced in place by the final answer
- Interim updates and proactive posts via the Web API
- Member channel listing for cross-channel discovery
"""

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional

import structlog
from slack_bolt.adapter.socket_mode.async_handler import AsyncSocketModeHandler
from slack_bolt.app.async_app import AsyncApp
from slack_sdk.errors import SlackApiError
from slack_sdk.web.async_client import AsyncWebClient

from ..agent.types import ExecuteResult
from ..config.loader import SlackAuth
from ..exceptions import SlackError
from ..formatters import slack as slack_fmt
from .base import PlatformAdapter
from .types import ChannelInfo, InboundMessage, Platform, SendMessageResult, UpdateType

if TYPE_CHECKING:
    from ..bot.orchestrator import MessageOrchestrator

logger = structlog.get_logger()

# Subtypes that still carry a user's message
_HANDLED_SUBTYPES = {"file_share", "thread_broadcast"}

GREETING = "Hi! Send me a message and I'll process it with Claude Code."


@dataclass
class SlackReplyContext:
    """Where replies for a running session go."""

    channel_id: str
    thread_ts: str
    workspace_id: str
    user_id: str
    ack_ts: Optional[str] = None


@dataclass
class SlackInbound:
    """What the adapter needs to acknowledge an inbound message."""

    say: Callable
    channel_id: str
    thread_ts: str
    workspace_id: str
    user_id: str


class SlackAdapter(PlatformAdapter[SlackReplyContext]):
    """Slack Socket Mode adapter."""

    platform = Platform.SLACK

    def __init__(
        self,
        auth: SlackAuth,
        orchestrator: "MessageOrchestrator",
        app: Optional[AsyncApp] = None,
    ):
        super().__init__()
        self.auth = auth
        self.orchestrator = orchestrator
        self.app = app or AsyncApp(token=auth.bot_token, signing_secret=auth.signing_secret)
        self.client: AsyncWebClient = self.app.client
        self.socket_handler: Optional[AsyncSocketModeHandler] = None
        self.bot_user_id: Optional[str] = None
        self.team_id: Optional[str] = None
        self.is_running = False

        self.app.event("message")(self.handle_message_event)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Resolve the bot identity, then run Socket Mode until stopped."""
        if self.is_running:
            logger.warning("Slack adapter is already running")
            return

        try:
            identity = await self.client.auth_test()
            self.bot_user_id = identity.get("user_id")
            self.team_id = identity.get("team_id")
            logger.info(
                "Starting Slack adapter",
                mode="socket_mode",
                bot_user_id=self.bot_user_id,
                team_id=self.team_id,
            )

            self.is_running = True
            self.socket_handler = AsyncSocketModeHandler(self.app, self.auth.app_token)
            # start_async() blocks until the handler is closed
            await self.socket_handler.start_async()
        except Exception as e:
            logger.error("Error running Slack adapter", error=str(e))
            raise SlackError(f"Failed to start Slack adapter: {e}") from e
        finally:
            self.is_running = False

    async def stop(self) -> None:
        if self.socket_handler is None:
            return
        logger.info("Stopping Slack adapter")
        try:
            await self.socket_handler.close_async()
        except Exception as e:
            logger.error("Error stopping Slack adapter", error=str(e))
        finally:
            self.socket_handler = None

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_message_event(
        self,
        event: Dict[str, Any],
        say: Callable,
        context: Dict[str, Any],
        **kwargs: Any,
    ) -> None:
        """Normalize a Bolt ``message`` event and hand it to the orchestrator."""
        subtype = event.get("subtype")
        if event.get("bot_id") or (subtype is not None and subtype not in _HANDLED_SUBTYPES):
            return

        user_id = event.get("user", "")
        channel_id = event.get("channel", "")
        text = event.get("text") or ""
        if not user_id or not channel_id or not text.strip():
            return

        bot_user_id = context.get("bot_user_id") or self.bot_user_id
        is_mention = bool(bot_user_id) and f"<@{bot_user_id}>" in text
        cleaned = (
            re.sub(rf"<@{re.escape(bot_user_id)}>\s*", "", text).strip()
            if bot_user_id
            else text.strip()
        )

        thread_ts = event.get("thread_ts")
        root_ts = thread_ts or event.get("ts", "")
        workspace_id = event.get("team") or context.get("team_id") or self.team_id or "unknown"

        if not cleaned:
            if is_mention:
                await say(text=GREETING, thread_ts=root_ts)
            return

        message = InboundMessage(
            platform=Platform.SLACK,
            workspace_id=workspace_id,
            channel_id=channel_id,
            thread_id=root_ts,
            user_id=user_id,
            text=cleaned,
            is_mention=is_mention,
            is_dm=event.get("channel_type") == "im",
            is_thread=thread_ts is not None,
        )
        logger.debug(
            "Received Slack message",
            channel_id=channel_id,
            thread_ts=root_ts,
            user_id=user_id,
            is_mention=message.is_mention,
            is_dm=message.is_dm,
        )
        handle = SlackInbound(say, channel_id, root_ts, workspace_id, user_id)
        await self.orchestrator.handle_message(self, message, handle)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def send_acknowledgement(self, handle: SlackInbound) -> SlackReplyContext:
        ack = slack_fmt.format_acknowledgement()
        response = await handle.say(
            text=ack.text, blocks=ack.blocks, thread_ts=handle.thread_ts
        )
        return SlackReplyContext(
            channel_id=handle.channel_id,
            thread_ts=handle.thread_ts,
            workspace_id=handle.workspace_id,
            user_id=handle.user_id,
            ack_ts=response.get("ts") if response else None,
        )

    async def update_or_send(
        self, context: SlackReplyContext, result: ExecuteResult
    ) -> None:
        if result.success:
            messages = slack_fmt.format_response(result.output, result.duration_ms)
        else:
            messages = [slack_fmt.format_error(result.error or result.output)]

        if context.ack_ts:
            first, rest = messages[0], messages[1:]
            await self.client.chat_update(
                channel=context.channel_id,
                ts=context.ack_ts,
                text=first.text,
                # An empty list clears the acknowledgement's blocks
                blocks=first.blocks or [],
            )
        else:
            rest = messages

        for msg in rest:
            await self.client.chat_postMessage(
                channel=context.channel_id,
                thread_ts=context.thread_ts,
                text=msg.text,
                blocks=msg.blocks,
            )

    async def post_to_context(
        self, context: SlackReplyContext, message: str, update_type: UpdateType
    ) -> None:
        formatted = slack_fmt.format_update(message, update_type)
        await self.client.chat_postMessage(
            channel=context.channel_id,
            thread_ts=context.thread_ts,
            text=formatted.text,
            blocks=formatted.blocks,
        )

    async def send_proactive(
        self,
        channel_id: str,
        message: str,
        thread_ts: Optional[str] = None,
        workspace_id: Optional[str] = None,
    ) -> SendMessageResult:
        try:
            response = await self.client.chat_postMessage(
                channel=channel_id,
                text=slack_fmt.markdown_to_slack_mrkdwn(message),
                thread_ts=thread_ts,
            )
        except SlackApiError as e:
            error = e.response.get("error") if e.response is not None else str(e)
            logger.error(
                "Failed to send Slack message", channel_id=channel_id, error=error
            )
            return SendMessageResult(success=False, error=error or str(e))

        ts = response.get("ts")
        return SendMessageResult(success=True, message_id=ts, thread_ts=thread_ts or ts)

    async def list_channels(self) -> List[ChannelInfo]:
        """Channels the bot is a member of."""
        channels: List[ChannelInfo] = []
        cursor = None
        while True:
            kwargs: Dict[str, Any] = {
                "types": "public_channel,private_channel",
                "exclude_archived": True,
                "limit": 200,
            }
            if cursor:
                kwargs["cursor"] = cursor
            response = await self.client.conversations_list(**kwargs)
            for channel in response.get("channels", []):
                if not channel.get("is_member"):
                    continue
                channels.append(
                    ChannelInfo(
                        platform=Platform.SLACK,
                        channel_id=channel["id"],
                        name=channel.get("name"),
                        workspace_id=channel.get("context_team_id") or self.team_id,
                    )
                )
            cursor = (response.get("response_metadata") or {}).get("next_cursor")
            if not cursor:
                break
        return channels
