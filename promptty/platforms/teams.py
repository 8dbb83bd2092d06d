"""Microsoft Teams adapter (Bot Framework).

Inbound activities arrive on an aiohttp ``POST /api/messages`` endpoint.
Each message is processed in a background task so the HTTP turn returns
immediately; every reply, including the acknowledgement, is sent through
``continue_conversation`` with the reference captured from the inbound
activity.
"""

import asyncio
import json
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Set

import structlog
from aiohttp import web
from botbuilder.core import (
    BotFrameworkAdapter,
    BotFrameworkAdapterSettings,
    CardFactory,
    MessageFactory,
    TurnContext,
)
from botbuilder.schema import Activity, ActivityTypes, ConversationReference

from ..agent.types import ExecuteResult
from ..config.loader import TeamsAuth
from ..exceptions import TeamsError
from ..formatters import teams as teams_fmt
from ..utils.constants import DEFAULT_TEAMS_PORT
from .base import PlatformAdapter
from .types import ChannelInfo, InboundMessage, Platform, SendMessageResult, UpdateType

if TYPE_CHECKING:
    from ..bot.orchestrator import MessageOrchestrator

logger = structlog.get_logger()

GREETING = "Hi! Send me a message and I'll process it with Claude Code."
NO_REFERENCE_ERROR = (
    "No conversation reference for channel - "
    "the bot must first receive a message from this channel"
)

_AT_MENTION_RE = re.compile(r"<at>.*?</at>", re.IGNORECASE | re.DOTALL)


def base_channel_id(conversation_id: str) -> str:
    """Channel conversation id without the ``;messageid=`` thread suffix."""
    return conversation_id.split(";messageid=", 1)[0]


@dataclass
class TeamsReplyContext:
    """Where replies for a running session go."""

    reference: ConversationReference
    conversation_id: str
    tenant_id: str
    ack_id: Optional[str] = None


@dataclass
class TeamsInbound:
    reference: ConversationReference
    conversation_id: str
    tenant_id: str


class ConversationReferenceCache:
    """Latest conversation reference seen per channel.

    Teams cannot post to a channel the bot has not heard from, so the
    reference captured from the last inbound activity is what proactive
    sends reuse.
    """

    def __init__(self) -> None:
        self._references: Dict[str, ConversationReference] = {}

    def store(self, channel_id: str, reference: ConversationReference) -> None:
        self._references[channel_id] = reference

    def get(self, channel_id: str) -> Optional[ConversationReference]:
        return self._references.get(channel_id) or self._references.get(
            base_channel_id(channel_id)
        )

    def items(self) -> List[tuple]:
        return list(self._references.items())

    def __len__(self) -> int:
        return len(self._references)


class TeamsAdapter(PlatformAdapter[TeamsReplyContext]):
    """Bot Framework adapter served from an aiohttp application."""

    platform = Platform.TEAMS

    def __init__(
        self,
        auth: TeamsAuth,
        orchestrator: "MessageOrchestrator",
        port: int = DEFAULT_TEAMS_PORT,
        host: str = "0.0.0.0",
        bot_adapter: Optional[BotFrameworkAdapter] = None,
    ):
        super().__init__()
        self.auth = auth
        self.orchestrator = orchestrator
        self.host = host
        self.port = port
        self.bot_adapter = bot_adapter or BotFrameworkAdapter(
            BotFrameworkAdapterSettings(auth.app_id, auth.app_password)
        )
        self.bot_adapter.on_turn_error = self._on_turn_error
        self.references = ConversationReferenceCache()
        self._tasks: Set[asyncio.Task] = set()
        self._runner: Optional[web.AppRunner] = None
        self._stopped: Optional[asyncio.Event] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def create_web_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post("/api/messages", self.handle_request)
        return app

    async def start(self) -> None:
        """Serve ``/api/messages`` until stopped."""
        self._stopped = asyncio.Event()
        self._runner = web.AppRunner(self.create_web_app())
        try:
            await self._runner.setup()
            site = web.TCPSite(self._runner, self.host, self.port)
            await site.start()
        except OSError as e:
            await self._runner.cleanup()
            self._runner = None
            raise TeamsError(f"Failed to start Teams endpoint on port {self.port}: {e}") from e

        logger.info("Teams adapter listening", host=self.host, port=self.port)
        await self._stopped.wait()

    async def stop(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        if self._runner is not None:
            logger.info("Stopping Teams adapter")
            await self._runner.cleanup()
            self._runner = None
        if self._stopped is not None:
            self._stopped.set()

    # ------------------------------------------------------------------
    # Inbound
    # ------------------------------------------------------------------

    async def handle_request(self, request: web.Request) -> web.Response:
        if "application/json" not in request.headers.get("Content-Type", ""):
            return web.Response(status=415)

        try:
            body = await request.json()
        except json.JSONDecodeError:
            logger.warning("Rejected Teams request with malformed JSON")
            return web.Response(status=400)
        if not isinstance(body, dict):
            return web.Response(status=400)

        activity = Activity().deserialize(body)
        auth_header = request.headers.get("Authorization", "")
        try:
            response = await self.bot_adapter.process_activity(
                activity, auth_header, self.on_turn
            )
        except PermissionError:
            return web.Response(status=401)
        if response:
            return web.json_response(data=response.body, status=response.status)
        return web.Response(status=201)

    async def on_turn(self, turn_context: TurnContext) -> None:
        activity = turn_context.activity
        if activity.type != ActivityTypes.message:
            return

        conversation = activity.conversation
        reference = TurnContext.get_conversation_reference(activity)
        channel_id = base_channel_id(conversation.id)
        self.references.store(channel_id, reference)

        text = activity.text or ""
        is_mention = self._is_bot_mentioned(activity)
        cleaned = _AT_MENTION_RE.sub("", text).strip()
        if not cleaned:
            if is_mention:
                await turn_context.send_activity(GREETING)
            return

        channel_data = activity.channel_data or {}
        tenant_id = (
            getattr(conversation, "tenant_id", None)
            or (channel_data.get("tenant") or {}).get("id")
            or "unknown"
        )
        team = channel_data.get("team") or {}
        channel = channel_data.get("channel") or {}
        sender = activity.from_property

        message = InboundMessage(
            platform=Platform.TEAMS,
            workspace_id=tenant_id,
            channel_id=channel_id,
            thread_id=conversation.id,
            user_id=sender.id if sender else "",
            text=cleaned,
            is_mention=is_mention,
            is_dm=conversation.conversation_type == "personal",
            is_thread=activity.reply_to_id is not None,
            channel_name=channel.get("name") or conversation.name,
            workspace_name=team.get("name"),
            user_name=sender.name if sender else None,
        )
        logger.debug(
            "Received Teams message",
            channel_id=channel_id,
            is_mention=message.is_mention,
            is_dm=message.is_dm,
        )
        handle = TeamsInbound(reference, conversation.id, tenant_id)
        self._spawn(self.orchestrator.handle_message(self, message, handle))

    def _is_bot_mentioned(self, activity: Activity) -> bool:
        recipient_id = activity.recipient.id if activity.recipient else None
        for entity in activity.entities or []:
            if getattr(entity, "type", None) != "mention":
                continue
            mentioned = (entity.additional_properties or {}).get("mentioned") or {}
            if recipient_id and mentioned.get("id") == recipient_id:
                return True
        return "<at>" in (activity.text or "").lower()

    def _spawn(self, coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _on_turn_error(self, turn_context: TurnContext, error: Exception) -> None:
        logger.error("Teams turn failed", error=str(error), error_type=type(error).__name__)

    # ------------------------------------------------------------------
    # Outbound
    # ------------------------------------------------------------------

    async def _continue(
        self,
        reference: ConversationReference,
        send: Callable[[TurnContext], Awaitable[Any]],
    ) -> Any:
        """Run ``send`` in a proactive turn and return what it returned."""
        box: Dict[str, Any] = {}

        async def callback(turn_context: TurnContext) -> None:
            box["result"] = await send(turn_context)

        await self.bot_adapter.continue_conversation(
            reference, callback, bot_id=self.auth.app_id
        )
        return box.get("result")

    async def send_acknowledgement(self, handle: TeamsInbound) -> TeamsReplyContext:
        card = teams_fmt.format_acknowledgement()

        async def send(turn_context: TurnContext) -> Optional[str]:
            response = await turn_context.send_activity(
                MessageFactory.attachment(CardFactory.adaptive_card(card))
            )
            await turn_context.send_activity(Activity(type=ActivityTypes.typing))
            return response.id if response else None

        ack_id = await self._continue(handle.reference, send)
        return TeamsReplyContext(
            reference=handle.reference,
            conversation_id=handle.conversation_id,
            tenant_id=handle.tenant_id,
            ack_id=ack_id,
        )

    async def update_or_send(
        self, context: TeamsReplyContext, result: ExecuteResult
    ) -> None:
        card = (
            teams_fmt.format_response(result.output, result.duration_ms)
            if result.success
            else teams_fmt.format_error(result.error or result.output)
        )

        async def send(turn_context: TurnContext) -> None:
            activity = MessageFactory.attachment(CardFactory.adaptive_card(card))
            if context.ack_id:
                activity.id = context.ack_id
                try:
                    await turn_context.update_activity(activity)
                    return
                except Exception as e:
                    logger.warning(
                        "Could not update acknowledgement, sending new message",
                        error=str(e),
                    )
                    activity.id = None
            await turn_context.send_activity(activity)

        await self._continue(context.reference, send)

    async def post_to_context(
        self, context: TeamsReplyContext, message: str, update_type: UpdateType
    ) -> None:
        card = teams_fmt.format_progress(message, update_type)

        async def send(turn_context: TurnContext) -> None:
            await turn_context.send_activity(
                MessageFactory.attachment(CardFactory.adaptive_card(card))
            )

        await self._continue(context.reference, send)

    async def send_proactive(
        self,
        channel_id: str,
        message: str,
        thread_ts: Optional[str] = None,
        workspace_id: Optional[str] = None,
    ) -> SendMessageResult:
        reference = self.references.get(channel_id)
        if reference is None:
            return SendMessageResult(success=False, error=NO_REFERENCE_ERROR)

        async def send(turn_context: TurnContext) -> Optional[str]:
            response = await turn_context.send_activity(MessageFactory.text(message))
            return response.id if response else None

        try:
            message_id = await self._continue(reference, send)
        except Exception as e:
            logger.error("Failed to send Teams message", channel_id=channel_id, error=str(e))
            return SendMessageResult(success=False, error=str(e))
        return SendMessageResult(success=True, message_id=message_id)

    async def list_channels(self) -> List[ChannelInfo]:
        """Channels the bot has a conversation reference for."""
        channels: List[ChannelInfo] = []
        for channel_id, reference in self.references.items():
            conversation = reference.conversation
            channels.append(
                ChannelInfo(
                    platform=Platform.TEAMS,
                    channel_id=channel_id,
                    name=getattr(conversation, "name", None),
                    workspace_id=getattr(conversation, "tenant_id", None),
                )
            )
        return channels
