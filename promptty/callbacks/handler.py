"""Callback operations behind the loopback ingress.

Each operation validates its payload, delegates to the router and maps the
outcome to a status code plus JSON body. The HTTP layer in ``server`` only
parses requests and serializes ``CallbackResult``.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..platforms.types import ChannelTarget, Platform, UpdateType
from ..routing.router import Router

logger = structlog.get_logger()

SESSION_NOT_FOUND = "Session not found or inactive"


@dataclass
class CallbackResult:
    status: int
    body: Dict[str, Any]


class PostUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    type: UpdateType = UpdateType.PROGRESS


class SendMessageRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    session_id: str = Field(..., min_length=1)
    platform: Platform
    channel_id: str = Field(..., min_length=1)
    message: str = Field(..., min_length=1)
    thread_ts: Optional[str] = None
    workspace_id: Optional[str] = None


def _validation_message(error: ValidationError) -> str:
    parts = []
    for item in error.errors(include_url=False):
        field = ".".join(str(loc) for loc in item["loc"]) or "body"
        parts.append(f"{field}: {item['msg']}")
    return "Invalid request: " + "; ".join(parts)


class CallbackHandler:
    """post_update / send_message / list_channels over the router."""

    def __init__(self, router: Router):
        self.router = router

    async def post_update(self, payload: Any) -> CallbackResult:
        try:
            request = PostUpdateRequest.model_validate(payload)
        except ValidationError as e:
            return CallbackResult(400, {"error": _validation_message(e)})

        logger.debug(
            "Received callback",
            session_id=request.session_id,
            type=request.type.value,
            message_length=len(request.message),
        )
        try:
            delivered = await self.router.send_update(
                request.session_id, request.message, request.type
            )
        except Exception as e:
            logger.error(
                "Error handling callback", session_id=request.session_id, error=str(e)
            )
            return CallbackResult(500, {"error": "Internal server error"})

        if not delivered:
            logger.warning(
                "Failed to deliver callback - session may be inactive",
                session_id=request.session_id,
            )
            return CallbackResult(404, {"error": SESSION_NOT_FOUND})
        return CallbackResult(200, {"success": True})

    async def send_message(self, payload: Any) -> CallbackResult:
        try:
            request = SendMessageRequest.model_validate(payload)
        except ValidationError as e:
            return CallbackResult(400, {"success": False, "error": _validation_message(e)})

        logger.info(
            "Cross-channel message requested",
            session_id=request.session_id,
            platform=request.platform.value,
            channel_id=request.channel_id,
        )
        result = await self.router.send_to_channel(
            ChannelTarget(
                platform=request.platform,
                channel_id=request.channel_id,
                message=request.message,
                workspace_id=request.workspace_id,
                thread_ts=request.thread_ts,
            )
        )
        if not result.success:
            return CallbackResult(
                400, {"success": False, "error": result.error or "Send failed"}
            )
        return CallbackResult(200, result.to_dict())

    async def list_channels(self, session_id: Optional[str]) -> CallbackResult:
        if not session_id:
            return CallbackResult(400, {"error": "Missing session_id"})
        try:
            channels = await self.router.list_available_channels(session_id)
        except Exception as e:
            logger.error("Error listing channels", session_id=session_id, error=str(e))
            return CallbackResult(500, {"error": "Internal server error"})
        return CallbackResult(200, {"channels": [c.to_dict() for c in channels]})
