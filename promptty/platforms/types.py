"""Platform-neutral value types shared by the router and adapters."""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class Platform(str, Enum):
    """Supported chat platforms."""

    SLACK = "slack"
    TEAMS = "teams"

    @property
    def display_name(self) -> str:
        return "Slack" if self is Platform.SLACK else "Teams"


class UpdateType(str, Enum):
    """Kinds of interim update the agent can post."""

    PROGRESS = "progress"
    WARNING = "warning"
    SUCCESS = "success"
    ERROR = "error"


@dataclass
class InboundMessage:
    """A chat message normalized by a platform adapter."""

    platform: Platform
    workspace_id: str
    channel_id: str
    thread_id: Optional[str]
    user_id: str
    text: str
    is_mention: bool = False
    is_dm: bool = False
    is_thread: bool = False
    channel_name: Optional[str] = None
    workspace_name: Optional[str] = None
    user_name: Optional[str] = None


@dataclass
class ChannelTarget:
    """Destination of a proactive cross-channel message."""

    platform: Platform
    channel_id: str
    message: str
    workspace_id: Optional[str] = None
    thread_ts: Optional[str] = None


@dataclass
class SendMessageResult:
    """Outcome of a proactive send."""

    success: bool
    message_id: Optional[str] = None
    thread_ts: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"success": self.success}
        if self.message_id:
            data["messageId"] = self.message_id
        if self.thread_ts:
            data["threadTs"] = self.thread_ts
        if self.error:
            data["error"] = self.error
        return data


@dataclass
class ChannelInfo:
    """A channel the agent may post to."""

    platform: Platform
    channel_id: str
    name: Optional[str] = None
    workspace_id: Optional[str] = None
    configured: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "platform": self.platform.value,
            "channelId": self.channel_id,
            "name": self.name,
            "workspaceId": self.workspace_id,
            "configured": self.configured,
        }
