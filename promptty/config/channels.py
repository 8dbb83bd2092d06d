"""Channel configuration models.

The configuration file maps channel keys of the form
``platform:workspaceId/channelId`` to per-channel options, with an
optional ``defaults`` block applied underneath every channel.  Resolution
is layered: channel options override defaults, which override the
schema defaults declared on :class:`ChannelConfig`.
"""

import re
from dataclasses import dataclass
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..platforms.types import Platform
from ..utils.constants import DEFAULT_AGENT_COMMAND, DEFAULT_SESSION_TTL_MS

logger = structlog.get_logger()

_CHANNEL_KEY_RE = re.compile(r"^(slack|teams):([^/]+)/(.+)$")


@dataclass(frozen=True)
class ChannelKey:
    """Identifies a configured channel."""

    platform: Platform
    workspace_id: str
    channel_id: str


def make_channel_key(key: ChannelKey) -> str:
    """Render a channel key as ``platform:workspace/channel``."""
    return f"{key.platform.value}:{key.workspace_id}/{key.channel_id}"


def parse_channel_key(value: str) -> Optional[ChannelKey]:
    """Parse ``platform:workspace/channel``; ``None`` if malformed."""
    match = _CHANNEL_KEY_RE.match(value)
    if not match:
        return None
    return ChannelKey(
        platform=Platform(match.group(1)),
        workspace_id=match.group(2),
        channel_id=match.group(3),
    )


class FilterMode(str, Enum):
    """Response filter modes."""

    ALL = "all"
    MENTIONS = "mentions"
    KEYWORDS = "keywords"
    REGEX = "regex"
    THREADS = "threads"
    NONE = "none"


def _coerce_mode(value: Any) -> Any:
    """Unrecognised mode names fall back to ``mentions``."""
    if isinstance(value, FilterMode) or not isinstance(value, str):
        return value
    try:
        return FilterMode(value)
    except ValueError:
        logger.warning("Unknown response filter mode, using mentions", mode=value)
        return FilterMode.MENTIONS


class ResponseFilter(BaseModel):
    """When the bot should engage with a message in a channel."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    mode: FilterMode = FilterMode.MENTIONS
    keywords: Optional[List[str]] = None
    patterns: Optional[List[str]] = None
    allow_dms: bool = Field(True, alias="allowDMs")
    combine_modes: Optional[List[FilterMode]] = Field(None, alias="combineModes")

    @field_validator("mode", mode="before")
    @classmethod
    def validate_mode(cls, value: Any) -> Any:
        return _coerce_mode(value)

    @field_validator("combine_modes", mode="before")
    @classmethod
    def validate_combine_modes(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [_coerce_mode(item) for item in value]
        return value


class ChannelOptions(BaseModel):
    """One configuration layer; every field optional."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    working_directory: Optional[Path] = Field(None, alias="workingDirectory")
    command: Optional[str] = None
    system_prompt: Optional[str] = Field(None, alias="systemPrompt")
    session_ttl: Optional[int] = Field(None, alias="sessionTTL", gt=0)
    allowed_tools: Optional[List[str]] = Field(None, alias="allowedTools")
    skip_permissions: Optional[bool] = Field(None, alias="skipPermissions")
    response_filter: Optional[ResponseFilter] = Field(None, alias="responseFilter")


class ChannelConfig(BaseModel):
    """Fully resolved configuration for one channel."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    working_directory: Path = Field(alias="workingDirectory")
    command: str = DEFAULT_AGENT_COMMAND
    system_prompt: Optional[str] = Field(None, alias="systemPrompt")
    session_ttl: int = Field(DEFAULT_SESSION_TTL_MS, alias="sessionTTL", gt=0)
    allowed_tools: Optional[List[str]] = Field(None, alias="allowedTools")
    skip_permissions: bool = Field(False, alias="skipPermissions")
    response_filter: Optional[ResponseFilter] = Field(None, alias="responseFilter")

    @property
    def ttl(self) -> timedelta:
        """Session time-to-live as a timedelta (config stores milliseconds)."""
        return timedelta(milliseconds=self.session_ttl)


def resolve_channel_config(
    channel: Optional[ChannelOptions], defaults: Optional[ChannelOptions]
) -> Optional[ChannelConfig]:
    """Merge option layers into a :class:`ChannelConfig`.

    Only explicitly set fields take part in the merge, so an unset channel
    field falls through to the defaults layer and then to the schema
    default.  Returns ``None`` when no layer names a working directory.
    """
    merged: Dict[str, Any] = {}
    for layer in (defaults, channel):
        if layer is not None:
            merged.update(
                {
                    name: getattr(layer, name)
                    for name in layer.model_fields_set
                    if getattr(layer, name) is not None
                }
            )

    if merged.get("working_directory") is None:
        return None
    return ChannelConfig(**merged)


class SlackCredentials(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    bot_token: Optional[str] = Field(None, alias="botToken")
    app_token: Optional[str] = Field(None, alias="appToken")
    signing_secret: Optional[str] = Field(None, alias="signingSecret")


class TeamsCredentials(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    app_id: Optional[str] = Field(None, alias="appId")
    app_password: Optional[str] = Field(None, alias="appPassword")


class AppConfig(BaseModel):
    """Contents of the channel configuration file."""

    model_config = ConfigDict(populate_by_name=True)

    slack: Optional[SlackCredentials] = None
    teams: Optional[TeamsCredentials] = None
    channels: Dict[str, ChannelOptions] = Field(default_factory=dict)
    defaults: ChannelOptions = Field(
        default_factory=lambda: ChannelOptions(
            command=DEFAULT_AGENT_COMMAND, session_ttl=DEFAULT_SESSION_TTL_MS
        )
    )

    @model_validator(mode="after")
    def validate_channels(self) -> "AppConfig":
        """Every key must parse and every channel must resolve."""
        for key, options in self.channels.items():
            if parse_channel_key(key) is None:
                raise ValueError(
                    f"Invalid channel key {key!r}; expected platform:workspaceId/channelId"
                )
            if resolve_channel_config(options, self.defaults) is None:
                raise ValueError(f"Channel {key!r} has no workingDirectory")
        return self

    def get_channel_config(self, key: ChannelKey) -> Optional[ChannelConfig]:
        """Resolve the configuration for a channel, falling back to defaults."""
        return resolve_channel_config(
            self.channels.get(make_channel_key(key)), self.defaults
        )

    def configured_channels(self) -> List[ChannelKey]:
        """Channel keys named in the file, in file order."""
        keys = []
        for raw in self.channels:
            parsed = parse_channel_key(raw)
            if parsed is not None:
                keys.append(parsed)
        return keys
