"""Configuration: environment settings and the channel configuration file."""

from .channels import (
    AppConfig,
    ChannelConfig,
    ChannelKey,
    ChannelOptions,
    FilterMode,
    ResponseFilter,
    make_channel_key,
    parse_channel_key,
    resolve_channel_config,
)
from .loader import load_app_config, resolve_slack_auth, resolve_teams_auth
from .settings import Settings

__all__ = [
    "AppConfig",
    "ChannelConfig",
    "ChannelKey",
    "ChannelOptions",
    "FilterMode",
    "ResponseFilter",
    "Settings",
    "load_app_config",
    "make_channel_key",
    "parse_channel_key",
    "resolve_channel_config",
    "resolve_slack_auth",
    "resolve_teams_auth",
]
