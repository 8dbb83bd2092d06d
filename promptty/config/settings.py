"""Configuration management using Pydantic Settings.

Features:
- Environment variable loading (and an optional ``.env`` file)
- Type validation
- Default values
- Computed properties
"""

import ipaddress
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..utils.constants import (
    DATABASE_FILENAME,
    DEFAULT_AGENT_TIMEOUT_SECONDS,
    DEFAULT_CALLBACK_HOST,
    DEFAULT_CALLBACK_PORT,
    DEFAULT_CONFIG_PATH,
    DEFAULT_DATA_DIR,
    DEFAULT_SWEEP_INTERVAL_SECONDS,
    DEFAULT_TEAMS_PORT,
    PIDFILE_NAME,
)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Slack settings
    slack_bot_token: Optional[SecretStr] = Field(
        None, description="Slack Bot User OAuth Token (xoxb-...)"
    )
    slack_app_token: Optional[SecretStr] = Field(
        None, description="Slack App-Level Token for Socket Mode (xapp-...)"
    )
    slack_signing_secret: Optional[SecretStr] = Field(
        None, description="Slack Signing Secret"
    )

    # Teams settings
    teams_app_id: Optional[str] = Field(None, description="Bot Framework app id")
    teams_app_password: Optional[SecretStr] = Field(
        None, description="Bot Framework app password"
    )
    teams_port: int = Field(
        DEFAULT_TEAMS_PORT, description="Port for the Teams /api/messages endpoint"
    )

    # Storage and config file
    data_dir: Path = Field(
        Path(DEFAULT_DATA_DIR), description="Directory for the database and pidfile"
    )
    config_path: Path = Field(
        Path(DEFAULT_CONFIG_PATH), description="Channel configuration file"
    )

    # Callback ingress
    callback_host: str = Field(
        DEFAULT_CALLBACK_HOST, description="Loopback address for the callback server"
    )
    callback_port: int = Field(
        DEFAULT_CALLBACK_PORT, description="Port for the callback server", ge=1, le=65535
    )

    # Agent
    agent_timeout_seconds: int = Field(
        DEFAULT_AGENT_TIMEOUT_SECONDS, description="Hard limit per agent invocation", gt=0
    )
    enable_mcp_bridge: bool = Field(
        True, description="Pass the promptty MCP server to each agent invocation"
    )

    # Sessions
    session_sweep_interval_seconds: int = Field(
        DEFAULT_SWEEP_INTERVAL_SECONDS,
        description="How often expired sessions are deleted",
        gt=0,
    )

    # Monitoring
    log_level: str = Field("INFO", description="Logging level")

    # Development
    debug: bool = Field(False, description="Enable debug mode")

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    @field_validator("callback_host")
    @classmethod
    def validate_callback_host(cls, v: Any) -> str:
        """The callback server must never listen beyond loopback."""
        host = str(v).strip()
        if host == "localhost":
            return host
        try:
            address = ipaddress.ip_address(host)
        except ValueError:
            address = None
        if address is None or not address.is_loopback:
            raise ValueError(f"callback_host must be a loopback address, got {host!r}")
        return host

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: Any) -> str:
        """Validate log level, accepting the pino-style names too."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        aliases = {"TRACE": "DEBUG", "WARN": "WARNING", "FATAL": "CRITICAL"}
        level = str(v).upper()
        level = aliases.get(level, level)
        if level not in valid_levels:
            raise ValueError(f"log_level must be one of {valid_levels}")
        return level

    @model_validator(mode="after")
    def validate_cross_field_dependencies(self) -> "Settings":
        """Validate dependencies between fields."""
        if bool(self.slack_bot_token) != bool(self.slack_app_token):
            raise ValueError(
                "slack_bot_token and slack_app_token must be provided together"
            )
        if self.teams_app_password and not self.teams_app_id:
            raise ValueError("teams_app_id required when teams_app_password is set")
        return self

    @property
    def database_path(self) -> Path:
        """Location of the SQLite session database."""
        return (self.data_dir / DATABASE_FILENAME).resolve()

    @property
    def pidfile_path(self) -> Path:
        """Location of the single-instance pidfile."""
        return self.data_dir / PIDFILE_NAME

    @property
    def callback_url(self) -> str:
        """Base URL the agent uses to reach the callback server."""
        return f"http://{self.callback_host}:{self.callback_port}"

    @property
    def slack_bot_token_str(self) -> Optional[str]:
        """Get Slack bot token as string."""
        return self.slack_bot_token.get_secret_value() if self.slack_bot_token else None

    @property
    def slack_app_token_str(self) -> Optional[str]:
        """Get Slack app token as string."""
        return self.slack_app_token.get_secret_value() if self.slack_app_token else None

    @property
    def teams_app_password_str(self) -> Optional[str]:
        """Get Teams app password as string."""
        return (
            self.teams_app_password.get_secret_value()
            if self.teams_app_password
            else None
        )
