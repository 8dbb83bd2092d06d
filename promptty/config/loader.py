"""Load the channel configuration file and resolve platform credentials."""

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import structlog
import yaml
from pydantic import ValidationError

from ..exceptions import InvalidConfigError
from .channels import AppConfig
from .settings import Settings

logger = structlog.get_logger()


def load_app_config(config_path: Path) -> AppConfig:
    """Read and validate the channel configuration file.

    A missing file is not an error: the bridge then runs with defaults only
    and answers nothing outside DMs served from a default working directory.
    JSON is the native format; ``.yml``/``.yaml`` files are read as YAML.
    """
    path = Path(config_path).expanduser()
    if not path.exists():
        logger.warning("Config file not found, using defaults", config_path=str(path))
        return AppConfig()

    try:
        raw = path.read_text(encoding="utf-8")
        data: Any
        if path.suffix.lower() in (".yml", ".yaml"):
            data = yaml.safe_load(raw) or {}
        else:
            data = json.loads(raw)
    except (OSError, json.JSONDecodeError, yaml.YAMLError) as e:
        logger.error("Failed to read config", config_path=str(path), error=str(e))
        raise InvalidConfigError(f"Cannot read config file {path}: {e}") from e

    if not isinstance(data, dict):
        raise InvalidConfigError(f"Config file {path} must contain an object")

    try:
        config = AppConfig.model_validate(data)
    except ValidationError as e:
        logger.error("Config validation failed", errors=e.errors(include_url=False))
        raise InvalidConfigError(f"Invalid configuration file {path}: {e}") from e

    logger.info("Config loaded", channel_count=len(config.channels))
    return config


@dataclass
class SlackAuth:
    bot_token: str
    app_token: str
    signing_secret: Optional[str] = None


@dataclass
class TeamsAuth:
    app_id: str
    app_password: str


def resolve_slack_auth(settings: Settings, config: AppConfig) -> Optional[SlackAuth]:
    """File credentials win over the environment; ``None`` if incomplete."""
    file_creds = config.slack
    bot_token = (file_creds and file_creds.bot_token) or settings.slack_bot_token_str
    app_token = (file_creds and file_creds.app_token) or settings.slack_app_token_str
    signing_secret = (file_creds and file_creds.signing_secret) or (
        settings.slack_signing_secret.get_secret_value()
        if settings.slack_signing_secret
        else None
    )
    if not bot_token or not app_token:
        return None
    return SlackAuth(bot_token, app_token, signing_secret)


def resolve_teams_auth(settings: Settings, config: AppConfig) -> Optional[TeamsAuth]:
    """File credentials win over the environment; ``None`` if incomplete."""
    file_creds = config.teams
    app_id = (file_creds and file_creds.app_id) or settings.teams_app_id
    app_password = (
        file_creds and file_creds.app_password
    ) or settings.teams_app_password_str
    if not app_id or not app_password:
        return None
    return TeamsAuth(app_id, app_password)
