"""Response filter: decide whether the bot engages with a message."""

import re
from dataclasses import dataclass
from typing import Optional, Union

import structlog

from ..config.channels import FilterMode, ResponseFilter

logger = structlog.get_logger()


@dataclass(frozen=True)
class MessageFilterContext:
    """What the filter knows about an inbound message."""

    text: str
    is_mention: bool = False
    is_dm: bool = False
    is_thread: bool = False


def should_respond(
    policy: Optional[ResponseFilter], context: MessageFilterContext
) -> bool:
    """Return True if the bot should respond to the message.

    Without a policy the bot answers mentions and DMs only. An allowed DM
    short-circuits everything else, including ``combine_modes``.
    """
    if policy is None:
        return context.is_mention or context.is_dm

    if context.is_dm and policy.allow_dms:
        return True

    if policy.combine_modes:
        return any(
            _matches_mode(mode, policy, context) for mode in policy.combine_modes
        )

    return _matches_mode(policy.mode, policy, context)


def _matches_mode(
    mode: Union[FilterMode, str],
    policy: ResponseFilter,
    context: MessageFilterContext,
) -> bool:
    if mode == FilterMode.ALL:
        return True
    if mode == FilterMode.NONE:
        return False
    if mode == FilterMode.MENTIONS:
        return context.is_mention
    if mode == FilterMode.THREADS:
        return context.is_thread
    if mode == FilterMode.KEYWORDS:
        return _matches_keywords(policy, context.text)
    if mode == FilterMode.REGEX:
        return _matches_patterns(policy, context.text)
    # Unknown modes behave like "mentions"
    return context.is_mention


def _matches_keywords(policy: ResponseFilter, text: str) -> bool:
    if not policy.keywords:
        return False
    lowered = text.lower()
    return any(keyword.lower() in lowered for keyword in policy.keywords)


def _matches_patterns(policy: ResponseFilter, text: str) -> bool:
    if not policy.patterns:
        return False
    for pattern in policy.patterns:
        try:
            if re.search(pattern, text, re.IGNORECASE):
                return True
        except re.error as e:
            logger.warning("Invalid response filter pattern", pattern=pattern, error=str(e))
    return False
