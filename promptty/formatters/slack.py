"""Slack mrkdwn and Block Kit formatting.

Slack's mrkdwn format is close to standard markdown but has its own
conventions for bold (*bold*), italic (_italic_), code (`code`),
and code blocks (```code```).  Only three characters need escaping
in regular text: &, <, >.
"""

import re
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from ..platforms.types import UpdateType
from ..utils.constants import ERROR_MAX_LENGTH, SLACK_MAX_MESSAGE_LENGTH
from .common import format_duration, split_message, truncate_with_ellipsis

# Section blocks reject text over 3000 characters
SECTION_MAX_LENGTH = 2900

UPDATE_EMOJI: Dict[UpdateType, str] = {
    UpdateType.PROGRESS: ":hourglass:",
    UpdateType.WARNING: ":warning:",
    UpdateType.SUCCESS: ":white_check_mark:",
    UpdateType.ERROR: ":x:",
}


@dataclass
class FormattedMessage:
    """A Slack message: fallback ``text`` plus optional Block Kit blocks."""

    text: str
    blocks: Optional[List[dict]] = field(default=None)

    def __len__(self) -> int:
        return len(self.text)


def escape_mrkdwn(text: str) -> str:
    """Escape the 3 special characters for Slack mrkdwn."""
    return text.replace("&", "&amp;").replace("<", "&lt;").replace(">", "&gt;")


def markdown_to_slack_mrkdwn(text: str) -> str:
    """Convert the agent's markdown output to Slack-compatible mrkdwn.

    Order of operations:
    1. Extract fenced code blocks and inline code into placeholders
    2. Escape remaining text (&, <, >)
    3. Bold (**text** / __text__) -> *text*
    4. Italic (*text*) -> _text_
    5. Links [text](url) -> <url|text>
    6. Headers (# Header) -> *Header*
    7. Strikethrough (~~text~~) -> ~text~
    8. Restore placeholders
    """
    placeholders: List[Tuple[str, str]] = []

    def _make_placeholder(content: str) -> str:
        key = f"\x00PH{len(placeholders)}\x00"
        placeholders.append((key, content))
        return key

    def _replace_fenced(m: re.Match) -> str:  # type: ignore[type-arg]
        lang = m.group(1) or ""
        return _make_placeholder(f"```{lang}\n{m.group(2)}```")

    text = re.sub(r"```(\w+)?\n(.*?)```", _replace_fenced, text, flags=re.DOTALL)
    text = re.sub(r"`([^`\n]+)`", lambda m: _make_placeholder(f"`{m.group(1)}`"), text)

    text = escape_mrkdwn(text)

    # Bold first, using a sentinel so the italic pass leaves it alone.
    text = re.sub(r"\*\*(.+?)\*\*", "\x01\\1\x01", text)
    text = re.sub(r"__(.+?)__", "\x01\\1\x01", text)
    text = re.sub(r"(?<!\*)\*(\S.*?\S|\S)\*(?!\*)", r"_\1_", text)
    text = text.replace("\x01", "*")

    text = re.sub(r"\[([^\]]+)\]\(([^)]+)\)", r"<\2|\1>", text)
    text = re.sub(r"^#{1,6}\s+(.+)$", r"*\1*", text, flags=re.MULTILINE)
    text = re.sub(r"~~(.+?)~~", r"~\1~", text)

    for key, content in placeholders:
        text = text.replace(key, content)
    return text


def _section(text: str) -> dict:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def format_acknowledgement() -> FormattedMessage:
    text = ":hourglass_flowing_sand: Processing your request..."
    return FormattedMessage(text, [_section(text)])


def format_response(output: str, duration_ms: Optional[int] = None) -> List[FormattedMessage]:
    """Final answer, split into Slack-sized plain mrkdwn chunks.

    Section blocks cap text at 3000 characters, so responses go out as
    message text. The duration footer is appended to the last chunk.
    """
    converted = markdown_to_slack_mrkdwn(output.strip()) or "_(No output)_"
    footer = (
        f"\n\n_:stopwatch: Completed in {format_duration(duration_ms)}_"
        if duration_ms
        else ""
    )
    chunks = split_message(converted, SLACK_MAX_MESSAGE_LENGTH - len(footer))
    chunks[-1] += footer
    return [FormattedMessage(chunk) for chunk in chunks]


def format_error(error: str) -> FormattedMessage:
    detail = escape_mrkdwn(truncate_with_ellipsis(error or "Unknown error", ERROR_MAX_LENGTH))
    text = f":x: *Error*\n{detail}"
    return FormattedMessage(text, [_section(text)])


def format_update(message: str, update_type: UpdateType = UpdateType.PROGRESS) -> FormattedMessage:
    """Interim update posted into the thread while the agent runs."""
    emoji = UPDATE_EMOJI.get(update_type, UPDATE_EMOJI[UpdateType.PROGRESS])
    body = truncate_with_ellipsis(markdown_to_slack_mrkdwn(message), SECTION_MAX_LENGTH)
    text = f"{emoji} {body}"
    return FormattedMessage(text, [_section(text)])
