"""Adaptive Card builders for Microsoft Teams."""

import re
from typing import Any, Dict, List, Optional, Tuple

from ..platforms.types import UpdateType
from ..utils.constants import ERROR_MAX_LENGTH, TEAMS_MAX_MESSAGE_LENGTH
from .common import format_duration, truncate_with_ellipsis

AdaptiveCard = Dict[str, Any]

_UPDATE_STYLE: Dict[UpdateType, Tuple[str, str]] = {
    UpdateType.PROGRESS: ("⏳", "default"),
    UpdateType.WARNING: ("⚠️", "warning"),
    UpdateType.SUCCESS: ("✅", "good"),
    UpdateType.ERROR: ("❌", "attention"),
}

_CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")


def create_adaptive_card(
    body: List[Dict[str, Any]], actions: Optional[List[Dict[str, Any]]] = None
) -> AdaptiveCard:
    card: AdaptiveCard = {
        "type": "AdaptiveCard",
        "$schema": "http://adaptivecards.io/schemas/adaptive-card.json",
        "version": "1.4",
        "body": body,
    }
    if actions:
        card["actions"] = actions
    return card


def format_acknowledgement() -> AdaptiveCard:
    return create_adaptive_card(
        [
            {
                "type": "TextBlock",
                "text": "⏳ Processing your request...",
                "weight": "bolder",
                "size": "medium",
            }
        ]
    )


def _split_code_blocks(text: str) -> List[Tuple[str, bool]]:
    """(content, is_code) parts; fences are stripped from code parts."""
    parts: List[Tuple[str, bool]] = []
    last = 0
    for match in _CODE_BLOCK_RE.finditer(text):
        if match.start() > last:
            parts.append((text[last : match.start()], False))
        code = re.sub(r"^```\w*\n?", "", match.group(0))
        code = re.sub(r"\n?```$", "", code)
        parts.append((code, True))
        last = match.end()
    if last < len(text):
        parts.append((text[last:], False))
    return parts


def _markdown_to_teams(markdown: str) -> str:
    # Adaptive Cards render bold, italic and links; headers become bold.
    return re.sub(r"^#{1,6}\s+(.+)$", r"**\1**", markdown, flags=re.MULTILINE)


def format_response(output: str, duration_ms: Optional[int] = None) -> AdaptiveCard:
    body: List[Dict[str, Any]] = []
    for content, is_code in _split_code_blocks(
        truncate_with_ellipsis(output, TEAMS_MAX_MESSAGE_LENGTH)
    ):
        if is_code:
            body.append(
                {
                    "type": "Container",
                    "style": "emphasis",
                    "items": [
                        {
                            "type": "TextBlock",
                            "text": content,
                            "fontType": "monospace",
                            "wrap": True,
                            "maxLines": 50,
                        }
                    ],
                }
            )
        elif content.strip():
            body.append(
                {"type": "TextBlock", "text": _markdown_to_teams(content), "wrap": True}
            )

    if duration_ms:
        body.append(
            {
                "type": "TextBlock",
                "text": f"⏱️ Completed in {format_duration(duration_ms)}",
                "size": "small",
                "isSubtle": True,
            }
        )
    return create_adaptive_card(body)


def format_error(error: str) -> AdaptiveCard:
    return create_adaptive_card(
        [
            {"type": "TextBlock", "text": "❌ Error", "weight": "bolder", "color": "attention"},
            {
                "type": "TextBlock",
                "text": truncate_with_ellipsis(error or "Unknown error", ERROR_MAX_LENGTH),
                "wrap": True,
            },
        ]
    )


def format_progress(
    message: str, update_type: UpdateType = UpdateType.PROGRESS
) -> AdaptiveCard:
    emoji, color = _UPDATE_STYLE.get(update_type, _UPDATE_STYLE[UpdateType.PROGRESS])
    return create_adaptive_card(
        [{"type": "TextBlock", "text": f"{emoji} {message}", "color": color, "wrap": True}]
    )
