"""Formatting helpers shared by the Slack and Teams formatters."""

from typing import List

MAX_LENGTH = 4000


def truncate_with_ellipsis(text: str, max_length: int = MAX_LENGTH) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."


def format_duration(ms: int) -> str:
    """Human duration: ``850ms``, ``1.5s``, ``2m 5s``."""
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60000:
        return f"{ms / 1000:.1f}s"
    minutes, remainder = divmod(ms, 60000)
    return f"{minutes}m {round(remainder / 1000)}s"


def split_message(text: str, max_length: int) -> List[str]:
    """Split long messages at paragraph, line or word boundaries."""
    if len(text) <= max_length:
        return [text]

    chunks: List[str] = []
    while text:
        if len(text) <= max_length:
            chunks.append(text)
            break

        split_pos = text.rfind("\n\n", 0, max_length)
        if split_pos <= 0:
            split_pos = text.rfind("\n", 0, max_length)
        if split_pos <= 0:
            split_pos = text.rfind(" ", 0, max_length)
        if split_pos <= 0:
            split_pos = max_length

        chunks.append(text[:split_pos])
        text = text[split_pos:].lstrip()

    return chunks
