"""Parse the agent CLI's ``--output-format stream-json`` events."""

import json
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

import structlog

from .types import StreamUpdate

logger = structlog.get_logger()

ToolCall = Dict[str, Any]


@dataclass
class FinalResult:
    output: str
    session_id: Optional[str]
    is_error: bool
    num_turns: int = 0
    cost: float = 0.0


def parse_stream_line(line: str) -> Optional[Dict[str, Any]]:
    """Decode one output line; blank and non-JSON lines give ``None``."""
    line = line.strip()
    if not line:
        return None
    try:
        event = json.loads(line)
    except json.JSONDecodeError:
        logger.debug("Ignoring non-JSON output line", line=line[:200])
        return None
    return event if isinstance(event, dict) else None


def _assistant_blocks(event: Dict[str, Any]) -> Tuple[List[str], List[ToolCall]]:
    """Split an assistant event's content into text pieces and tool calls."""
    texts: List[str] = []
    calls: List[ToolCall] = []
    for block in (event.get("message") or {}).get("content") or []:
        if isinstance(block, str):
            texts.append(block)
            continue
        if not isinstance(block, dict):
            continue
        kind = block.get("type")
        if kind == "text":
            texts.append(block.get("text", ""))
        elif kind == "tool_use":
            calls.append(
                {
                    "tool_name": block.get("name", ""),
                    "tool_id": block.get("id", ""),
                    "input": block.get("input") or {},
                }
            )
    return texts, calls


def _as_text(content: Any) -> str:
    if isinstance(content, list):
        return " ".join(
            part.get("text", "") if isinstance(part, dict) else str(part)
            for part in content
        )
    return str(content)


def _error_text(event: Dict[str, Any]) -> str:
    error = event.get("error")
    if isinstance(error, dict):
        return error.get("message") or str(event)
    return str(error) if error else str(event)


def to_stream_update(event: Dict[str, Any]) -> Optional[StreamUpdate]:
    """Map one stream-json event to a :class:`StreamUpdate`.

    Event kinds the bridge has no use for (``result`` included, which is
    read separately) give ``None``.
    """
    kind = event.get("type", "")

    if kind == "assistant":
        texts, calls = _assistant_blocks(event)
        return StreamUpdate(
            type=kind,
            content="\n".join(texts) or None,
            tool_calls=calls or None,
        )
    if kind == "user":
        content = (event.get("message") or {}).get("content", "")
        return StreamUpdate(type=kind, content=_as_text(content))
    if kind == "system":
        return StreamUpdate(
            type=kind,
            content=event.get("message", ""),
            metadata={
                "subtype": event.get("subtype", ""),
                "session_id": event.get("session_id"),
            },
        )
    if kind == "tool_result":
        return StreamUpdate(
            type=kind,
            content=_as_text(event.get("content", "")),
            metadata={
                "tool_use_id": event.get("tool_use_id", ""),
                "is_error": bool(event.get("is_error")),
            },
        )
    if kind == "error":
        return StreamUpdate(
            type=kind,
            content=_error_text(event),
            metadata={"subtype": event.get("subtype", "")},
        )

    if kind != "result":
        logger.debug("Ignoring stream event", event_type=kind)
    return None


def extract_final_result(events: List[Dict[str, Any]]) -> FinalResult:
    """Pick the ``result`` event, or rebuild an answer from assistant text.

    Without a ``result`` event, the first ``error`` event makes the result
    an error; otherwise all assistant text is joined in order.
    """
    result = next((e for e in events if e.get("type") == "result"), None)
    if result is not None:
        return FinalResult(
            output=result.get("result") or "",
            session_id=result.get("session_id") or None,
            is_error=bool(result.get("is_error")),
            num_turns=result.get("num_turns") or 0,
            cost=result.get("total_cost_usd", result.get("cost_usd")) or 0.0,
        )

    texts: List[str] = []
    session_id: Optional[str] = None
    for event in events:
        session_id = event.get("session_id") or session_id
        if event.get("type") == "error":
            return FinalResult(
                output=f"Error: {_error_text(event)}",
                session_id=session_id,
                is_error=True,
            )
        if event.get("type") == "assistant":
            texts.extend(_assistant_blocks(event)[0])

    return FinalResult(output="\n".join(texts), session_id=session_id, is_error=False)


def extract_tools(events: List[Dict[str, Any]]) -> List[ToolCall]:
    """Every tool call made in the collected assistant events, in order."""
    return [
        call
        for event in events
        if event.get("type") == "assistant"
        for call in _assistant_blocks(event)[1]
    ]
