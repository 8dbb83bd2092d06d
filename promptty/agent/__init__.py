"""Agent execution: the Claude Code CLI subprocess and its stream output."""

from .executor import ClaudeExecutor
from .types import ExecuteOptions, ExecuteResult, MessageContext, StreamUpdate

__all__ = [
    "ClaudeExecutor",
    "ExecuteOptions",
    "ExecuteResult",
    "MessageContext",
    "StreamUpdate",
]
