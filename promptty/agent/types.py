"""Executor request, result and streaming types."""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..platforms.types import Platform


@dataclass
class StreamUpdate:
    """One event from the agent's ``stream-json`` output."""

    type: str  # 'assistant', 'user', 'system', 'tool_result', 'error'
    content: Optional[str] = None
    tool_calls: Optional[List[Dict[str, Any]]] = None
    metadata: Optional[Dict[str, Any]] = None


UpdateSink = Callable[[StreamUpdate], Union[None, Awaitable[None]]]


@dataclass
class MessageContext:
    """Where a prompt came from; rendered into the agent's system prompt."""

    platform: Platform
    channel_id: str
    workspace_id: str
    user_id: str
    thread_id: Optional[str] = None
    is_dm: bool = False
    is_thread: bool = False
    channel_name: Optional[str] = None
    workspace_name: Optional[str] = None
    user_name: Optional[str] = None


@dataclass
class ExecuteOptions:
    """How to run one agent invocation."""

    working_directory: Path
    command: str = "claude"
    session_id: Optional[str] = None  # agent conversation to resume
    callback_session_id: Optional[str] = None  # our session id, for callbacks
    system_prompt: Optional[str] = None
    allowed_tools: Optional[List[str]] = None
    skip_permissions: bool = False
    timeout_seconds: Optional[float] = None
    message_context: Optional[MessageContext] = None
    on_update: Optional[UpdateSink] = None


@dataclass
class ExecuteResult:
    """Final outcome of an agent invocation."""

    success: bool
    output: str
    duration_ms: int
    external_session_id: Optional[str] = None
    error: Optional[str] = None
    num_turns: int = 0
    cost: float = 0.0
    tools_used: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def timed_out(self) -> bool:
        return self.error == "Timeout"
