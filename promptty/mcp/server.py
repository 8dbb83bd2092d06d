"""stdio MCP server the agent uses to talk back to the chat.

The executor launches this module for every invocation with the bridge
session id and the ingress URL in its environment:

- PROMPTTY_SESSION_ID: session the updates belong to
- PROMPTTY_CALLBACK_URL: ingress base URL (default http://127.0.0.1:3001)
"""

import os
from typing import Any, Dict, Optional, Tuple

import aiohttp
from mcp.server.fastmcp import FastMCP

from ..utils.constants import (
    CALLBACK_URL_ENV_VAR,
    DEFAULT_CALLBACK_HOST,
    DEFAULT_CALLBACK_PORT,
    MCP_SERVER_NAME,
    SESSION_ENV_VAR,
)

DEFAULT_CALLBACK_URL = f"http://{DEFAULT_CALLBACK_HOST}:{DEFAULT_CALLBACK_PORT}"
REQUEST_TIMEOUT = aiohttp.ClientTimeout(total=30)
NO_SESSION_ERROR = "Error: No session ID available. Cannot reach the chat."

mcp = FastMCP(MCP_SERVER_NAME)


def _session_id() -> str:
    return os.environ.get(SESSION_ENV_VAR, "")


def _callback_url() -> str:
    return os.environ.get(CALLBACK_URL_ENV_VAR, DEFAULT_CALLBACK_URL).rstrip("/")


async def _request(
    method: str,
    path: str,
    json_body: Optional[Dict[str, Any]] = None,
    params: Optional[Dict[str, str]] = None,
) -> Tuple[int, Any]:
    async with aiohttp.ClientSession(timeout=REQUEST_TIMEOUT) as session:
        async with session.request(
            method, f"{_callback_url()}{path}", json=json_body, params=params
        ) as response:
            try:
                body = await response.json(content_type=None)
            except ValueError:
                body = {"error": await response.text()}
            if not isinstance(body, dict):
                body = {"error": f"Unexpected response: {body!r}"}
            return response.status, body


def _preview(message: str, limit: int = 50) -> str:
    return message if len(message) <= limit else message[:limit] + "..."


@mcp.tool()
async def post_update(message: str, type: str = "progress") -> str:
    """Send a progress update to the chat thread this task came from.

    Use this to keep the user informed during long-running tasks. Keep
    messages under 500 characters. Types: "progress" (default),
    "warning", "success", "error".
    """
    session_id = _session_id()
    if not session_id:
        return NO_SESSION_ERROR
    try:
        status, body = await _request(
            "POST",
            "/callback",
            {"session_id": session_id, "message": message, "type": type},
        )
    except aiohttp.ClientError as e:
        return f"Error sending update: {e}"
    if status == 200:
        return f"Update sent: {_preview(message)}"
    return f"Failed to send update: {body.get('error', body)}"


@mcp.tool()
async def send_message(
    platform: str,
    channel_id: str,
    message: str,
    thread_ts: Optional[str] = None,
    workspace_id: Optional[str] = None,
) -> str:
    """Send a message to another channel ("slack" or "teams").

    Call list_channels first to find channel ids. Pass thread_ts to reply
    inside an existing Slack thread.
    """
    session_id = _session_id()
    if not session_id:
        return NO_SESSION_ERROR
    payload: Dict[str, Any] = {
        "session_id": session_id,
        "platform": platform,
        "channel_id": channel_id,
        "message": message,
    }
    if thread_ts:
        payload["thread_ts"] = thread_ts
    if workspace_id:
        payload["workspace_id"] = workspace_id
    try:
        status, body = await _request("POST", "/message", payload)
    except aiohttp.ClientError as e:
        return f"Error sending message: {e}"
    if status != 200 or not body.get("success"):
        return f"Failed to send message: {body.get('error', 'unknown error')}"

    text = f"Message sent to {platform} channel {channel_id}"
    if body.get("messageId"):
        text += f" (message id {body['messageId']})"
    if body.get("threadTs"):
        text += f"; reply in its thread with thread_ts={body['threadTs']}"
    return text


@mcp.tool()
async def list_channels() -> str:
    """List the channels you can post to with send_message."""
    session_id = _session_id()
    if not session_id:
        return NO_SESSION_ERROR
    try:
        status, body = await _request("GET", "/channels", params={"session_id": session_id})
    except aiohttp.ClientError as e:
        return f"Error listing channels: {e}"
    if status != 200 or "error" in body:
        return f"Failed to list channels: {body.get('error', body)}"

    channels = body.get("channels", [])
    if not channels:
        return "No channels available."
    lines = [f"Available channels ({len(channels)}):"]
    for channel in channels:
        name = f"#{channel['name']}" if channel.get("name") else "(unnamed)"
        line = f"- {channel['platform']} {channel['channelId']} {name}"
        if channel.get("workspaceId"):
            line += f" workspace={channel['workspaceId']}"
        if channel.get("configured"):
            line += " [configured]"
        lines.append(line)
    return "\n".join(lines)


def run() -> None:
    """Console entry point: serve over stdio."""
    mcp.run()
