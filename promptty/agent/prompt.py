"""System prompt section telling the agent where a message came from."""

from typing import List

from ..platforms.types import Platform
from .types import MessageContext

_SLACK_FORMATTING = [
    "Format your responses using Slack mrkdwn syntax:",
    "- Bold: `*bold*`",
    "- Italic: `_italic_`",
    "- Strikethrough: `~strike~`",
    "- Code: `` `code` `` or ` ```code block``` `",
    "- Links: `<https://example.com|link text>`",
    "- Lists: Start lines with `•` or `1.`",
    "- Blockquote: Start lines with `>`",
    "- Emoji: `:emoji_name:` (e.g., `:white_check_mark:`, `:warning:`, `:rocket:`)",
]

_TEAMS_FORMATTING = [
    "Format your responses using Teams markdown:",
    "- Bold: `**bold**`",
    "- Italic: `_italic_`",
    "- Code: `` `code` `` or ` ```code block``` `",
    "- Links: `[link text](https://example.com)`",
    "- Lists: Start lines with `-` or `1.`",
    "- Blockquote: Start lines with `>`",
]

_TOOLS_HELP = [
    "### Promptty MCP Tools",
    "",
    "You have access to these MCP tools for communicating back to chat:",
    "",
    "**`mcp__promptty__post_update`** - Send progress updates to the current conversation",
    "- Use for long-running tasks to keep users informed",
    "- Parameters: `message` (string), `type` (progress|warning|success|error)",
    '- Example: `{"message": "Running tests...", "type": "progress"}`',
    "",
    "**`mcp__promptty__list_channels`** - Discover available channels",
    "- Call this first if you need to send a message to another channel",
    "- Returns channel IDs, names, and platform info",
    "",
    "**`mcp__promptty__send_message`** - Send a message to a specific channel",
    "- Parameters: `platform` (slack|teams), `channel_id`, `message`",
    "- Optional: `thread_ts` (for threading), `workspace_id`",
    "- Use `mcp__promptty__list_channels` first to find the correct channel_id",
]


def build_context_prompt(ctx: MessageContext) -> str:
    platform_name = "Slack" if ctx.platform is Platform.SLACK else "Microsoft Teams"
    lines: List[str] = [
        "## Conversation Context",
        "",
        f"You are responding to a message from {platform_name}.",
        "",
    ]

    if ctx.is_dm:
        lines.append("- **Type**: Direct message")
    else:
        channel = f"#{ctx.channel_name}" if ctx.channel_name else ctx.channel_id
        lines.append(f"- **Channel**: {channel}")
        if ctx.is_thread:
            lines.append(f"- **Thread**: Yes (responding in thread {ctx.thread_id})")

    lines.append(f"- **Workspace**: {ctx.workspace_name or ctx.workspace_id}")
    user = f"{ctx.user_name} ({ctx.user_id})" if ctx.user_name else ctx.user_id
    lines.append(f"- **From**: {user}")

    lines += ["", "### Message Formatting"]
    lines += _SLACK_FORMATTING if ctx.platform is Platform.SLACK else _TEAMS_FORMATTING
    lines += [""] + _TOOLS_HELP + [""]

    lines.append("Current conversation IDs (for reference):")
    lines.append(f"- Platform: `{ctx.platform.value}`")
    lines.append(f"- Channel ID: `{ctx.channel_id}`")
    lines.append(f"- Workspace ID: `{ctx.workspace_id}`")
    if ctx.thread_id:
        lines.append(f"- Thread ID: `{ctx.thread_id}`")
    lines.append("")
    return "\n".join(lines)
