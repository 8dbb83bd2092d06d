"""promptty.

Bridges Slack and Microsoft Teams conversations to a locally running
Claude Code agent. Chat messages become prompts, agent output comes back
as formatted replies, and the running agent can post progress updates or
cross-channel messages through a loopback callback server.

Features:
- Durable conversation sessions persisted in SQLite
- Per-channel response filters (mentions, keywords, regex, threads)
- Slack Socket Mode and Teams Bot Framework adapters
- Callback ingress and MCP bridge for mid-execution updates
- Environment and file based configuration with Pydantic validation
"""

__version__ = "0.3.0"
__license__ = "MIT"
