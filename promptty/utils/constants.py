"""Application-wide constants."""

APP_NAME = "promptty"

# Storage
DEFAULT_DATA_DIR = "./data"
DEFAULT_CONFIG_PATH = "./config.json"
DATABASE_FILENAME = "promptty.db"
PIDFILE_NAME = "promptty.pid"

# Sessions
DEFAULT_SESSION_TTL_MS = 4 * 60 * 60 * 1000  # 4 hours
DEFAULT_SWEEP_INTERVAL_SECONDS = 60

# Agent
DEFAULT_AGENT_COMMAND = "claude"
DEFAULT_AGENT_TIMEOUT_SECONDS = 600
MCP_SERVER_NAME = "promptty"
MCP_TOOL_NAMES = [
    "mcp__promptty__post_update",
    "mcp__promptty__send_message",
    "mcp__promptty__list_channels",
]
DEFAULT_ALLOWED_TOOLS = [
    "Bash",
    "Read",
    "Write",
    "Edit",
    "Glob",
    "Grep",
    "WebSearch",
    "WebFetch",
    *MCP_TOOL_NAMES,
]

# Callback ingress
DEFAULT_CALLBACK_HOST = "127.0.0.1"
DEFAULT_CALLBACK_PORT = 3001
SESSION_ENV_VAR = "PROMPTTY_SESSION_ID"
CALLBACK_URL_ENV_VAR = "PROMPTTY_CALLBACK_URL"

# Teams
DEFAULT_TEAMS_PORT = 3978

# Message limits
SLACK_MAX_MESSAGE_LENGTH = 3900  # Slack limit is 4000, leave some buffer
TEAMS_MAX_MESSAGE_LENGTH = 28000
ERROR_MAX_LENGTH = 500
