"""Custom exceptions for promptty."""


class PrompttyError(Exception):
    """Base exception for promptty."""


class ConfigurationError(PrompttyError):
    """Configuration-related errors."""


class MissingConfigError(ConfigurationError):
    """Required configuration is missing."""


class InvalidConfigError(ConfigurationError):
    """Configuration is invalid."""


class StorageError(PrompttyError):
    """Storage-related errors."""


class DatabaseConnectionError(StorageError):
    """Database connection failed."""


class DataIntegrityError(StorageError):
    """Data integrity check failed."""


class ExecutorError(PrompttyError):
    """Agent executor errors."""


class ExecutorTimeoutError(ExecutorError):
    """Agent invocation exceeded its time limit."""


class ExecutorProcessError(ExecutorError):
    """Agent process could not be started or crashed."""


class PlatformError(PrompttyError):
    """Chat platform errors."""


class SlackError(PlatformError):
    """Slack API-related errors."""


class TeamsError(PlatformError):
    """Bot Framework / Teams errors."""
