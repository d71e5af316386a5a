"""Exception types raised by the MCP Boss SDK."""

from typing import Optional


class McpBossError(Exception):
    """Base class for all SDK errors."""


class ConfigError(McpBossError):
    """No usable configuration or credentials were found."""


class ApiError(McpBossError):
    """The API answered with a non-success status."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __str__(self) -> str:
        if self.status_code is None:
            return self.message
        return f"HTTP {self.status_code}: {self.message}"


class EventStreamError(McpBossError):
    """The deployment log stream could not be opened or was interrupted."""


class QueryTimeoutError(McpBossError):
    """An agent run did not finish within the requested time."""
