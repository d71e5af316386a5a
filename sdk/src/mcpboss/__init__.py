"""MCP Boss - client library and CLI for the MCP Boss platform."""

__version__ = "0.1.0"

from .client import McpBossClient, QueryOptions, QueryResult
from .config import ConfigLoader, McpBossConfig
from .deployment import DeploymentEvent, DeploymentState, parse_event, reduce
from .events import EventStreamClient
from .exceptions import ApiError, ConfigError, EventStreamError, McpBossError, QueryTimeoutError
from .monitor import CrashLogFetcher, DeploymentMonitor, Outcome, OutcomeReason, fetch_crash_logs, monitor_deployment

__all__ = [
    "ApiError",
    "ConfigError",
    "ConfigLoader",
    "CrashLogFetcher",
    "DeploymentEvent",
    "DeploymentMonitor",
    "DeploymentState",
    "EventStreamClient",
    "EventStreamError",
    "McpBossClient",
    "McpBossConfig",
    "McpBossError",
    "Outcome",
    "OutcomeReason",
    "QueryOptions",
    "QueryResult",
    "QueryTimeoutError",
    "fetch_crash_logs",
    "monitor_deployment",
    "parse_event",
    "reduce",
]
