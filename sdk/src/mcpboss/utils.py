"""Logging and utility helpers for the MCP Boss SDK and CLI."""

import json
import logging
import sys
from typing import Any


def setup_logging(debug: bool = False) -> logging.Logger:
    """Configure logging for the CLI.

    Args:
        debug: Enable debug-level logging

    Returns:
        Configured logger instance
    """
    level = logging.DEBUG if debug else logging.WARNING

    formatter = logging.Formatter(
        fmt="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    # stdout carries command output, so logs go to stderr
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    logger = logging.getLogger("mcpboss")
    logger.setLevel(level)
    if not logger.handlers:
        logger.addHandler(handler)

    return logger


def get_error_message(error: Any) -> str:
    """Convert an error object or API error body to a readable message.

    Args:
        error: Exception, string, or decoded JSON error body

    Returns:
        Human-readable message
    """
    if isinstance(error, str):
        return error

    if isinstance(error, BaseException):
        return str(error) or error.__class__.__name__

    if isinstance(error, dict):
        for key in ("message", "error", "detail"):
            value = error.get(key)
            if isinstance(value, str) and value:
                return value
        try:
            return json.dumps(error)
        except (TypeError, ValueError):
            return str(error)

    return str(error)
