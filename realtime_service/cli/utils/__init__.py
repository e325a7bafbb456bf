"""CLI utilities for running async operations and formatting output."""

from realtime_service.cli.utils.async_runner import coro
from realtime_service.cli.utils.formatters import (
    error,
    info,
    key_values,
    section,
    success,
    warning,
)

__all__ = [
    "coro",
    "error",
    "info",
    "key_values",
    "success",
    "warning",
    "section",
]
