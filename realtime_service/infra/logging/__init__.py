"""Logging infrastructure.

Structured logging with:
- JSONL format
- Automatic context injection (connection_id, client_ip, ...)
- QueueHandler + QueueListener for non-blocking I/O

Basic usage:
    from realtime_service.infra.logging import set_log_context
    import logging

    logger = logging.getLogger(__name__)

    set_log_context(connection_id="abc-123", client_ip="10.0.0.1")
    logger.info("Subscribed")  # Includes connection_id and client_ip
"""

from realtime_service.infra.logging.config import (
    complete,
    configure_logging,
    setup_logging,
    shutdown,
)
from realtime_service.infra.logging.context import (
    ContextBoundLogger,
    ContextInjectingFilter,
    clear_log_context,
    get_log_context,
    get_logger,
    set_log_context,
)
from realtime_service.infra.logging.formatters import JSONFormatter

__all__ = [
    "ContextBoundLogger",
    "ContextInjectingFilter",
    "JSONFormatter",
    "clear_log_context",
    "complete",
    "configure_logging",
    "get_log_context",
    "get_logger",
    "set_log_context",
    "setup_logging",
    "shutdown",
]
