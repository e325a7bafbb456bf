"""Context management for structured logging.

Connection handlers call ``set_log_context(connection_id=..., client_ip=...)``
once; every record logged afterwards from the same task carries those fields.
Tasks spawned from that coroutine (such as the per-connection flush task)
inherit a copy of the context.
"""

from __future__ import annotations

import logging
from contextvars import ContextVar
from typing import Any

# Each async task gets its own copy automatically
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


def set_log_context(**kwargs: Any) -> None:
    """Set logging context for the current async task.

    Args:
        **kwargs: Key-value pairs to add to logging context.
            Common examples: connection_id, client_ip, identity

    Example:
        ```python
        set_log_context(connection_id=conn.id, client_ip=conn.ip)
        logger.info("Subscribed")  # Includes connection_id and client_ip
        ```
    """
    current = _log_context.get().copy()
    current.update(kwargs)
    _log_context.set(current)


def get_log_context() -> dict[str, Any]:
    """Get a copy of the current logging context."""
    return _log_context.get().copy()


def clear_log_context() -> None:
    """Clear all logging context for the current async task."""
    _log_context.set({})


class ContextInjectingFilter(logging.Filter):
    """Logging filter that injects the contextvar log context into LogRecords.

    Attached to the root QueueHandler so every propagated record passes
    through it before leaving the logging thread of the caller.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        for key, value in _log_context.get().items():
            # Don't overwrite existing attributes
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


class ContextBoundLogger(logging.LoggerAdapter):
    """Logger adapter with permanently bound context.

    Example:
        ```python
        log = ContextBoundLogger(logger, component="poller")
        log.info("Poll complete", extra={"events": 3})
        ```
    """

    def __init__(self, logger: logging.Logger, **context: Any) -> None:
        super().__init__(logger, context)

    def bind(self, **context: Any) -> ContextBoundLogger:
        """Create new logger with additional bound context."""
        return ContextBoundLogger(self.logger, **{**self.extra, **context})

    def process(self, msg: str, kwargs: dict[str, Any]) -> tuple[str, dict[str, Any]]:
        extra = kwargs.get("extra", {})
        kwargs["extra"] = {**self.extra, **extra}
        return msg, kwargs


def get_logger(name: str, **context: Any) -> ContextBoundLogger:
    """Get logger with bound context."""
    return ContextBoundLogger(logging.getLogger(name), **context)
