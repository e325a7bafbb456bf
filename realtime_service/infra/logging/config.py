"""Logging configuration setup.

Provides logging configuration using:
- dictConfig for formatters, filters and the root level
- QueueHandler + QueueListener so socket coroutines never block on log I/O
- ContextInjectingFilter for automatic context propagation
- JSONL format for machine parsing
"""

from __future__ import annotations

import atexit
import logging
import logging.config
import time
from logging.handlers import QueueHandler, QueueListener, RotatingFileHandler
from pathlib import Path
from queue import Queue
from typing import TYPE_CHECKING, Any

# Global queue and listener for async logging
_log_queue: Queue[logging.LogRecord] | None = None
_listener: QueueListener | None = None
_queue_handler: QueueHandler | None = None
logger = logging.getLogger(__name__)
_LOGGING_INITIALIZED = False

SERVICE_NAME = "realtime-service"
TEXT_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

if TYPE_CHECKING:
    from realtime_service.core.settings.logs import LoggingSettings


def complete(max_wait: float = 5.0) -> None:
    """Wait for all queued log records to be processed.

    Blocks until the QueueListener has drained the queue or ``max_wait``
    seconds pass. Called from shutdown() and on process exit.
    """
    if _log_queue is None or _listener is None:
        return

    start = time.monotonic()
    while not _log_queue.empty() and (time.monotonic() - start) < max_wait:
        time.sleep(0.01)


def shutdown() -> None:
    """Flush pending records and stop the QueueListener."""
    global _log_queue, _listener, _queue_handler

    if _listener is not None:
        complete()
        _listener.stop()
        _listener = None

    if _queue_handler is not None:
        logging.getLogger().removeHandler(_queue_handler)
        _queue_handler = None

    _log_queue = None


def setup_logging(
    log_settings: LoggingSettings | None = None,
    *,
    force: bool = False,
    **configure_kwargs: Any,
) -> None:
    """Ensure logging is configured once across entrypoints.

    Args:
        log_settings: Optional logging settings instance. If omitted, settings
            are loaded via get_logging_settings().
        force: Reconfigure logging even if it was already initialized.
        **configure_kwargs: Explicit overrides for configure_logging().
    """
    global _LOGGING_INITIALIZED

    if _LOGGING_INITIALIZED and not force:
        return

    settings_obj = log_settings
    if settings_obj is None:
        from realtime_service.core.settings import get_logging_settings

        settings_obj = get_logging_settings()

    log_config = settings_obj.to_logging_kwargs()
    if configure_kwargs:
        log_config = {**log_config, **configure_kwargs}

    configure_logging(**log_config)
    _LOGGING_INITIALIZED = True


def configure_logging(
    log_level: str = "INFO",
    file_path: str | Path | None = None,
    json_logs: bool = True,
    console_enabled: bool = True,
    include_context: bool = True,
    capture_warnings: bool = True,
    file_max_bytes: int = 10 * 1024 * 1024,
    file_backup_count: int = 5,
    include_uvicorn: bool = False,
    **kwargs: Any,
) -> None:
    """Configure logging with dictConfig and the QueueHandler pattern.

    All handlers sit behind a QueueListener; the root logger only gets a
    single QueueHandler. Application loggers propagate up to it.

    Args:
        log_level: Root logger level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file_path: Path to log file. None disables file logging.
        json_logs: Enable JSONL structured logging.
        console_enabled: Enable console/stderr logging.
        include_context: Enable ContextInjectingFilter for auto context.
        capture_warnings: Forward Python warnings to logging system.
        file_max_bytes: Maximum log file size before rotation.
        file_backup_count: Number of rotated log files to keep.
        include_uvicorn: Keep uvicorn.access records (quiet by default).
        **kwargs: Ignored extra settings.

    Example:
        from realtime_service.core.settings import get_logging_settings
        configure_logging(**get_logging_settings().to_logging_kwargs())
    """
    if kwargs:
        logger.debug("Unused logging kwargs supplied: %s", ", ".join(sorted(kwargs.keys())))

    if capture_warnings:
        logging.captureWarnings(True)

    # Reconfiguring replaces the previous listener instead of stacking handlers
    shutdown()

    path = Path(file_path) if file_path else None
    if path:
        path.parent.mkdir(parents=True, exist_ok=True)

    logging_config: dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": _build_formatters_config(json_logs),
        "filters": _build_filters_config(include_context),
        "root": {
            "level": log_level.upper(),
            "handlers": [],  # QueueHandler added below
        },
        "loggers": {
            "uvicorn.access": {"level": "INFO" if include_uvicorn else "WARNING"},
            "apscheduler": {"level": "WARNING"},
            "httpx": {"level": "WARNING"},
        },
    }
    logging.config.dictConfig(logging_config)

    _setup_queue_logging(
        console_enabled=console_enabled,
        file_path=path,
        file_max_bytes=file_max_bytes,
        file_backup_count=file_backup_count,
        json_logs=json_logs,
        include_context=include_context,
    )


def _build_formatters_config(json_logs: bool) -> dict[str, Any]:
    """Build formatters configuration for dictConfig."""
    if json_logs:
        return {
            "json": {
                "()": "realtime_service.infra.logging.formatters.JSONFormatter",
                "static": {"service": SERVICE_NAME},
            },
        }
    return {"text": {"format": TEXT_FORMAT, "datefmt": DATE_FORMAT}}


def _build_filters_config(include_context: bool) -> dict[str, Any]:
    """Build filters configuration for dictConfig."""
    filters: dict[str, Any] = {}
    if include_context:
        filters["context"] = {
            "()": "realtime_service.infra.logging.context.ContextInjectingFilter",
        }
    return filters


def _make_formatter(json_logs: bool) -> logging.Formatter:
    from realtime_service.infra.logging.formatters import JSONFormatter

    if json_logs:
        return JSONFormatter(static={"service": SERVICE_NAME})
    return logging.Formatter(fmt=TEXT_FORMAT, datefmt=DATE_FORMAT)


def _setup_queue_logging(
    console_enabled: bool,
    file_path: Path | None,
    file_max_bytes: int,
    file_backup_count: int,
    json_logs: bool,
    include_context: bool,
) -> None:
    """Set up QueueHandler + QueueListener for non-blocking logging."""
    global _log_queue, _listener, _queue_handler

    from realtime_service.infra.logging.context import ContextInjectingFilter

    _log_queue = Queue()
    handlers: list[logging.Handler] = []

    if console_enabled:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(_make_formatter(json_logs))
        handlers.append(console_handler)

    if file_path:
        file_handler = RotatingFileHandler(
            file_path,
            maxBytes=file_max_bytes,
            backupCount=file_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(_make_formatter(json_logs))
        handlers.append(file_handler)

    if handlers:
        _listener = QueueListener(_log_queue, *handlers, respect_handler_level=True)
        _listener.start()
        atexit.register(shutdown)

    # Context has to be captured on the emitting task, before the record is queued
    _queue_handler = QueueHandler(_log_queue)
    if include_context:
        _queue_handler.addFilter(ContextInjectingFilter())
    logging.getLogger().addHandler(_queue_handler)
