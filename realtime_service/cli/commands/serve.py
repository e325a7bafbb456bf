"""Server command: run the WebSocket and status servers."""

from __future__ import annotations

import asyncio
import sys
from typing import Any

import click

from realtime_service.cli.utils import error, info, warning
from realtime_service.core.settings import (
    get_app_settings,
    get_logging_settings,
    get_realtime_settings,
)
from realtime_service.infra.logging import setup_logging


@click.command(name="serve")
@click.option("--host", default=None, help="Bind address (default: REALTIME_HOST or 0.0.0.0)")
@click.option("--ws-port", default=None, type=int, help="WebSocket port (default: 3446)")
@click.option("--status-port", default=None, type=int, help="Status port (default: 3447)")
@click.option(
    "--poll/--no-poll",
    default=None,
    help="Enable or disable backend polling (default: from settings)",
)
@click.option(
    "--log-level",
    default=None,
    type=click.Choice(["critical", "error", "warning", "info", "debug"], case_sensitive=False),
    help="Log level (default: LOG_LEVEL or INFO)",
)
def serve(
    host: str | None,
    ws_port: int | None,
    status_port: int | None,
    poll: bool | None,
    log_level: str | None,
) -> None:
    """Run the realtime WebSocket server and the status server."""
    from realtime_service.app.server import serve as run_servers

    realtime_settings = get_realtime_settings()
    app_settings = get_app_settings()
    logging_settings = get_logging_settings()

    overrides: dict[str, Any] = {}
    if host is not None:
        overrides["host"] = host
    if ws_port is not None:
        overrides["websocket_port"] = ws_port
    if status_port is not None:
        overrides["status_port"] = status_port
    if poll is not None:
        overrides["backend_poll_enabled"] = poll
    if overrides:
        realtime_settings = realtime_settings.model_copy(update=overrides)
    if log_level is not None:
        logging_settings = logging_settings.model_copy(update={"level": log_level.upper()})

    if realtime_settings.websocket_port == realtime_settings.status_port:
        error("WebSocket and status ports must differ")
        sys.exit(2)

    setup_logging(logging_settings, force=True)

    info(
        f"WebSocket: ws://{realtime_settings.host}:{realtime_settings.websocket_port}"
        f"{realtime_settings.websocket_path}"
    )
    info(f"Status:    http://{realtime_settings.host}:{realtime_settings.status_port}/status")
    info(f"Topics:    {', '.join(sorted(t.value for t in realtime_settings.enabled_topics))}")
    if not realtime_settings.backend_poll_enabled:
        warning("Backend polling disabled; events arrive through the webhook only")

    try:
        asyncio.run(run_servers(realtime_settings, app_settings, logging_settings))
    except KeyboardInterrupt:
        info("Server stopped")
