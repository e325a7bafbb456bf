"""Serve both HTTP apps from one process and one event loop."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

import uvicorn

from realtime_service.app.main import create_status_app, create_websocket_app
from realtime_service.infra.realtime.service import RealtimeService

if TYPE_CHECKING:
    from realtime_service.core.settings import AppSettings, LoggingSettings, RealtimeSettings

logger = logging.getLogger(__name__)


class LinkedServer(uvicorn.Server):
    """uvicorn server that stops its siblings and runs a hook before shutdown.

    Only one server receives the signal, since the last installed handler
    wins, so exit requests are forwarded to every sibling.
    """

    def __init__(
        self,
        config: uvicorn.Config,
        before_shutdown: Callable[[], Awaitable[Any]] | None = None,
    ) -> None:
        super().__init__(config)
        self.siblings: list[uvicorn.Server] = []
        self._before_shutdown = before_shutdown

    def handle_exit(self, sig: int, frame: Any) -> None:
        super().handle_exit(sig, frame)
        for server in self.siblings:
            if server is not self:
                server.should_exit = True

    async def shutdown(self, sockets: list | None = None) -> None:
        if self._before_shutdown is not None:
            # Close client sockets with 1001 before uvicorn drops them
            await self._before_shutdown()
        await super().shutdown(sockets=sockets)


def build_servers(
    realtime_settings: RealtimeSettings,
    app_settings: AppSettings,
    logging_settings: LoggingSettings,
) -> tuple[RealtimeService, list[LinkedServer]]:
    """Create the shared service and one uvicorn server per port."""
    service = RealtimeService(realtime_settings)

    ws_app = create_websocket_app(
        service,
        app_settings=app_settings,
        logging_settings=logging_settings,
        manage_service=True,
    )
    status_app = create_status_app(
        service,
        app_settings=app_settings,
        logging_settings=logging_settings,
        manage_service=False,
    )

    common: dict[str, Any] = {
        "host": realtime_settings.host,
        "log_config": None,  # logging is configured by setup_logging()
        "access_log": logging_settings.include_uvicorn,
        "timeout_graceful_shutdown": app_settings.shutdown_timeout,
        "ws_max_size": max(realtime_settings.max_message_size * 4, 16 * 1024),
    }
    ws_server = LinkedServer(
        uvicorn.Config(ws_app, port=realtime_settings.websocket_port, **common),
        before_shutdown=service.manager.stop,
    )
    status_server = LinkedServer(
        uvicorn.Config(status_app, port=realtime_settings.status_port, **common),
    )

    servers = [ws_server, status_server]
    for server in servers:
        server.siblings = servers
    return service, servers


async def serve(
    realtime_settings: RealtimeSettings,
    app_settings: AppSettings,
    logging_settings: LoggingSettings,
) -> None:
    """Run the WebSocket and status servers until a shutdown signal arrives."""
    _, servers = build_servers(realtime_settings, app_settings, logging_settings)
    logger.info(
        "Starting realtime servers",
        extra={
            "host": realtime_settings.host,
            "websocket_port": realtime_settings.websocket_port,
            "websocket_path": realtime_settings.websocket_path,
            "status_port": realtime_settings.status_port,
        },
    )
    await asyncio.gather(*(server.serve() for server in servers))
