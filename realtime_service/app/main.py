"""FastAPI application factories.

Two apps share one RealtimeService:
- the WebSocket app on ``websocket_port``
- the status app on ``status_port`` (status, health, metrics, direct push)
"""

from __future__ import annotations

from fastapi import FastAPI

from realtime_service.app.exception_handlers import configure_exception_handlers
from realtime_service.app.lifespan import lifespan
from realtime_service.core.settings import (
    AppSettings,
    LoggingSettings,
    RealtimeSettings,
    get_app_settings,
    get_logging_settings,
    get_realtime_settings,
)
from realtime_service.features.realtime.router import build_router
from realtime_service.features.status.router import router as status_router
from realtime_service.features.status.service import StatusReporter
from realtime_service.infra.realtime.service import RealtimeService


def _bind_state(
    app: FastAPI,
    service: RealtimeService,
    app_settings: AppSettings,
    logging_settings: LoggingSettings,
    manage_service: bool,
) -> None:
    app.state.realtime_service = service
    app.state.app_settings = app_settings
    app.state.logging_settings = logging_settings
    app.state.manage_service = manage_service
    app.state.status_reporter = StatusReporter(service, app_settings)


def create_websocket_app(
    service: RealtimeService | None = None,
    *,
    app_settings: AppSettings | None = None,
    realtime_settings: RealtimeSettings | None = None,
    logging_settings: LoggingSettings | None = None,
    manage_service: bool = True,
) -> FastAPI:
    """Create the WebSocket app.

    Args:
        service: Shared service; built from settings when omitted.
        app_settings: Identity settings (cached loader when omitted).
        realtime_settings: Realtime settings (cached loader when omitted).
        logging_settings: Logging settings (cached loader when omitted).
        manage_service: Start/stop the service from this app's lifespan.

    Returns:
        Configured FastAPI application instance.
    """
    app_settings = app_settings or get_app_settings()
    logging_settings = logging_settings or get_logging_settings()
    if service is None:
        service = RealtimeService(realtime_settings or get_realtime_settings())

    app = FastAPI(
        title=f"{app_settings.title} (WebSocket)",
        version=app_settings.version,
        debug=app_settings.debug,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
        lifespan=lifespan,
    )
    _bind_state(app, service, app_settings, logging_settings, manage_service)
    configure_exception_handlers(app)
    app.include_router(build_router(service.settings.websocket_path))
    return app


def create_status_app(
    service: RealtimeService | None = None,
    *,
    app_settings: AppSettings | None = None,
    realtime_settings: RealtimeSettings | None = None,
    logging_settings: LoggingSettings | None = None,
    manage_service: bool = True,
) -> FastAPI:
    """Create the status app (status, health, metrics, direct push).

    Returns:
        Configured FastAPI application instance.
    """
    app_settings = app_settings or get_app_settings()
    logging_settings = logging_settings or get_logging_settings()
    if service is None:
        service = RealtimeService(realtime_settings or get_realtime_settings())

    app = FastAPI(
        title=f"{app_settings.title} (Status)",
        version=app_settings.version,
        debug=app_settings.debug,
        docs_url=app_settings.docs_url,
        redoc_url=None,
        openapi_url=app_settings.openapi_url,
        lifespan=lifespan,
    )
    _bind_state(app, service, app_settings, logging_settings, manage_service)
    configure_exception_handlers(app)
    app.include_router(status_router)
    return app
