"""Application lifespan management.

Both HTTP apps share one RealtimeService. Only the app created with
``manage_service=True`` starts and stops it; the other just serves it.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from realtime_service.infra.logging.config import setup_logging
from realtime_service.infra.metrics.prometheus import application_info

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Start the shared realtime service on startup and stop it on shutdown."""
    setup_logging(app.state.logging_settings)

    app_settings = app.state.app_settings
    service = app.state.realtime_service
    manage = app.state.manage_service

    application_info.labels(
        version=app_settings.version,
        service=app_settings.service_name,
        environment=app_settings.environment,
    ).set(1)

    if manage:
        await service.start()
    logger.info(
        "Application startup complete",
        extra={"app": app.title, "manages_service": manage},
    )

    try:
        yield
    finally:
        if manage:
            await service.stop()
        logger.info("Application shutdown complete", extra={"app": app.title})
