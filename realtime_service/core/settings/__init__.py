"""Pydantic Settings v2 configuration, one frozen model per domain.

Import settings via cached loaders:
    from realtime_service.core.settings import get_realtime_settings

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides, CLI options)
    2. Environment variables
    3. .env file
"""

from __future__ import annotations

from .app import AppSettings
from .loader import (
    clear_all_caches,
    get_app_settings,
    get_logging_settings,
    get_realtime_settings,
)
from .logs import LoggingSettings
from .realtime import MonitoringSettings, RealtimeSettings, TopicSettings

__all__ = [
    "AppSettings",
    "LoggingSettings",
    "MonitoringSettings",
    "RealtimeSettings",
    "TopicSettings",
    "clear_all_caches",
    "get_app_settings",
    "get_logging_settings",
    "get_realtime_settings",
]
