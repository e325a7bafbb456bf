"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the
process. Only composition roots (app factories, CLI commands) call these;
components receive the settings objects through their constructors.

Usage:
    from realtime_service.core.settings.loader import get_realtime_settings

    settings = get_realtime_settings()  # First call: loads and validates
    settings = get_realtime_settings()  # Subsequent calls: cached instance

Testing:
    get_realtime_settings.cache_clear()

    Or build one directly:
    settings = RealtimeSettings(max_events=2)
"""

from __future__ import annotations

from functools import lru_cache

from .app import AppSettings
from .logs import LoggingSettings
from .realtime import RealtimeSettings


@lru_cache(maxsize=1)
def get_app_settings() -> AppSettings:
    """Get cached application settings.

    Returns:
        Validated and frozen AppSettings instance.
    """
    return AppSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


@lru_cache(maxsize=1)
def get_realtime_settings() -> RealtimeSettings:
    """Get cached realtime settings.

    Returns:
        Validated and frozen RealtimeSettings instance.
    """
    return RealtimeSettings()


def clear_all_caches() -> None:
    """Clear all settings caches.

    Useful for testing or when you need to force reload settings.
    """
    get_app_settings.cache_clear()
    get_logging_settings.cache_clear()
    get_realtime_settings.cache_clear()
