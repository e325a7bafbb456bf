"""Pytest configuration and shared fixtures.

Fixtures are organized by category to make them easy to discover and extend.

Organization:
    - Clock Fixtures: manually advanced monotonic clock for TTL tests
    - Settings Fixtures: RealtimeSettings tuned for deterministic tests
    - WebSocket Fixtures: AsyncMock sockets that record every frame sent
    - Service Fixtures: RealtimeService wired to an httpx.MockTransport backend
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from typing import Any
from unittest.mock import AsyncMock

import httpx
import pytest
from starlette.websockets import WebSocketState

from realtime_service.core.settings import RealtimeSettings, clear_all_caches
from realtime_service.infra.realtime.service import RealtimeService

# ============================================================================
# Clock Fixtures
# ============================================================================


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    """Every test starts from freshly loaded settings."""
    clear_all_caches()
    yield
    clear_all_caches()


@pytest.fixture
def make_settings() -> Callable[..., RealtimeSettings]:
    """Factory for RealtimeSettings with background timers effectively off.

    The flush interval and threshold are pushed out of reach so tests decide
    when queues are flushed; heartbeats and polling are disabled.

    Example:
        def test_capacity(make_settings):
            settings = make_settings(max_events=2)
    """

    def _make(**overrides: Any) -> RealtimeSettings:
        values: dict[str, Any] = {
            "heartbeat_interval": 0,
            "flush_interval": 60_000,
            "flush_threshold": 100_000,
            "backend_poll_enabled": False,
            "backend_endpoint": "http://backend.test/api/realtime/events",
        }
        values.update(overrides)
        return RealtimeSettings(**values)

    return _make


@pytest.fixture
def settings(make_settings) -> RealtimeSettings:
    return make_settings()


# ============================================================================
# WebSocket Fixtures
# ============================================================================


@pytest.fixture
def make_websocket() -> Callable[[], AsyncMock]:
    """Factory for accepted WebSocket doubles.

    ``send_json`` and ``close`` are AsyncMocks, so sent frames can be read
    back from ``send_json.call_args_list``.
    """

    def _make() -> AsyncMock:
        ws = AsyncMock()
        ws.application_state = WebSocketState.CONNECTED
        ws.client_state = WebSocketState.CONNECTED
        return ws

    return _make


@pytest.fixture
def sent_frames() -> Callable[..., list[dict[str, Any]]]:
    """Return the frames sent to a WebSocket double, optionally by type."""

    def _frames(ws: AsyncMock, frame_type: str | None = None) -> list[dict[str, Any]]:
        frames = [call.args[0] for call in ws.send_json.call_args_list]
        if frame_type is not None:
            frames = [f for f in frames if f.get("type") == frame_type]
        return frames

    return _frames


# ============================================================================
# Service Fixtures
# ============================================================================


@pytest.fixture
def backend_records() -> list[dict[str, Any]]:
    """Mutable list served by the mock backend; tests append to it."""
    return []


@pytest.fixture
def backend_transport(backend_records) -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json=backend_records)

    return httpx.MockTransport(handler)


@pytest.fixture
async def service(
    settings: RealtimeSettings,
    clock: FakeClock,
    backend_transport: httpx.MockTransport,
) -> AsyncGenerator[RealtimeService]:
    """RealtimeService with a fake clock and a mocked backend.

    The service is not started; its connection manager is, so connections
    can be registered. Everything is stopped after the test.
    """
    svc = RealtimeService(settings, clock=clock, backend_transport=backend_transport)
    await svc.manager.start()
    yield svc
    await svc.stop()
