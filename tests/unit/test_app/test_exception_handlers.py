"""Tests for HTTP exception mapping."""

from __future__ import annotations

from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
import pytest

from realtime_service.app.exception_handlers import (
    configure_exception_handlers,
    problem_detail,
    status_for,
)
from realtime_service.core.exceptions import (
    ConnectionLimitExceeded,
    FatalServiceError,
    InvalidMessage,
    PollFailure,
    TopicDisabled,
    UnsupportedTopic,
)
from realtime_service.core.topics import Topic


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (UnsupportedTopic("weather"), 422),
        (TopicDisabled(Topic.SYSTEM_STATUS), 422),
        (ConnectionLimitExceeded("10.0.0.1", 1), 429),
        (PollFailure("timeout"), 502),
        (FatalServiceError("oom"), 503),
        (InvalidMessage("bad"), 500),
    ],
)
def test_status_for(exc, expected):
    assert status_for(exc) == expected


def test_problem_detail_shape():
    body = problem_detail(422, "Unsupported topic: weather", "unsupported_topic", "/webhook/event", {"topic": "weather"})

    assert body == {
        "type": "unsupported_topic",
        "title": "Unprocessable Entity",
        "status": 422,
        "detail": "Unsupported topic: weather",
        "code": "unsupported_topic",
        "instance": "/webhook/event",
        "topic": "weather",
    }


@pytest.fixture
async def client():
    app = FastAPI()
    configure_exception_handlers(app)

    @app.get("/limit")
    async def limit():
        raise ConnectionLimitExceeded("10.0.0.1", 25)

    @app.get("/boom")
    async def boom():
        raise RuntimeError("unexpected")

    async with AsyncClient(
        transport=ASGITransport(app=app, raise_app_exceptions=False), base_url="http://test"
    ) as http:
        yield http


async def test_realtime_error_response(client):
    response = await client.get("/limit")

    assert response.status_code == 429
    assert response.headers["content-type"] == "application/problem+json"
    assert response.json()["code"] == "connection_limit"
    assert response.json()["limit"] == 25


async def test_unexpected_error_response(client):
    response = await client.get("/boom")

    assert response.status_code == 500
    assert response.json()["code"] == "internal_error"
