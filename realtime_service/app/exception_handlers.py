"""Exception handlers for the HTTP apps."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse

from realtime_service.core.exceptions import (
    FatalServiceError,
    LimitExceeded,
    PollFailure,
    RealtimeError,
    UnsupportedTopic,
)

logger = logging.getLogger(__name__)

_TITLES = {
    400: "Bad Request",
    413: "Payload Too Large",
    422: "Unprocessable Entity",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}


def status_for(exc: RealtimeError) -> int:
    """HTTP status code for a realtime exception."""
    if isinstance(exc, UnsupportedTopic):
        return status.HTTP_422_UNPROCESSABLE_ENTITY
    if isinstance(exc, LimitExceeded):
        return status.HTTP_429_TOO_MANY_REQUESTS
    if isinstance(exc, PollFailure):
        return status.HTTP_502_BAD_GATEWAY
    if isinstance(exc, FatalServiceError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def problem_detail(
    status_code: int,
    detail: str,
    code: str,
    instance: str | None = None,
    extra: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build an RFC 7807 Problem Details body."""
    body: dict[str, Any] = {
        "type": code,
        "title": _TITLES.get(status_code, "Error"),
        "status": status_code,
        "detail": detail,
        "code": code,
    }
    if instance:
        body["instance"] = instance
    if extra:
        body.update({k: v for k, v in extra.items() if k not in body})
    return body


async def realtime_exception_handler(request: Request, exc: RealtimeError) -> JSONResponse:
    """Convert RealtimeError into a Problem Details response."""
    status_code = status_for(exc)
    log = logger.error if status_code >= 500 else logger.warning
    log(
        "Realtime exception occurred",
        extra={
            "path": request.url.path,
            "method": request.method,
            "code": exc.code,
            "status_code": status_code,
            "detail": exc.detail,
        },
    )
    return JSONResponse(
        status_code=status_code,
        content=problem_detail(status_code, exc.detail, exc.code, request.url.path, exc.extra),
        media_type="application/problem+json",
    )


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Last-resort handler so unexpected errors still produce JSON."""
    logger.exception(
        "Unhandled exception",
        extra={"path": request.url.path, "method": request.method},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=problem_detail(500, "An unexpected error occurred", "internal_error", request.url.path),
        media_type="application/problem+json",
    )


def configure_exception_handlers(app: FastAPI) -> None:
    """Register exception handlers on an app."""
    app.add_exception_handler(RealtimeError, realtime_exception_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
