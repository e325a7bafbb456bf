"""Status port router.

Endpoints:
- GET /status: read-only status snapshot
- GET /health: liveness with fatal-state detection
- GET /metrics: Prometheus exposition
- POST /webhook/event: direct push of one event record
"""

from __future__ import annotations

import json
import logging
import secrets
from typing import TYPE_CHECKING

from fastapi import APIRouter, Request, Response, status
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from pydantic import ValidationError

from realtime_service.app.exception_handlers import problem_detail
from realtime_service.features.status.schemas import (
    HealthResponse,
    StatusSnapshot,
    WebhookAccepted,
)
from realtime_service.features.status.service import StatusReporter
from realtime_service.infra.external.backend_client import BackendEventRecord
from realtime_service.infra.metrics.prometheus import REGISTRY

if TYPE_CHECKING:
    from realtime_service.infra.realtime.service import RealtimeService

logger = logging.getLogger(__name__)
router = APIRouter(tags=["status"])


def _service(request: Request) -> RealtimeService:
    return request.app.state.realtime_service


def _reporter(request: Request) -> StatusReporter:
    return request.app.state.status_reporter


def _problem(status_code: int, detail: str, code: str, request: Request) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=problem_detail(status_code, detail, code, request.url.path),
        media_type="application/problem+json",
    )


@router.get(
    "/status",
    response_model=StatusSnapshot,
    summary="Service status snapshot",
    description="Connections, subscriptions, stored events, queue depths and poller state.",
)
async def get_status(request: Request) -> StatusSnapshot | JSONResponse:
    try:
        return await _reporter(request).snapshot()
    except TimeoutError:
        logger.warning("Status snapshot timed out")
        return _problem(503, "Status snapshot timed out", "status_timeout", request)


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
    responses={503: {"model": HealthResponse, "description": "Service is in the fatal state"}},
)
async def get_health(request: Request, response: Response) -> HealthResponse:
    health = _reporter(request).health()
    if health.status != "healthy":
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    return health


@router.get("/metrics", summary="Prometheus metrics", include_in_schema=False)
async def get_metrics() -> Response:
    return Response(content=generate_latest(REGISTRY), media_type=CONTENT_TYPE_LATEST)


@router.post(
    "/webhook/event",
    response_model=WebhookAccepted,
    summary="Push one event",
    description="Ingest an event record immediately instead of waiting for the next poll.",
)
async def push_event(request: Request) -> WebhookAccepted | JSONResponse:
    service = _service(request)
    settings = service.settings
    max_body = request.app.state.app_settings.webhook_max_body

    if settings.webhook_require_key:
        provided = request.headers.get("x-service-key", "")
        if not secrets.compare_digest(provided, settings.service_key.get_secret_value()):
            return _problem(401, "Invalid service key", "unauthorized", request)

    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > max_body:
        return _problem(413, f"Payload exceeds {max_body} bytes", "payload_too_large", request)

    body = bytearray()
    async for chunk in request.stream():
        body.extend(chunk)
        if len(body) > max_body:
            return _problem(413, f"Payload exceeds {max_body} bytes", "payload_too_large", request)

    try:
        data = json.loads(body)
    except ValueError:
        return _problem(422, "Body is not valid JSON", "invalid_json", request)

    try:
        record = BackendEventRecord.model_validate(data)
    except ValidationError as e:
        return _problem(
            422,
            f"Event record is invalid: {e.error_count()} error(s)",
            "invalid_event",
            request,
        )

    # UnsupportedTopic is mapped to 422 by the exception handler
    event = await service.ingest_record(record, source="webhook")
    logger.info(
        "Direct push event accepted",
        extra={"topic": event.topic.value, "sequence_id": event.sequence_id},
    )
    return WebhookAccepted(
        topic=event.topic.value,
        sequence_id=event.sequence_id,
        created_at=event.created_at,
    )
