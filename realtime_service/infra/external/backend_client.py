"""HTTP client for the backend event endpoint.

Provides:
- Connection pooling through a shared httpx.AsyncClient
- Service-key and Accept headers on every request
- Validation of the response body into BackendEventRecord models
- Request/response logging
- Translation of every failure mode into PollFailure
"""

from __future__ import annotations

import logging
import time
from datetime import UTC, datetime
from typing import Any

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, TypeAdapter, ValidationError, field_validator

from realtime_service.core.exceptions import PollFailure

logger = logging.getLogger(__name__)


class BackendEventRecord(BaseModel):
    """One event record as produced by the backend.

    ``type`` names the topic. Unknown topics still validate here; the ingest
    path decides whether to accept them.
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    type: str = Field(
        min_length=1,
        max_length=100,
        validation_alias=AliasChoices("type", "topic", "dataType"),
    )
    data: Any
    timestamp: datetime
    device: str | None = None
    channel: str | None = None
    publisher_id: str | None = Field(
        default=None,
        validation_alias=AliasChoices("publisher_id", "publisherId"),
    )

    @field_validator("timestamp")
    @classmethod
    def ensure_aware(cls, v: datetime) -> datetime:
        """Naive timestamps are taken as UTC."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)

    @field_validator("device", "channel", "publisher_id", mode="before")
    @classmethod
    def stringify_ids(cls, v: Any) -> Any:
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    def to_payload(self) -> dict[str, Any]:
        """Payload stored with the event and delivered to clients."""
        payload: dict[str, Any] = {
            "data": self.data,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.device is not None:
            payload["device"] = self.device
        if self.channel is not None:
            payload["channel"] = self.channel
        if self.publisher_id is not None:
            payload["publisher_id"] = self.publisher_id
        return payload


_RECORD_LIST = TypeAdapter(list[BackendEventRecord])


def parse_records(body: Any) -> list[BackendEventRecord]:
    """Validate a decoded JSON body as a list of event records.

    Raises:
        PollFailure: reason ``invalid_schema`` when the body does not match.
    """
    try:
        return _RECORD_LIST.validate_python(body)
    except ValidationError as e:
        raise PollFailure(
            "invalid_schema",
            f"Backend response does not match the event schema: {e.error_count()} error(s)",
        ) from e


class BackendClient:
    """Client for the backend realtime events endpoint.

    The client performs exactly one request per call and never retries; the
    poller simply tries again on its next tick.

    Example:
        ```python
        async with BackendClient(settings.backend_endpoint, service_key="k", timeout=1.5) as client:
            records = await client.fetch_events()
        ```
    """

    def __init__(
        self,
        endpoint: str,
        service_key: str | None = None,
        timeout: float = 1.5,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the backend client.

        Args:
            endpoint: Absolute URL returning a JSON list of event records.
            service_key: Value for the X-Service-Key header.
            timeout: Whole-request timeout in seconds.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.endpoint = endpoint
        self.timeout = timeout

        headers = {
            "Accept": "application/json",
            "User-Agent": "realtime-service",
        }
        if service_key:
            headers["X-Service-Key"] = service_key

        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout),
            headers=headers,
            limits=httpx.Limits(
                max_keepalive_connections=2,
                max_connections=4,
            ),
            transport=transport,
        )

    async def close(self) -> None:
        """Close the HTTP client and release connections."""
        await self.client.aclose()

    async def __aenter__(self) -> BackendClient:
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def fetch_events(self, params: dict[str, Any] | None = None) -> list[BackendEventRecord]:
        """GET the endpoint and return the validated records.

        Args:
            params: Optional query parameters.

        Returns:
            Records in the order the backend returned them.

        Raises:
            PollFailure: reason is one of ``timeout``, ``network``,
                ``http_status``, ``invalid_json`` or ``invalid_schema``.
        """
        started = time.perf_counter()
        try:
            response = await self.client.get(self.endpoint, params=params)
        except httpx.TimeoutException as e:
            raise PollFailure("timeout", f"Backend poll timed out after {self.timeout}s") from e
        except httpx.HTTPError as e:
            raise PollFailure("network", f"Backend poll failed: {e}") from e

        logger.debug(
            "Backend poll response",
            extra={
                "endpoint": self.endpoint,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 3),
            },
        )

        if not response.is_success:
            raise PollFailure(
                "http_status",
                f"Backend returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise PollFailure("invalid_json", "Backend response is not valid JSON") from e

        return parse_records(body)
