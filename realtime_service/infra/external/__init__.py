"""Clients for external services."""

from realtime_service.infra.external.backend_client import (
    BackendClient,
    BackendEventRecord,
    parse_records,
)

__all__ = ["BackendClient", "BackendEventRecord", "parse_records"]
