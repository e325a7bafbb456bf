"""Logging configuration settings."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

LogLevel = Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]


class LoggingSettings(BaseSettings):
    """Structured logging configuration.

    Environment variables use LOG_ prefix.
    Example: LOG_LEVEL=INFO, LOG_JSON=true
    """

    level: LogLevel = Field(
        default="INFO",
        description="Logging level (DEBUG|INFO|WARNING|ERROR|CRITICAL)",
    )

    json_logs: bool = Field(
        default=True,
        validation_alias="LOG_JSON",
        description="Enable JSON-formatted structured logs",
    )

    include_uvicorn: bool = Field(
        default=False, description="Let uvicorn access logs through"
    )

    log_file: str | None = Field(
        default=None,
        max_length=500,
        description="Log file path (None to disable file logging)",
    )
    max_bytes: int = Field(
        default=10_485_760, ge=1024, le=1_073_741_824, description="Max log file size in bytes"
    )
    backup_count: int = Field(
        default=5, ge=0, le=100, description="Number of backup log files to keep"
    )

    console_enabled: bool = Field(
        default=True, description="Enable console/stderr logging"
    )

    include_context: bool = Field(
        default=True, description="Inject contextvar fields (connection_id, client_ip) into records"
    )

    @field_validator("level", mode="before")
    @classmethod
    def normalize_level(cls, v: str) -> str:
        """Normalize log level to uppercase."""
        if isinstance(v, str):
            return v.upper()
        return v

    model_config = SettingsConfigDict(
        env_prefix="LOG_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        populate_by_name=True,
    )

    def to_logging_kwargs(self) -> dict[str, Any]:
        """Map settings onto configure_logging() keyword arguments."""
        return {
            "log_level": self.level,
            "file_path": self.log_file,
            "json_logs": self.json_logs,
            "console_enabled": self.console_enabled,
            "include_context": self.include_context,
            "file_max_bytes": self.max_bytes,
            "file_backup_count": self.backup_count,
            "include_uvicorn": self.include_uvicorn,
        }
