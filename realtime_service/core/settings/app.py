"""Application identity settings."""

from __future__ import annotations

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

Environment = Literal["development", "staging", "production", "test"]


class AppSettings(BaseSettings):
    """Service identity shared by both HTTP apps.

    Environment variables use APP_ prefix.
    Example: APP_ENVIRONMENT=production, APP_DEBUG=false
    """

    # Service identity
    service_name: str = Field(
        default="realtime-service",
        min_length=1,
        max_length=100,
        pattern=r"^[a-z0-9]+(-[a-z0-9]+)*$",
        description="Service name for logging (lowercase, hyphens allowed)",
    )
    title: str = Field(
        default="Realtime Event Service",
        min_length=1,
        max_length=200,
        description="Title shown in API documentation",
    )
    version: str = Field(
        default="1.0.0",
        min_length=1,
        max_length=50,
        pattern=r"^\d+\.\d+\.\d+(-[a-zA-Z0-9]+)?$",
        description="Service version (semver format)",
    )
    environment: Environment = Field(
        default="development", description="Environment: development|staging|production|test",
    )

    debug: bool = Field(default=False, description="Enable debug mode")
    disable_docs: bool = Field(default=False, description="Disable OpenAPI docs on the status app")

    webhook_max_body: int = Field(
        default=10 * 1024,  # 10KB
        ge=256,
        le=1024 * 1024,
        description="Maximum accepted POST /webhook/event body in bytes",
    )

    shutdown_timeout: float = Field(
        default=10.0,
        ge=0,
        le=300,
        description="Seconds uvicorn waits for connections to close on shutdown",
    )

    @model_validator(mode="after")
    def validate_production_settings(self) -> AppSettings:
        """Validate settings for production environment."""
        if self.environment == "production" and self.debug:
            msg = "Debug mode cannot be enabled in production environment"
            raise ValueError(msg)
        return self

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,  # Immutable settings
        extra="ignore",
        env_ignore_empty=True,
    )

    @property
    def docs_url(self) -> str | None:
        return None if self.disable_docs else "/docs"

    @property
    def openapi_url(self) -> str | None:
        return None if self.disable_docs else "/openapi.json"
