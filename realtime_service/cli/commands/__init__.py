"""CLI command modules."""

from realtime_service.cli.commands import config, serve, status

__all__ = ["config", "serve", "status"]
