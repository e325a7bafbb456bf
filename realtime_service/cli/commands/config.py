"""Configuration management commands."""

import json
import sys

import click
from pydantic import ValidationError

from realtime_service.cli.utils import error, info, key_values, section, success, warning
from realtime_service.core.settings import (
    clear_all_caches,
    get_app_settings,
    get_logging_settings,
    get_realtime_settings,
)


@click.group(name="config")
def config() -> None:
    """Configuration management commands."""


def _build_config(show_secrets: bool) -> dict[str, dict[str, object]]:
    app = get_app_settings()
    realtime = get_realtime_settings()
    logs = get_logging_settings()

    return {
        "app": {
            "service_name": app.service_name,
            "version": app.version,
            "environment": app.environment,
            "debug": app.debug,
            "webhook_max_body": app.webhook_max_body,
        },
        "network": {
            "host": realtime.host,
            "websocket_port": realtime.websocket_port,
            "websocket_path": realtime.websocket_path,
            "status_port": realtime.status_port,
        },
        "storage": {
            "max_events": realtime.max_events,
            "event_ttl": realtime.event_ttl,
            "batch_size": realtime.batch_size,
            "max_queue_size": realtime.max_queue_size,
            "queue_ttl": realtime.queue_ttl,
            "cache_ttl": realtime.cache_ttl,
            "cleanup_interval": realtime.cleanup_interval,
        },
        "limits": {
            "max_connections_per_ip": realtime.max_connections_per_ip,
            "max_subscriptions_per_client": realtime.max_subscriptions_per_client,
            "max_message_size": realtime.max_message_size,
            "require_identity": realtime.require_identity,
        },
        "backend": {
            "endpoint": realtime.backend_endpoint,
            "poll_enabled": realtime.backend_poll_enabled,
            "poll_interval": realtime.backend_poll_interval,
            "poll_timeout": realtime.poll_timeout,
            "service_key": realtime.service_key.get_secret_value() if show_secrets else "***",
        },
        "topics": {
            topic.value: "enabled" if cfg.enabled else "disabled"
            for topic, cfg in realtime.data_types.items()
        },
        "logging": {
            "level": logs.level,
            "json_logs": logs.json_logs,
            "log_file": logs.log_file,
        },
    }


@config.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["json", "table"]),
    default="table",
    help="Output format",
)
@click.option(
    "--show-secrets/--hide-secrets",
    default=False,
    help="Show sensitive values (service key)",
)
def show(output_format: str, show_secrets: bool) -> None:
    """Display current configuration settings."""
    try:
        config_dict = _build_config(show_secrets)
    except ValidationError as e:
        error(f"Invalid configuration: {e}")
        sys.exit(1)

    if output_format == "json":
        click.echo(json.dumps(config_dict, indent=2, default=str))
        return

    if not show_secrets:
        warning("Secrets are hidden. Use --show-secrets to display them.")
    for name, values in config_dict.items():
        section(name.upper())
        key_values(values)


@config.command()
def validate() -> None:
    """Load every settings model and report validation errors."""
    info("Validating configuration...")
    clear_all_caches()

    failed = False
    for label, loader in (
        ("app", get_app_settings),
        ("logging", get_logging_settings),
        ("realtime", get_realtime_settings),
    ):
        try:
            loader()
        except ValidationError as e:
            failed = True
            error(f"{label}: {e.error_count()} error(s)")
            for err in e.errors():
                loc = ".".join(str(part) for part in err["loc"])
                click.echo(f"    {loc}: {err['msg']}")
        else:
            success(f"{label}: ok")

    if failed:
        sys.exit(1)
    success("Configuration is valid")
