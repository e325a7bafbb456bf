"""Commands that query a running service over its status port."""

import json
import sys

import click
import httpx

from realtime_service.cli.utils import coro, error, info, key_values, section, success
from realtime_service.core.settings import get_realtime_settings


def _base_url(url: str | None) -> str:
    if url:
        return url.rstrip("/")
    settings = get_realtime_settings()
    host = "127.0.0.1" if settings.host in ("0.0.0.0", "::") else settings.host
    return f"http://{host}:{settings.status_port}"


async def _get(url: str, timeout: float) -> httpx.Response:
    async with httpx.AsyncClient(timeout=timeout) as client:
        return await client.get(url)


@click.command(name="status")
@click.option("--url", default=None, help="Status server base URL (default: from settings)")
@click.option("--timeout", default=5.0, type=float, help="Request timeout in seconds")
@click.option("--json", "as_json", is_flag=True, help="Print the raw JSON snapshot")
@coro
async def status(url: str | None, timeout: float, as_json: bool) -> None:
    """Show the status snapshot of a running service."""
    target = f"{_base_url(url)}/status"
    try:
        response = await _get(target, timeout)
    except httpx.HTTPError as e:
        error(f"Could not reach {target}: {e}")
        sys.exit(1)

    if response.status_code != 200:
        error(f"{target} returned HTTP {response.status_code}")
        click.echo(response.text)
        sys.exit(1)

    snapshot = response.json()
    if as_json:
        click.echo(json.dumps(snapshot, indent=2))
        return

    section("SERVICE")
    key_values(
        {
            "state": snapshot.get("state"),
            "events_per_second": snapshot.get("events_per_second"),
            "uptime_seconds": snapshot.get("uptime_seconds"),
            "version": snapshot.get("version"),
        }
    )
    section("CONNECTIONS")
    key_values(snapshot.get("connections", {}))
    section("TOPICS")
    key_values(snapshot.get("topics", {}))


@click.command(name="health")
@click.option("--url", default=None, help="Status server base URL (default: from settings)")
@click.option("--timeout", default=5.0, type=float, help="Request timeout in seconds")
@coro
async def health(url: str | None, timeout: float) -> None:
    """Check the health endpoint of a running service. Exits 1 when unhealthy."""
    target = f"{_base_url(url)}/health"
    info(f"Checking {target}")
    try:
        response = await _get(target, timeout)
    except httpx.HTTPError as e:
        error(f"Could not reach {target}: {e}")
        sys.exit(1)

    body = response.json()
    if response.status_code == 200:
        success(f"Service is {body.get('status', 'healthy')}")
        return
    error(f"Service is {body.get('status', 'unhealthy')}")
    if body.get("detail"):
        click.echo(f"  {body['detail']}")
    sys.exit(1)
