"""Main CLI entry point for realtime-service commands."""

import click

from realtime_service.cli.commands import config, serve, status
from realtime_service.infra.logging.config import setup_logging


@click.group()
@click.version_option(version="0.1.0", prog_name="realtime-service")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Realtime Service CLI - run and inspect the event broadcasting service.

    \b
    Commands:
      serve      Run the WebSocket (3446) and status (3447) servers
      status     Show the status snapshot of a running service
      health     Check the health endpoint of a running service
      config     Show and validate configuration
    """
    ctx.ensure_object(dict)


cli.add_command(serve.serve)
cli.add_command(status.status)
cli.add_command(status.health)
cli.add_command(config.config)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
