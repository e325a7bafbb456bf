"""Main entry point for realtime-service.

Routes to the servers or the CLI based on command-line arguments:
- If --server flag is provided: runs both servers with settings from the environment
- Otherwise: runs the CLI (shows help when no arguments are given)
"""

from __future__ import annotations

import sys
from typing import NoReturn


def run_servers() -> NoReturn:
    """Run the WebSocket and status servers."""
    import asyncio

    from realtime_service.app.server import serve
    from realtime_service.core.settings import (
        get_app_settings,
        get_logging_settings,
        get_realtime_settings,
    )
    from realtime_service.infra.logging import setup_logging

    logging_settings = get_logging_settings()
    setup_logging(logging_settings)

    try:
        asyncio.run(serve(get_realtime_settings(), get_app_settings(), logging_settings))
    except KeyboardInterrupt:
        pass
    sys.exit(0)


def run_cli() -> NoReturn:
    """Run the CLI interface."""
    from realtime_service.cli.main import main as cli_main

    cli_main()
    sys.exit(0)


def main() -> NoReturn:
    """Route to the servers or the CLI."""
    if "--server" in sys.argv:
        sys.argv.remove("--server")
        run_servers()
    else:
        run_cli()


if __name__ == "__main__":
    main()
