"""Programmatic uvicorn entry point for the edge server.

Loads the config first (host, port and validation happen before anything binds),
builds the app around it and starts uvicorn.

Usage:
    python -m edge.run        # reads ./edge.yaml (optional) + environment
    writing-edge              # via pyproject.toml [project.scripts]

Exit status:
    0  graceful shutdown
    1  any startup failure: bad config, telemetry or render handler that cannot
       be initialised, listen socket that cannot be bound
"""

from __future__ import annotations

import sys

import uvicorn

from edge.config import ConfigError, load_config
from edge.main import create_app
from edge.utils.logger import get_logger

logger = get_logger(__name__)

EXIT_STARTUP_FAILURE = 1

# HTTP keep-alive timeout in seconds. Must stay below the load balancer's idle timeout.
UVICORN_TIMEOUT_KEEP_ALIVE: int = 5


def main() -> None:
    """Start the edge server. Never returns normally on startup failure."""
    try:
        config = load_config()
    except ConfigError as exc:
        logger.error("Invalid configuration", error=str(exc))
        sys.exit(EXIT_STARTUP_FAILURE)

    try:
        uvicorn.run(
            create_app(config),
            host=config.server.host,
            port=config.server.port,
            server_header=False,
            timeout_keep_alive=UVICORN_TIMEOUT_KEEP_ALIVE,
        )
    except SystemExit as exc:
        # uvicorn exits with its own status when the lifespan or bind fails.
        if exc.code not in (None, 0):
            logger.error("Edge server failed to start", uvicorn_exit_code=exc.code)
            sys.exit(EXIT_STARTUP_FAILURE)
        raise
    except Exception:
        logger.exception("Edge server failed to start")
        sys.exit(EXIT_STARTUP_FAILURE)


if __name__ == "__main__":
    main()
