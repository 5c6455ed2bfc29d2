"""
LogTrail Gateway - Main entry point.

Usage:
    python -m logtrail.trail_server.main

Configuration is entirely via environment variables.
See config.py for server settings and api/settings.py for HTTP settings.

Invariants:
    - Logging is configured before any component starts
    - Configuration errors exit with status 1 before binding the port
"""

from __future__ import annotations

import logging
import sys

import json_log_formatter
import uvicorn

from .api import Settings, create_app
from .config import ServerConfig

logger = logging.getLogger(__name__)


def setup_logging(config: ServerConfig) -> None:
    """Configure logging based on configuration.

    Args:
        config: Server configuration
    """
    level = getattr(logging, config.observability.log_level.upper(), logging.INFO)

    if config.observability.log_format == "json":
        formatter: logging.Formatter = json_log_formatter.VerboseJSONFormatter()
    else:
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers = [handler]

    # Reduce noise from libraries
    logging.getLogger("opensearch").setLevel(logging.WARNING)
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def main() -> None:
    """Main entry point."""
    try:
        config = ServerConfig.from_env()
        settings = Settings()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    setup_logging(config)
    config.log_config()

    app = create_app(config, settings)
    logger.info(f"Starting LogTrail gateway on {settings.host}:{settings.port}")
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    main()
