"""CLI entry point for the tool server.

Invoked as `toolchat-tools` (via the script entry point) or
`python -m toolchat.server`.
"""

import argparse
import logging
import sys

import uvicorn

from toolchat import __version__
from toolchat.config import ToolchatSettings
from toolchat.logging_setup import configure_logging
from toolchat.server.app import create_app

logger = logging.getLogger(__name__)


def main() -> None:
    """Parse arguments and serve the tool server with uvicorn."""
    parser = argparse.ArgumentParser(
        prog="toolchat-tools",
        description="Tool server executing file and web tools for toolchat",
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"toolchat-tools {__version__}",
    )

    parser.add_argument(
        "--host",
        type=str,
        default=None,
        help="Host to bind to (default: 127.0.0.1, can be set via TOOLCHAT_SERVER_HOST)",
    )

    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Port to bind to (default: 50051, can be set via TOOLCHAT_SERVER_PORT)",
    )

    parser.add_argument(
        "--log-dir",
        type=str,
        default=None,
        help="Directory for log files (default: logs, can be set via TOOLCHAT_LOG_DIR)",
    )

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO, can be set via TOOLCHAT_LOG_LEVEL)",
    )

    args = parser.parse_args()

    # CLI args override environment variables
    settings_kwargs = {}
    if args.host is not None:
        settings_kwargs["server_host"] = args.host
    if args.port is not None:
        settings_kwargs["server_port"] = args.port
    if args.log_dir is not None:
        settings_kwargs["log_dir"] = args.log_dir
    if args.log_level is not None:
        settings_kwargs["log_level"] = args.log_level

    settings = ToolchatSettings(**settings_kwargs)

    log_file = configure_logging(
        settings.resolved_log_dir,
        file_prefix="tool-server",
        level=settings.log_level,
        console_output=True,
    )
    logger.info(f"Logging to {log_file}")

    app = create_app(settings=settings)

    uvicorn.run(
        app,
        host=settings.server_host,
        port=settings.server_port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    sys.exit(main())
