#!/usr/bin/env python3
"""
Outbound Bridge - Twilio media streams <-> OpenAI Realtime.

Runs the media-stream WebSocket server that the telephony provider connects
to once an outbound call is answered.

Usage:
    python -m outbound_bridge
    python -m outbound_bridge --port 8080 --debug
"""

import argparse
import logging
import sys

import uvicorn

from .config import load_config
from .websocket_server import MEDIA_STREAM_PATH, app, init_session_manager

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[
        logging.StreamHandler(sys.stdout),
    ],
)
logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Bridge Twilio media streams to the OpenAI Realtime API",
    )

    parser.add_argument(
        "--host",
        type=str,
        help="Server host (overrides SERVER_HOST env var)",
    )

    parser.add_argument(
        "--port",
        type=int,
        help="Server port (overrides PORT env var)",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    return parser.parse_args(argv)


def main(argv=None) -> None:
    """Main entry point."""
    args = parse_args(argv)

    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config()
    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        sys.exit(1)

    host = args.host or config.server.host
    port = args.port or config.server.port

    init_session_manager(config)

    logger.info(f"Starting server on {host}:{port}")
    logger.info(f"Media stream endpoint: ws://{host}:{port}{MEDIA_STREAM_PATH}")
    logger.info(f"Barge-in: {'on' if config.barge_in_enabled else 'off'}, languages: {', '.join(config.scripts.languages)}")

    try:
        uvicorn.run(
            app,
            host=host,
            port=port,
            log_level="debug" if args.debug else "info",
        )
    except KeyboardInterrupt:
        logger.info("Shutting down...")


if __name__ == "__main__":
    main()
