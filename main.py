import logging
import sys

# Configure logging before anything else is imported so module loggers
# do not install their own handlers
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s | %(name)s | %(levelname)s | %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    handlers=[logging.StreamHandler(sys.stdout)],
    force=True,
)

import argparse
import asyncio
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import ValidationError

from termstream.api import create_fastapi_app, run_fastapi_server
from termstream.config import ServerSettings
from termstream.terminal import EventBus, SessionRegistry
from termstream.terminal.listeners import install_default_listeners

load_dotenv()

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="termstream", description="Serve PTY sessions over HTTP and WebSocket"
    )
    parser.add_argument("--host", help="Interface to bind (default 127.0.0.1)")
    parser.add_argument("--port", type=int, help="TCP port (default 3000)")
    parser.add_argument("--token", help="Shared auth token (default: random)")
    parser.add_argument("--log-level", help="debug, info, warning or error")
    return parser.parse_args(argv)


def build_app(settings: ServerSettings):
    """Wire the event bus, the session registry and the HTTP app together"""
    bus = EventBus()
    registry = SessionRegistry(
        bus,
        buffer_max=settings.buffer_max,
        replay_chunk_size=settings.replay_chunk_size,
        osc_buffer_max=settings.osc_buffer_max,
    )
    install_default_listeners(bus, registry, settings.notify_min_duration_ms)
    return create_fastapi_app(registry, settings)


async def run_server(settings: ServerSettings) -> None:
    """uvicorn owns the lifecycle; the app's lifespan kills every session on exit"""
    app = build_app(settings)
    logger.info("Hint: Press Ctrl+C to stop the server")
    await run_fastapi_server(app, settings)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    try:
        settings = ServerSettings.load(
            overrides={
                "host": args.host,
                "port": args.port,
                "token": args.token,
                "log_level": args.log_level,
            }
        )
    except ValidationError as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    logging.getLogger().setLevel(settings.log_level.upper())

    try:
        asyncio.run(run_server(settings))
    except KeyboardInterrupt:
        logger.info("Received keyboard interrupt")
    except asyncio.CancelledError:
        # uvicorn cancels its tasks on a normal shutdown
        logger.info("Server shutdown completed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
