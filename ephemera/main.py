"""Ephemera entry point."""

import logging

from aiohttp import web

from ephemera.api.server import create_web_app
from ephemera.app import build_runtime
from ephemera.config import settings

logging.basicConfig(
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    level=getattr(logging, settings.log_level),
)
logger = logging.getLogger(__name__)


def main() -> None:
    """Build the runtime and serve the HTTP surface."""
    if not settings.push_relay_url:
        logger.warning("PUSH_RELAY_URL is empty; offline recipients get no push")
    if not settings.sweep_secret:
        logger.warning("SWEEP_SECRET is empty; /messages/cleanup is unauthenticated")

    runtime = build_runtime()
    app = create_web_app(runtime, manage_lifecycle=True)
    logger.info("Starting Ephemera on %s:%d", settings.http_host, settings.http_port)
    web.run_app(app, host=settings.http_host, port=settings.http_port, print=None)


if __name__ == "__main__":
    main()
