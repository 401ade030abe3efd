"""Entry point for the content mirror server with proper lifespan management."""

import logging
import sys
from contextlib import asynccontextmanager

import uvicorn
from starlette.applications import Starlette
from starlette.routing import Mount

from content_mirror import server as server_module
from content_mirror.config import settings
from content_mirror.server import mcp
from content_mirror.services import build_services

# Custom logging format
LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(message)s"
DATE_FORMAT = "%m/%d/%y %H:%M:%S"


@asynccontextmanager
async def lifespan(app):
    """Lifespan context manager for the main Starlette app."""
    logger = logging.getLogger(__name__)

    # Startup
    logger.info(f"Opening document store at {settings.db_path}...")
    services = build_services(settings)
    server_module.services = services
    logger.info("Server initialization complete!")

    yield

    # Shutdown
    logger.info("Shutting down server...")
    server_module.services = None
    await services.close()
    logger.info("Server shutdown complete")


def configure_logging():
    """Configure unified logging format for all loggers."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    # Configure root logger
    root = logging.getLogger()
    root.setLevel(logging.INFO)
    root.handlers = [handler]

    # Reduce noise from httpx
    logging.getLogger("httpx").setLevel(logging.WARNING)


def main():
    """Run the server with proper lifespan management."""
    configure_logging()

    # Get the FastMCP Starlette app (without lifespan)
    mcp_app = mcp.streamable_http_app()

    # Create main Starlette app with our lifespan
    app = Starlette(
        debug=False,
        lifespan=lifespan,
        routes=[
            Mount("/", app=mcp_app),
        ],
    )

    logging.info(
        f"Starting content mirror on http://{settings.http_host}:{settings.http_port}"
    )
    logging.info(
        "MCP endpoint: http://%s:%s%s",
        settings.http_host,
        settings.http_port,
        mcp.settings.streamable_http_path,
    )

    # Configure uvicorn to use our logging format
    log_config = uvicorn.config.LOGGING_CONFIG.copy()
    log_config["formatters"]["default"]["fmt"] = LOG_FORMAT
    log_config["formatters"]["default"]["datefmt"] = DATE_FORMAT
    log_config["formatters"]["access"]["fmt"] = LOG_FORMAT
    log_config["formatters"]["access"]["datefmt"] = DATE_FORMAT

    # Run with uvicorn
    uvicorn.run(
        app,
        host=settings.http_host,
        port=settings.http_port,
        log_level="info",
        log_config=log_config,
    )


if __name__ == "__main__":
    main()
