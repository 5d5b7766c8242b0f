"""
FastAPI Production Application

Main entry point for the Jewellery Back-Office API.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
import structlog

from backoffice.config import get_settings
from backoffice.config.logging import configure_logging
from backoffice.database.connection import init_database, close_database
from backoffice.serving.api.main import create_api_app

settings = get_settings()
logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    configure_logging()

    logger.info("Starting Jewellery Back-Office API", environment=settings.app_env)

    await init_database()

    yield

    logger.info("Shutting down...")
    await close_database()


app = create_api_app(lifespan=lifespan)


def run() -> None:
    """Console entry point: serve the API with uvicorn."""
    import uvicorn

    uvicorn.run(
        "backoffice.main:app",
        host=settings.api_host,
        port=settings.api_port,
        log_level=settings.monitoring.log_level.lower(),
        proxy_headers=True,
        server_header=False,
    )


if __name__ == "__main__":
    run()
