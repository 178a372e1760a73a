"""
Application shutdown handlers
"""
import logging

from fastapi import FastAPI

logger = logging.getLogger(__name__)


async def setup_shutdown_handlers(app: FastAPI):
    """Release everything the service container owns"""
    logger.info("Application shutting down, initiating graceful shutdown...")
    container = getattr(app.state, "container", None)
    if container is not None:
        await container.cleanup()
        app.state.container = None
    logger.info("Shutdown complete")
