"""
Application startup tasks
"""
import logging

from fastapi import FastAPI

from exam_portal.config import config
from exam_portal.db.database import AsyncSessionLocal, engine, init_db
from exam_portal.services.container import ServiceContainer
from exam_portal.utils.thread_pool import get_thread_pool

logger = logging.getLogger(__name__)


def log_config_warnings():
    for warning in config.validate():
        logger.warning(f"Config warning: {warning}")


async def setup_startup_tasks(app: FastAPI):
    """Prepare the database and build the service container"""
    logger.info("Starting application startup...")
    log_config_warnings()

    get_thread_pool()
    logger.info(f"Thread pool initialized with {config.THREAD_POOL_WORKERS} workers")

    await init_db()
    logger.info("Database initialization complete")

    if getattr(app.state, "container", None) is None:
        app.state.container = ServiceContainer(AsyncSessionLocal, engine=engine)
    container = app.state.container
    logger.info(
        f"Service container ready: {len(container.school_directory)} bundled school(s), "
        f"code map cache {'enabled' if container.code_map_cache else 'disabled'}"
    )
    logger.info("Application startup complete - ready to accept requests")
