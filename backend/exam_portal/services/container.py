"""
Service container for dependency injection

The container is built once at startup, stored on `app.state.container` and
handed to request handlers through FastAPI dependencies. Tests build their own
container over a temporary database.
"""
import asyncio
import logging
from typing import Optional, Set

from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker

from exam_portal.config import config
from exam_portal.services.export.streamer import ExportService
from exam_portal.services.ingest.batch_writer import BatchWriter
from exam_portal.services.ingest.pipeline import UploadPipeline
from exam_portal.services.reference_data import LgaMapping, SchoolDirectory
from exam_portal.services.registrations import RegistrationService
from exam_portal.services.shared.cache import InMemoryCache
from exam_portal.utils.thread_pool import shutdown_thread_pool

logger = logging.getLogger(__name__)


class ServiceContainer:
    """Owns the services and shared state of one application instance"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        engine: Optional[AsyncEngine] = None,
        school_directory: Optional[SchoolDirectory] = None,
        lga_mapping: Optional[LgaMapping] = None
    ):
        self.session_factory = session_factory
        self.engine = engine
        if school_directory is None:
            school_directory = SchoolDirectory.from_file(config.SCHOOLS_DATA_PATH)
        if lga_mapping is None:
            lga_mapping = LgaMapping.from_file(config.LGA_MAPPING_PATH)
        self.school_directory = school_directory
        self.lga_mapping = lga_mapping
        self.code_map_cache: Optional[InMemoryCache] = (
            InMemoryCache(default_ttl_seconds=config.CODE_MAP_CACHE_TTL_SECONDS)
            if config.CODE_MAP_CACHE_TTL_SECONDS > 0 else None
        )
        self.running_tasks: Set[asyncio.Task] = set()

        self._batch_writer: Optional[BatchWriter] = None
        self._upload_pipeline: Optional[UploadPipeline] = None
        self._registration_service: Optional[RegistrationService] = None
        self._export_service: Optional[ExportService] = None

    def get_batch_writer(self) -> BatchWriter:
        if self._batch_writer is None:
            self._batch_writer = BatchWriter(self.session_factory)
        return self._batch_writer

    def get_upload_pipeline(self) -> UploadPipeline:
        if self._upload_pipeline is None:
            self._upload_pipeline = UploadPipeline(
                self.session_factory, self.get_batch_writer(), self.school_directory
            )
        return self._upload_pipeline

    def get_registration_service(self) -> RegistrationService:
        if self._registration_service is None:
            self._registration_service = RegistrationService(self.session_factory, self.get_batch_writer())
        return self._registration_service

    def get_export_service(self) -> ExportService:
        if self._export_service is None:
            self._export_service = ExportService(
                self.session_factory,
                self.school_directory,
                self.lga_mapping,
                code_map_cache=self.code_map_cache,
            )
        return self._export_service

    def track(self, task: asyncio.Task) -> asyncio.Task:
        """Keep a reference to a background task until it finishes"""
        self.running_tasks.add(task)
        task.add_done_callback(self.running_tasks.discard)
        return task

    async def cancel_running_tasks(self, timeout: float = 3.0) -> int:
        pending = [task for task in self.running_tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            logger.info(f"Waiting for {len(pending)} upload task(s) to cancel...")
            _, still_pending = await asyncio.wait(pending, timeout=timeout)
            if still_pending:
                logger.debug(f"{len(still_pending)} task(s) still pending after timeout, continuing shutdown")
        return len(pending)

    async def cleanup(self):
        """Cancel uploads, drop caches, stop the thread pool and close connections"""
        cancelled = await self.cancel_running_tasks()
        if self.code_map_cache is not None:
            self.code_map_cache.clear()
        shutdown_thread_pool()
        if self.engine is not None:
            logger.info("Closing database connections...")
            await self.engine.dispose()
        logger.info(f"Service container cleaned up. Cancelled {cancelled} task(s).")
