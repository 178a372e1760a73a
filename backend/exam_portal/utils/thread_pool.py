"""
Worker threads for CSV decoding

Parsing a large upload is CPU-bound; running it here keeps the event loop free
to serve progress streams of other uploads. The pool is created on first use
(or at startup) and shut down by the service container.
"""
import asyncio
import functools
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, Optional

from exam_portal.config import config

logger = logging.getLogger(__name__)

_executor: Optional[ThreadPoolExecutor] = None


def get_thread_pool() -> ThreadPoolExecutor:
    global _executor
    if _executor is None:
        workers = max(1, config.THREAD_POOL_WORKERS)
        _executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="csv-worker")
        logger.info(f"Started {workers} CSV worker thread(s)")
    return _executor


def shutdown_thread_pool() -> None:
    """Wait for running parses and release the workers"""
    global _executor
    if _executor is None:
        return
    _executor.shutdown(wait=True)
    _executor = None
    logger.info("CSV worker threads stopped")


async def run_in_thread_pool(func: Callable, *args, **kwargs) -> Any:
    """Await `func(*args, **kwargs)` executed on a worker thread; its exceptions propagate"""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(get_thread_pool(), functools.partial(func, *args, **kwargs))
