"""
Backoff delays and the database-lock retry decorator
"""
import asyncio
import logging
from functools import wraps
from typing import Callable, Optional

from .exceptions import DatabaseLockError

logger = logging.getLogger(__name__)


def backoff_delay(
    attempt: int,
    base_delay: float,
    max_delay: Optional[float] = None,
    exponential_backoff: bool = True
) -> float:
    """
    Delay before retry number `attempt` (1-based).

    With exponential backoff the delay is base_delay * 2^(attempt-1),
    capped at max_delay when given.
    """
    delay = base_delay * (2 ** (attempt - 1)) if exponential_backoff else base_delay
    if max_delay is not None:
        delay = min(delay, max_delay)
    return delay


def is_database_locked(error: Exception) -> bool:
    return isinstance(error, DatabaseLockError) or "database is locked" in str(error).lower()


def retry_on_db_lock(
    max_retries: int = 3,
    base_delay: float = 0.1,
    on_retry: Optional[Callable[[int, Exception], None]] = None
):
    """
    Retry an async function while SQLite reports the database as locked.

    Other errors propagate immediately. When every attempt hits the lock the
    last error is raised as DatabaseLockError.
    """
    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            attempt = 0
            while True:
                attempt += 1
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not is_database_locked(e):
                        raise
                    if attempt >= max_retries:
                        raise DatabaseLockError(
                            f"Database lock error after {max_retries} retries: {e}"
                        ) from e
                    delay = backoff_delay(attempt, base_delay)
                    if on_retry:
                        on_retry(attempt, e)
                    logger.debug(f"{func.__name__}: database locked, retry {attempt}/{max_retries} in {delay}s")
                    await asyncio.sleep(delay)

        return wrapper
    return decorator
