"""
Unified logging utility for the application

Loggers obtained here respect the LOG_* settings even when a module is used
outside the FastAPI app (scripts, the export chunk client).

Example:
    ```python
    from exam_portal.utils.logging import get_logger

    logger = get_logger(__name__)
    logger.info("Upload started", extra={"upload_id": upload_id})
    ```
"""
import logging
from exam_portal.config import config
from exam_portal.utils.structured_logging import setup_structured_logging


_logging_initialized = False


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger, configuring structured logging on first use.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Logger instance
    """
    global _logging_initialized

    if not _logging_initialized and not logging.getLogger().handlers:
        setup_structured_logging(
            level=config.LOG_LEVEL,
            use_json=config.LOG_JSON,
            include_console=True,
            log_dir=config.LOG_DIR,
            log_to_file=config.LOG_TO_FILE,
            max_bytes=config.LOG_FILE_MAX_BYTES,
            backup_count=config.LOG_FILE_BACKUP_COUNT
        )
    _logging_initialized = True

    return logging.getLogger(name)
