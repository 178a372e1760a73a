"""
Shared utilities for examination portal services
"""
from .exceptions import (
    ExamPortalError,
    InputFormatError,
    PersistenceChunkFailure,
    TransactionTimeout,
    ExportFetchFailure,
    InvalidCursorError,
    ChannelClosed,
    DatabaseLockError,
    RegistrationRejected,
    SchoolNotFoundError,
)
from .retry import retry_on_db_lock, backoff_delay

__all__ = [
    "ExamPortalError",
    "InputFormatError",
    "PersistenceChunkFailure",
    "TransactionTimeout",
    "ExportFetchFailure",
    "InvalidCursorError",
    "ChannelClosed",
    "DatabaseLockError",
    "RegistrationRejected",
    "SchoolNotFoundError",
    "retry_on_db_lock",
    "backoff_delay",
]
