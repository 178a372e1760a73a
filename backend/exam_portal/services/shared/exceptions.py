"""
Custom exceptions for examination portal services
"""
from typing import Optional


class ExamPortalError(Exception):
    """Base exception for all service errors"""
    pass


class InputFormatError(ExamPortalError):
    """The uploaded file cannot be processed at all"""
    def __init__(self, message: str, filename: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.filename = filename


class PersistenceChunkFailure(ExamPortalError):
    """A chunk insert failed; the run continues with the next chunk"""
    def __init__(self, message: str, chunk_index: int, row_count: int):
        super().__init__(message)
        self.chunk_index = chunk_index
        self.row_count = row_count


class TransactionTimeout(ExamPortalError):
    """An override transaction exceeded its wait or run bound and was rolled back"""
    def __init__(self, message: str = "Transaction timed out", timeout: Optional[float] = None):
        super().__init__(message)
        self.timeout = timeout


class ExportFetchFailure(ExamPortalError):
    """A chunk fetch kept failing after all retries"""
    def __init__(self, message: str, exported: int = 0, total: int = 0, table: Optional[str] = None):
        super().__init__(message)
        self.exported = exported
        self.total = total
        self.table = table


class InvalidCursorError(ExamPortalError):
    """A pagination cursor does not name a row of the table"""
    def __init__(self, cursor: str, table: Optional[str] = None):
        super().__init__(f"Unknown cursor {cursor!r}" + (f" for table {table}" if table else ""))
        self.cursor = cursor
        self.table = table


class ChannelClosed(ExamPortalError):
    """The progress consumer went away; the producer must stop"""
    pass


class DatabaseLockError(ExamPortalError):
    """Database is locked error"""
    def __init__(self, message: str = "Database is locked", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class RegistrationRejected(ExamPortalError):
    """A JSON registration submission was refused as a whole"""
    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.message = message
        self.errors = errors or []


class SchoolNotFoundError(ExamPortalError):
    """The school owning a submission does not exist"""
    def __init__(self, school_id: Optional[int] = None):
        super().__init__("School not found")
        self.school_id = school_id
