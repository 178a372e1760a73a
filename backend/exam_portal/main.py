from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from sqlalchemy import text
from sqlalchemy.exc import OperationalError, DatabaseError as SQLAlchemyDatabaseError
import asyncio
import logging
import uuid

from exam_portal.api.exceptions import APIError
from exam_portal.api.dependencies import get_container
from exam_portal.api.routes import export, registrations, uploads
from exam_portal.config import config
from exam_portal.lifecycle import setup_shutdown_handlers, setup_startup_tasks
from exam_portal.models.schemas import HealthStatus
from exam_portal.services.shared.exceptions import (
    DatabaseLockError, ExamPortalError, InputFormatError, InvalidCursorError,
    RegistrationRejected, SchoolNotFoundError, TransactionTimeout,
)
from exam_portal.utils.metrics import get_metrics, get_metrics_content_type
from exam_portal.utils.structured_logging import setup_structured_logging

# JSON format in production (LOG_JSON=true), human-readable in development
setup_structured_logging(
    level=config.LOG_LEVEL,
    use_json=config.LOG_JSON,
    include_console=True,
    log_dir=config.LOG_DIR,
    log_to_file=config.LOG_TO_FILE,
    max_bytes=config.LOG_FILE_MAX_BYTES,
    backup_count=config.LOG_FILE_BACKUP_COUNT
)


class SuppressCancelledErrorFilter(logging.Filter):
    """Drop pool log records caused by CancelledError when uploads are cancelled at shutdown"""
    def filter(self, record):
        if record.exc_info:
            exc_type = record.exc_info[0]
            if exc_type and issubclass(exc_type, asyncio.CancelledError):
                return False
        return True


logging.getLogger("sqlalchemy.pool").addFilter(SuppressCancelledErrorFilter())
logging.getLogger("exam_portal").setLevel(logging.DEBUG if config.LOG_LEVEL == "DEBUG" else logging.INFO)

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Examination Portal API",
    description="Bulk CSV ingestion of results and registrations, and registration export",
    version="1.0.0"
)

cors_origins = [origin.strip() for origin in config.CORS_ORIGINS if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "Accept", "X-School-Id"],
    expose_headers=["Content-Disposition"],
)

app.include_router(uploads.router, prefix="/api", tags=["uploads"])
app.include_router(registrations.router, prefix="/api/school", tags=["registrations"])
app.include_router(export.router, prefix="/api/admin/students", tags=["export"])


@app.on_event("startup")
async def startup_event():
    await setup_startup_tasks(app)


@app.on_event("shutdown")
async def shutdown_event():
    await setup_shutdown_handlers(app)


def error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: dict,
    is_transient: bool,
    request_id: str
) -> JSONResponse:
    log = logger.error if status_code >= 500 else logger.warning
    log(
        f"API Error [{request_id}]: {code} - {message}",
        extra={
            "request_id": request_id,
            "error_code": code,
            "status_code": status_code,
            "is_transient": is_transient,
            "path": request.url.path,
            "method": request.method,
        }
    )
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "code": code,
                "message": message,
                "details": details,
                "request_id": request_id,
                "is_transient": is_transient
            }
        }
    )


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    """Handle API exceptions with a structured error response"""
    return error_response(
        request, exc.status_code, exc.code, exc.message, exc.details, exc.is_transient, exc.request_id
    )


# Domain error -> (status, code, retryable); first match wins
DOMAIN_ERRORS = (
    (InputFormatError, 400, "INPUT_FORMAT_ERROR", False),
    (RegistrationRejected, 400, "VALIDATION_ERROR", False),
    (InvalidCursorError, 400, "INVALID_CURSOR", False),
    (SchoolNotFoundError, 404, "NOT_FOUND", False),
    (TransactionTimeout, 504, "TIMEOUT_ERROR", True),
    (DatabaseLockError, 503, "DATABASE_LOCK_ERROR", True),
)


def domain_error_details(exc: ExamPortalError) -> dict:
    if isinstance(exc, InputFormatError):
        return {"filename": exc.filename} if exc.filename else {}
    if isinstance(exc, RegistrationRejected):
        return {"errors": exc.errors} if exc.errors else {}
    if isinstance(exc, InvalidCursorError):
        return {"cursor": exc.cursor, "table": exc.table}
    if isinstance(exc, SchoolNotFoundError):
        return {"school_id": exc.school_id}
    if isinstance(exc, TransactionTimeout):
        return {"timeout": exc.timeout, "suggestion": "No changes were saved. Please try again."}
    if isinstance(exc, DatabaseLockError):
        return {"suggestion": "Database is busy. Please try again in a moment."}
    return {}


@app.exception_handler(ExamPortalError)
async def service_error_handler(request: Request, exc: ExamPortalError):
    status_code, code, is_transient = 500, "SERVICE_ERROR", False
    for error_type, mapped_status, mapped_code, retryable in DOMAIN_ERRORS:
        if isinstance(exc, error_type):
            status_code, code, is_transient = mapped_status, mapped_code, retryable
            break
    return error_response(
        request, status_code, code, str(exc), domain_error_details(exc), is_transient, str(uuid.uuid4())[:8]
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Unexpected errors: database trouble and timeouts are reported as retryable"""
    request_id = str(uuid.uuid4())[:8]
    logger.error(
        f"Unhandled exception [{request_id}] on {request.method} {request.url.path}: {type(exc).__name__}: {exc}",
        exc_info=True,
        extra={"request_id": request_id}
    )
    if isinstance(exc, (OperationalError, SQLAlchemyDatabaseError)):
        return error_response(
            request, 503, "DATABASE_ERROR", "Database operation failed",
            {"error_type": type(exc).__name__, "suggestion": "This may be a temporary issue. Please try again."},
            True, request_id
        )
    if isinstance(exc, asyncio.TimeoutError):
        return error_response(
            request, 504, "TIMEOUT_ERROR", "Request timeout", {"error_type": type(exc).__name__}, True, request_id
        )
    return error_response(
        request, 500, "INTERNAL_SERVER_ERROR", "An internal server error occurred", {}, False, request_id
    )


@app.get("/")
async def root():
    return {"message": "Examination Portal API", "version": "1.0.0"}


@app.get("/health", response_model=HealthStatus)
async def health():
    """Basic health check endpoint"""
    return HealthStatus(status="healthy")


@app.get("/health/database")
async def health_database(request: Request):
    """Database reachability"""
    container = get_container(request)
    try:
        async with container.session_factory() as session:
            await session.execute(text("SELECT 1"))
    except (OperationalError, SQLAlchemyDatabaseError) as e:
        logger.warning(f"Database health check failed: {e}")
        return JSONResponse(status_code=503, content={"status": "unhealthy", "details": {"error": str(e)}})
    engine = container.engine
    return HealthStatus(status="healthy", details={"dialect": engine.dialect.name if engine is not None else None})


@app.get("/metrics", include_in_schema=False)
async def metrics(request: Request):
    """Prometheus counters, when METRICS_ENABLED is set"""
    if not config.METRICS_ENABLED:
        return error_response(request, 404, "NOT_FOUND", "Metrics are disabled", {}, False, str(uuid.uuid4())[:8])
    return Response(content=get_metrics(), media_type=get_metrics_content_type())
