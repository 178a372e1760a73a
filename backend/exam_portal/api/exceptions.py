"""
HTTP-level errors raised by routes and dependencies

Each subclass fixes its status code, error code and whether a retry may help.
Domain errors from the services are mapped to responses in main.py instead.
"""
from typing import Any, Dict, Optional
import uuid


class APIError(Exception):
    status_code: int = 500
    code: str = "API_ERROR"
    is_transient: bool = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None, request_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}
        self.request_id = request_id or str(uuid.uuid4())[:8]


class ValidationError(APIError):
    """Missing or malformed request input"""
    status_code = 400
    code = "VALIDATION_ERROR"


class ServiceUnavailableError(APIError):
    """The application is not ready to serve the request"""
    status_code = 503
    code = "SERVICE_UNAVAILABLE"
    is_transient = True
