from typing import Optional

from fastapi import Depends, Header, Request

from exam_portal.api.exceptions import ServiceUnavailableError, ValidationError
from exam_portal.services.container import ServiceContainer
from exam_portal.services.export.streamer import ExportService
from exam_portal.services.ingest.pipeline import UploadPipeline
from exam_portal.services.registrations import RegistrationService
from exam_portal.utils.logging import get_logger

logger = get_logger(__name__)


def get_container(request: Request) -> ServiceContainer:
    """Service container built at startup"""
    container = getattr(request.app.state, "container", None)
    if container is None:
        logger.error("Service container requested before startup completed")
        raise ServiceUnavailableError("Service is starting up")
    return container


def get_school_id(x_school_id: Optional[str] = Header(None)) -> int:
    """
    Authenticated school of the request.

    The authentication layer in front of this service sets X-School-Id.
    """
    if not x_school_id:
        raise ValidationError("Missing X-School-Id header")
    try:
        return int(x_school_id)
    except ValueError:
        raise ValidationError(f"Invalid X-School-Id header: {x_school_id!r}")


def get_upload_pipeline(container: ServiceContainer = Depends(get_container)) -> UploadPipeline:
    return container.get_upload_pipeline()


def get_registration_service(container: ServiceContainer = Depends(get_container)) -> RegistrationService:
    return container.get_registration_service()


def get_export_service(container: ServiceContainer = Depends(get_container)) -> ExportService:
    return container.get_export_service()
