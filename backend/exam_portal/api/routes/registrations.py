from fastapi import APIRouter, Depends
from sqlalchemy.exc import IntegrityError

from exam_portal.api.dependencies import get_registration_service, get_school_id
from exam_portal.api.exceptions import ValidationError
from exam_portal.models.schemas import RegistrationSubmission, RegistrationSubmissionResult
from exam_portal.services.registrations import RegistrationService
from exam_portal.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


async def _submit(service: RegistrationService, school_id: int, submission: RegistrationSubmission, post: bool):
    try:
        message, count = await service.submit(
            school_id, submission.registrations, override=submission.override, post=post
        )
    except IntegrityError as e:
        # Lost a race with a concurrent submission of the same student number
        logger.warning(f"Registration insert for school {school_id} hit a unique constraint: {e.orig}")
        raise ValidationError("One or more student numbers already exist")
    return RegistrationSubmissionResult(message=message, count=count)


@router.post("/registrations", status_code=201, response_model=RegistrationSubmissionResult)
async def submit_registrations(
    submission: RegistrationSubmission,
    school_id: int = Depends(get_school_id),
    service: RegistrationService = Depends(get_registration_service)
):
    """Save or replace the requesting school's regular and late registrations"""
    return await _submit(service, school_id, submission, post=False)


@router.post("/post-registrations", status_code=201, response_model=RegistrationSubmissionResult)
async def submit_post_registrations(
    submission: RegistrationSubmission,
    school_id: int = Depends(get_school_id),
    service: RegistrationService = Depends(get_registration_service)
):
    """Save or replace the requesting school's post registrations"""
    return await _submit(service, school_id, submission, post=True)
