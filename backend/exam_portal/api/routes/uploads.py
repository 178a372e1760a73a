"""
Bulk CSV upload endpoints

Both endpoints answer in one of two modes. A client sending
`Accept: text/event-stream` receives progress events as Server-Sent Events
while the upload runs, ending with a `complete` event that carries the
summary. Any other client waits for a 201 JSON summary.
"""
import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Header, UploadFile
from fastapi.responses import JSONResponse, StreamingResponse

from exam_portal.api.dependencies import get_container, get_school_id, get_upload_pipeline
from exam_portal.api.exceptions import ValidationError
from exam_portal.config import config
from exam_portal.models.schemas import UploadSummary
from exam_portal.services.container import ServiceContainer
from exam_portal.services.ingest.pipeline import PreparedUpload, UploadPipeline
from exam_portal.services.ingest.progress import CollectingChannel, QueueChannel
from exam_portal.services.ingest.row_mapper import UploadTarget
from exam_portal.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()

REGISTRATION_TARGETS = {
    "regular": UploadTarget.REGULAR,
    "late": UploadTarget.LATE,
    "post": UploadTarget.POST,
}


async def read_csv_upload(file: Optional[UploadFile]) -> bytes:
    """Check the uploaded file and return its content"""
    if file is None or not file.filename:
        raise ValidationError("No file uploaded")
    if not file.filename.lower().endswith(".csv"):
        raise ValidationError("Only CSV files are accepted", details={"filename": file.filename})
    content = await file.read(config.MAX_UPLOAD_BYTES + 1)
    if len(content) > config.MAX_UPLOAD_BYTES:
        raise ValidationError(
            f"File exceeds the maximum upload size of {config.MAX_UPLOAD_BYTES} bytes",
            details={"filename": file.filename}
        )
    return content


def wants_event_stream(accept: Optional[str]) -> bool:
    return bool(accept) and "text/event-stream" in accept


async def respond(
    pipeline: UploadPipeline,
    prepared: PreparedUpload,
    container: ServiceContainer,
    accept: Optional[str]
):
    if not wants_event_stream(accept):
        report = await pipeline.run(prepared, CollectingChannel())
        return JSONResponse(status_code=201, content=report.to_dict(pipeline.error_display_limit))

    channel = QueueChannel()

    async def produce():
        try:
            await pipeline.run(prepared, channel)
        except Exception as e:
            # Already logged and sent as the final event by the pipeline
            logger.debug(f"Upload {prepared.upload_id} ended with error: {e}", extra={"upload_id": prepared.upload_id})
        finally:
            await channel.close()

    container.track(asyncio.create_task(produce()))
    return StreamingResponse(
        channel.frames(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "Connection": "keep-alive", "X-Accel-Buffering": "no"},
    )


@router.post("/results/bulk", status_code=201, response_model=UploadSummary)
async def upload_results(
    file: Optional[UploadFile] = File(None),
    accept: Optional[str] = Header(None),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
    container: ServiceContainer = Depends(get_container)
):
    """Upload examination results from a CSV file"""
    content = await read_csv_upload(file)
    prepared = await pipeline.prepare(content, file.filename, UploadTarget.RESULTS)
    return await respond(pipeline, prepared, container, accept)


@router.post("/registrations/bulk", status_code=201, response_model=UploadSummary)
async def upload_registrations(
    file: Optional[UploadFile] = File(None),
    registrationType: str = Form("regular"),
    school_id: int = Depends(get_school_id),
    accept: Optional[str] = Header(None),
    pipeline: UploadPipeline = Depends(get_upload_pipeline),
    container: ServiceContainer = Depends(get_container)
):
    """Upload registrations for the requesting school from a CSV file"""
    target = REGISTRATION_TARGETS.get(registrationType.strip().lower())
    if target is None:
        raise ValidationError(
            f"Invalid registrationType: {registrationType!r}",
            details={"allowed": sorted(REGISTRATION_TARGETS)}
        )
    content = await read_csv_upload(file)
    prepared = await pipeline.prepare(content, file.filename, target, school_id=school_id)
    return await respond(pipeline, prepared, container, accept)
