"""
Registration export endpoints

`/export` streams the whole CSV in one response. `/export-chunk` serves the
same rows page by page for clients that drive pagination themselves.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import StreamingResponse

from exam_portal.api.dependencies import get_export_service
from exam_portal.api.exceptions import ValidationError
from exam_portal.models.schemas import ExportChunk, ExportCounts
from exam_portal.services.export.streamer import REGISTRATION_TYPES, ExportFilters, ExportService
from exam_portal.services.export.rows import VARIANTS
from exam_portal.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter()


def export_filters(
    search: Optional[str] = Query(None, description="Substring of first name, last name or student number"),
    lga: Optional[str] = Query(None, description="LGA name or code, or 'all'"),
    schoolCode: Optional[str] = Query(None, description="School code, or 'all'"),
    registrationType: Optional[str] = Query("all", description="all, regular, late or post")
) -> ExportFilters:
    registration_type = (registrationType or "all").strip().lower()
    if registration_type not in REGISTRATION_TYPES:
        raise ValidationError(
            f"Invalid registrationType: {registrationType!r}",
            details={"allowed": sorted(REGISTRATION_TYPES)}
        )
    return ExportFilters(
        search=(search or "").strip(),
        lga=lga,
        school_code=schoolCode,
        registration_type=registration_type,
    )


async def _encode(chunks):
    async for chunk in chunks:
        yield chunk.encode("utf-8")


@router.get("/export")
async def export_students(
    filters: ExportFilters = Depends(export_filters),
    service: ExportService = Depends(get_export_service)
):
    """Download registrations as CSV"""
    filename = f"students_export_{date.today().isoformat()}.csv"
    logger.info(f"Starting CSV export of {', '.join(filters.tables)}")
    return StreamingResponse(
        _encode(service.stream_csv(filters)),
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.get("/export-chunk")
async def export_chunk(
    countOnly: bool = Query(False),
    table: Optional[str] = Query(None),
    cursor: Optional[str] = Query(None),
    filters: ExportFilters = Depends(export_filters),
    service: ExportService = Depends(get_export_service)
):
    """Per-table counts, or one page of a table following `cursor`"""
    if countOnly:
        return ExportCounts(**await service.count_tables(filters))

    if table not in VARIANTS:
        raise ValidationError(f"Invalid table: {table!r}", details={"allowed": list(VARIANTS)})
    chunk = await service.fetch_chunk(filters, table, cursor or None)
    return ExportChunk(**chunk)
