"""
Cursor-paginated export of registrations

Three logical tables are exported in a fixed order: regular registrations,
late registrations and post registrations. Each is walked with keyset
pagination (see ChunkedProcessor) and rendered with the code map built once
for the request.

Two ways to consume an export:
- `stream_csv` yields the whole CSV as chunks of text for a streamed download.
- `count_tables` and `fetch_chunk` serve a client that drives pagination itself.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Tuple

from sqlalchemy import false, func, or_, select, true
from sqlalchemy.ext.asyncio import async_sessionmaker
from sqlalchemy.sql import Select

from exam_portal.config import config
from exam_portal.db.database import PostRegistration, School, StudentRegistration
from exam_portal.services.export.code_map import CodeResolutionMap, load_code_map
from exam_portal.services.export.rows import (
    LATE_TABLE, POST_TABLE, REGULAR_TABLE, VARIANTS, csv_lines, header_line, row_fields,
)
from exam_portal.services.reference_data import LgaMapping, SchoolDirectory
from exam_portal.services.shared.cache import InMemoryCache
from exam_portal.services.shared.chunked_processor import ChunkedProcessor
from exam_portal.utils.metrics import record_export

logger = logging.getLogger(__name__)

TABLE_ORDER: Tuple[str, ...] = (REGULAR_TABLE, LATE_TABLE, POST_TABLE)

REGISTRATION_TYPES: Dict[str, Tuple[str, ...]] = {
    "all": TABLE_ORDER,
    "regular": (REGULAR_TABLE,),
    "late": (LATE_TABLE,),
    "post": (POST_TABLE,),
}


@dataclass(frozen=True)
class ExportFilters:
    search: str = ""
    lga: Optional[str] = None
    school_code: Optional[str] = None
    registration_type: str = "all"

    @property
    def tables(self) -> Tuple[str, ...]:
        return REGISTRATION_TYPES[self.registration_type or "all"]


def _model_for(table: str):
    return PostRegistration if table == POST_TABLE else StudentRegistration


class ExportService:
    """Builds export queries and renders their rows"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        school_directory: SchoolDirectory,
        lga_mapping: LgaMapping,
        chunk_size: int = config.EXPORT_CHUNK_SIZE,
        prog_id: str = config.EXPORT_PROG_ID,
        code_map_cache: Optional[InMemoryCache] = None
    ):
        self.session_factory = session_factory
        self.school_directory = school_directory
        self.lga_mapping = lga_mapping
        self.chunk_size = chunk_size
        self.prog_id = prog_id
        self.code_map_cache = code_map_cache
        self.processor = ChunkedProcessor(chunk_size)

    def _conditions(self, model, table: str, filters: ExportFilters) -> List[Any]:
        conditions = []
        if table == REGULAR_TABLE:
            conditions.append(model.late_registration == false())
        elif table == LATE_TABLE:
            conditions.append(model.late_registration == true())

        if filters.search:
            pattern = f"%{filters.search.strip()}%"
            conditions.append(or_(
                model.firstname.ilike(pattern),
                model.lastname.ilike(pattern),
                model.student_number.ilike(pattern),
            ))

        lga_code = self.lga_mapping.resolve(filters.lga)
        if lga_code:
            conditions.append(School.lga_code == lga_code)
        if filters.school_code and filters.school_code != "all":
            conditions.append(School.school_code == filters.school_code)
        return conditions

    def rows_query(self, table: str, filters: ExportFilters) -> Select:
        model = _model_for(table)
        return (
            select(model, School.school_code, School.lga_code)
            .outerjoin(School, model.school_id == School.id)
            .where(*self._conditions(model, table, filters))
        )

    def count_query(self, table: str, filters: ExportFilters) -> Select:
        model = _model_for(table)
        return (
            select(func.count(model.id))
            .select_from(model)
            .outerjoin(School, model.school_id == School.id)
            .where(*self._conditions(model, table, filters))
        )

    async def count_tables(self, filters: ExportFilters) -> Dict[str, Any]:
        counts = []
        async with self.session_factory() as session:
            for table in filters.tables:
                result = await session.execute(self.count_query(table, filters))
                counts.append({"table": table, "count": result.scalar_one()})
        return {"totalCount": sum(c["count"] for c in counts), "tables": counts}

    async def code_map(self, session) -> CodeResolutionMap:
        return await load_code_map(session, self.school_directory, self.code_map_cache)

    def render(self, table: str, rows: List[Any], code_map: CodeResolutionMap) -> List[List[str]]:
        variant = VARIANTS[table]
        return [
            row_fields(variant.from_row(registration, school_code, lga_code), code_map, self.prog_id)
            for registration, school_code, lga_code in rows
        ]

    async def fetch_chunk(self, filters: ExportFilters, table: str, cursor: Optional[str] = None) -> Dict[str, Any]:
        """
        One page of a table for client-driven pagination.

        Raises:
            InvalidCursorError: If `cursor` is not a row id of the table
        """
        model = _model_for(table)
        async with self.session_factory() as session:
            code_map = await self.code_map(session)
            chunk = await self.processor.fetch_chunk(
                session, self.rows_query(table, filters), model, cursor=cursor, table=table
            )
            rows = self.render(table, chunk, code_map)
        has_more = len(chunk) == self.chunk_size
        return {
            "rows": rows,
            "nextCursor": ChunkedProcessor.next_cursor(chunk, self.chunk_size),
            "chunkSize": len(chunk),
            "hasMore": has_more,
        }

    async def stream_csv(self, filters: ExportFilters) -> AsyncIterator[str]:
        """Yield the header line, then one block of numbered rows per fetched chunk"""
        serial = 0
        current_table = None
        try:
            yield header_line()
            async with self.session_factory() as session:
                code_map = await self.code_map(session)
                for table in filters.tables:
                    current_table = table
                    model = _model_for(table)
                    async for chunk in self.processor.iter_chunks(session, self.rows_query(table, filters), model, table):
                        numbered = []
                        for fields in self.render(table, chunk, code_map):
                            serial += 1
                            numbered.append([str(serial), *fields])
                        yield csv_lines(numbered)
            logger.info(f"Export complete: {serial} row(s)", extra={"exported": serial})
            record_export("complete", serial)
        except (GeneratorExit, asyncio.CancelledError):
            logger.warning(
                f"Export aborted by client after {serial} row(s)",
                extra={"exported": serial, "table": current_table}
            )
            record_export("aborted", serial)
            raise
        except Exception as e:
            logger.error(
                f"Export failed after {serial} row(s): {e}",
                exc_info=True,
                extra={"exported": serial, "table": current_table}
            )
            record_export("error", serial)
            raise
