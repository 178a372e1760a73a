"""
Keyset pagination over large tables

This module provides the ChunkedProcessor class, which walks a result set in
fixed-size chunks ordered by (created_at DESC, id ASC). Each chunk is fetched
with a keyset condition relative to the last row of the previous chunk, so
pages stay disjoint and stable while rows are appended concurrently, and no
OFFSET scan is needed.

Example:
    ```python
    processor = ChunkedProcessor(chunk_size=5000)

    async with AsyncSessionLocal() as session:
        query = select(StudentRegistration).where(StudentRegistration.late_registration.is_(False))
        async for chunk in processor.iter_chunks(session, query, StudentRegistration):
            handle(chunk)
    ```
"""
import logging
from typing import Any, AsyncIterator, List, Optional, Sequence

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.sql import Select

from .exceptions import InvalidCursorError

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_SIZE: int = 5000


def _row_id(row: Any) -> str:
    """The id of a fetched row; rows may be ORM instances or tuples led by one"""
    entity = row[0] if isinstance(row, Sequence) else row
    return entity.id


class ChunkedProcessor:
    """
    Fetch a query's rows in chunks using keyset pagination

    Attributes:
        chunk_size: Number of rows per chunk
    """

    def __init__(self, chunk_size: int = DEFAULT_CHUNK_SIZE):
        self.chunk_size = chunk_size

    async def fetch_chunk(
        self,
        session: AsyncSession,
        base_query: Select,
        model,
        cursor: Optional[str] = None,
        table: Optional[str] = None
    ) -> List[Any]:
        """
        Fetch the chunk that follows `cursor` (the id of the last row seen).

        Args:
            session: Database session
            base_query: Query whose first selected entity is `model`
            model: ORM class carrying `id` and `created_at`
            cursor: Id of the last row of the previous chunk, or None for the first chunk
            table: Logical table name, used in error messages

        Raises:
            InvalidCursorError: If `cursor` does not name a row of `model`
        """
        query = base_query
        if cursor is not None:
            anchor = await session.execute(select(model.created_at).where(model.id == cursor))
            anchor_created_at = anchor.scalar_one_or_none()
            if anchor_created_at is None:
                raise InvalidCursorError(cursor, table)
            query = query.where(
                or_(
                    model.created_at < anchor_created_at,
                    and_(model.created_at == anchor_created_at, model.id > cursor),
                )
            )

        query = query.order_by(model.created_at.desc(), model.id.asc()).limit(self.chunk_size)
        result = await session.execute(query)
        if len(query.column_descriptions) > 1:
            return list(result.all())
        return list(result.scalars().all())

    async def iter_chunks(
        self,
        session: AsyncSession,
        base_query: Select,
        model,
        table: Optional[str] = None
    ) -> AsyncIterator[List[Any]]:
        """
        Yield successive chunks until a short (or empty) chunk ends the table
        """
        cursor = None
        chunk_count = 0
        total = 0
        while True:
            chunk = await self.fetch_chunk(session, base_query, model, cursor, table)
            if not chunk:
                break
            chunk_count += 1
            total += len(chunk)
            yield chunk
            if len(chunk) < self.chunk_size:
                break
            cursor = _row_id(chunk[-1])
            logger.debug(f"Fetched chunk {chunk_count} of {table or model.__tablename__} (total: {total})")

    @staticmethod
    def next_cursor(chunk: List[Any], chunk_size: int) -> Optional[str]:
        """Cursor for the following chunk, or None when this chunk ended the table"""
        if len(chunk) < chunk_size or not chunk:
            return None
        return _row_id(chunk[-1])
