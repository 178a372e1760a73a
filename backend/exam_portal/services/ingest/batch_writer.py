"""
Chunked persistence for accepted upload rows

Two write paths:

- `persist`: fixed-size chunks, each one skip-duplicates insert committed on
  its own. A failing chunk is rolled back and logged and the run moves on.
- `replace_scope` / `insert_atomic`: one all-or-nothing transaction bounded
  by a connection wait limit and a run time limit.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import delete, insert
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from exam_portal.config import config
from exam_portal.services.shared.exceptions import ChannelClosed, PersistenceChunkFailure, TransactionTimeout

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkOutcome:
    index: int
    attempted: int
    inserted: int
    failed: bool = False
    error: Optional[str] = None


@dataclass
class PersistResult:
    attempted: int = 0
    created: int = 0
    total_chunks: int = 0
    chunks: List[ChunkOutcome] = field(default_factory=list)
    aborted: bool = False

    @property
    def failed_chunks(self) -> List[ChunkOutcome]:
        return [chunk for chunk in self.chunks if chunk.failed]


@dataclass(frozen=True)
class ReplaceResult:
    deleted: int
    created: int


OnChunk = Callable[[ChunkOutcome, int, int], Awaitable[None]]


def split_chunks(rows: List[Any], size: int) -> List[List[Any]]:
    size = max(1, size)
    return [rows[i:i + size] for i in range(0, len(rows), size)]


class BatchWriter:
    """
    Writes normalized rows through a session factory

    Attributes:
        session_factory: Factory producing AsyncSession objects
        chunk_size: Rows per committed chunk
        max_variables: Bound-parameter limit per statement
    """

    def __init__(
        self,
        session_factory: async_sessionmaker,
        chunk_size: int = config.UPLOAD_BATCH_SIZE,
        max_variables: int = config.SQLITE_MAX_VARIABLES,
        max_wait_seconds: float = config.OVERRIDE_MAX_WAIT_SECONDS,
        timeout_seconds: float = config.OVERRIDE_TIMEOUT_SECONDS
    ):
        self.session_factory = session_factory
        self.chunk_size = chunk_size
        self.max_variables = max_variables
        self.max_wait_seconds = max_wait_seconds
        self.timeout_seconds = timeout_seconds

    def _statement_batches(self, rows: List[Dict[str, Any]]) -> List[List[Dict[str, Any]]]:
        """Split rows so one multi-VALUES statement stays under the parameter limit"""
        if not rows:
            return []
        per_statement = max(1, self.max_variables // max(1, len(rows[0])))
        return split_chunks(rows, per_statement)

    def _insert_statement(self, session: AsyncSession, model, batch: List[Dict[str, Any]], skip_duplicates: bool):
        dialect = session.get_bind().dialect.name
        if not skip_duplicates:
            return insert(model).values(batch)
        if dialect == "postgresql":
            return pg_insert(model).values(batch).on_conflict_do_nothing()
        return sqlite_insert(model).values(batch).on_conflict_do_nothing()

    async def _insert_all(
        self,
        session: AsyncSession,
        model,
        rows: List[Dict[str, Any]],
        skip_duplicates: bool = True
    ) -> int:
        inserted = 0
        for batch in self._statement_batches(rows):
            result = await session.execute(self._insert_statement(session, model, batch, skip_duplicates))
            # rowcount excludes rows skipped by ON CONFLICT DO NOTHING
            inserted += result.rowcount if result.rowcount is not None and result.rowcount >= 0 else len(batch)
        return inserted

    async def persist(
        self,
        model,
        rows: List[Dict[str, Any]],
        on_chunk: Optional[OnChunk] = None,
        chunk_size: Optional[int] = None,
        upload_id: Optional[str] = None
    ) -> PersistResult:
        """
        Insert rows chunk by chunk, skipping rows whose unique key already exists.

        `on_chunk(outcome, chunks_done, total_chunks)` is awaited after every
        chunk. If it raises ChannelClosed, no further chunks are written and
        the result is marked aborted.
        """
        chunks = split_chunks(rows, chunk_size or self.chunk_size)
        result = PersistResult(attempted=len(rows), total_chunks=len(chunks))

        for index, chunk in enumerate(chunks, start=1):
            async with self.session_factory() as session:
                try:
                    inserted = await self._insert_all(session, model, chunk)
                    await session.commit()
                    outcome = ChunkOutcome(index=index, attempted=len(chunk), inserted=inserted)
                except SQLAlchemyError as e:
                    await session.rollback()
                    failure = PersistenceChunkFailure(str(e), chunk_index=index, row_count=len(chunk))
                    logger.error(
                        f"Failed to insert chunk {index}/{len(chunks)} into {model.__tablename__}: {failure}. "
                        "Continuing with next chunk.",
                        extra={"upload_id": upload_id or "", "chunk_index": index, "row_count": len(chunk)}
                    )
                    outcome = ChunkOutcome(index=index, attempted=len(chunk), inserted=0, failed=True, error=str(e))

            result.chunks.append(outcome)
            result.created += outcome.inserted

            if on_chunk is not None:
                try:
                    await on_chunk(outcome, index, len(chunks))
                except ChannelClosed:
                    result.aborted = True
                    logger.warning(
                        f"Progress consumer disconnected after chunk {index}/{len(chunks)}; stopping insert",
                        extra={"upload_id": upload_id or ""}
                    )
                    break

        return result

    async def _run_bounded(self, work: Callable[[AsyncSession], Awaitable[Any]], max_wait: float, timeout: float) -> Any:
        session = self.session_factory()
        try:
            try:
                await asyncio.wait_for(session.connection(), timeout=max_wait)
            except asyncio.TimeoutError as e:
                raise TransactionTimeout(
                    f"Could not acquire a database connection within {max_wait:g}s", timeout=max_wait
                ) from e

            async def _transaction():
                outcome = await work(session)
                await session.commit()
                return outcome

            try:
                return await asyncio.wait_for(_transaction(), timeout=timeout)
            except asyncio.TimeoutError as e:
                raise TransactionTimeout(
                    f"Transaction did not complete within {timeout:g}s and was rolled back", timeout=timeout
                ) from e
        except BaseException:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def replace_scope(
        self,
        model,
        scope_filter,
        rows: List[Dict[str, Any]],
        max_wait_seconds: Optional[float] = None,
        timeout_seconds: Optional[float] = None
    ) -> ReplaceResult:
        """
        Delete every row matching `scope_filter` and insert `rows`, atomically.

        Raises:
            TransactionTimeout: If either bound is exceeded; nothing is changed
        """
        async def _work(session: AsyncSession) -> ReplaceResult:
            deleted = await session.execute(delete(model).where(scope_filter))
            created = await self._insert_all(session, model, rows, skip_duplicates=False)
            return ReplaceResult(deleted=deleted.rowcount or 0, created=created)

        outcome = await self._run_bounded(
            _work,
            self.max_wait_seconds if max_wait_seconds is None else max_wait_seconds,
            self.timeout_seconds if timeout_seconds is None else timeout_seconds,
        )
        logger.info(f"Replaced {outcome.deleted} {model.__tablename__} rows with {outcome.created}")
        return outcome

    async def insert_atomic(self, model, rows: List[Dict[str, Any]]) -> int:
        """Insert all rows in one transaction; any conflict fails the whole insert"""
        async def _work(session: AsyncSession) -> int:
            return await self._insert_all(session, model, rows, skip_duplicates=False)

        return await self._run_bounded(_work, self.max_wait_seconds, self.timeout_seconds)
