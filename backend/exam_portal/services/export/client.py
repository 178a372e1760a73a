"""
Client for the chunked export endpoint

Used where a single streamed download cannot be held open: the client asks for
per-table counts, then walks every table by following `nextCursor`, retrying
each chunk fetch with exponential backoff.

Example:
    ```python
    async with httpx.AsyncClient(base_url="https://portal.example") as http:
        client = ExportChunkClient(http)
        csv_text = await client.export_csv({"registrationType": "all"})
    ```
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from exam_portal.config import config
from exam_portal.services.export.rows import csv_lines, header_line
from exam_portal.services.shared.exceptions import ExportFetchFailure
from exam_portal.services.shared.retry import backoff_delay

logger = logging.getLogger(__name__)

EXPORT_CHUNK_PATH = "/api/admin/students/export-chunk"


class ExportChunkClient:
    def __init__(
        self,
        http: httpx.AsyncClient,
        path: str = EXPORT_CHUNK_PATH,
        max_retries: int = config.EXPORT_MAX_RETRIES,
        base_delay: float = config.EXPORT_RETRY_BASE_DELAY,
        max_delay: float = config.EXPORT_RETRY_MAX_DELAY,
        timeout: float = config.EXPORT_REQUEST_TIMEOUT,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_progress: Optional[Callable[[int, int], None]] = None
    ):
        self.http = http
        self.path = path
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.timeout = timeout
        self._sleep = sleep
        self.on_progress = on_progress

    async def _get(self, params: Dict[str, str]) -> Dict[str, Any]:
        response = await self.http.get(self.path, params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    async def fetch_counts(self, filters: Dict[str, str]) -> Dict[str, Any]:
        return await self._get({**filters, "countOnly": "true"})

    async def fetch_chunk(
        self,
        filters: Dict[str, str],
        table: str,
        cursor: Optional[str],
        exported: int = 0,
        total: int = 0
    ) -> Dict[str, Any]:
        """
        Fetch one chunk, retrying transient failures.

        Raises:
            ExportFetchFailure: When every attempt failed
        """
        params = {**filters, "table": table}
        if cursor:
            params["cursor"] = cursor

        for attempt in range(1, self.max_retries + 1):
            try:
                return await self._get(params)
            except (httpx.HTTPError, ValueError) as e:
                if attempt == self.max_retries:
                    logger.error(f"Chunk fetch for {table} failed after {attempt} attempts: {e}")
                    raise ExportFetchFailure(
                        f"Failed to fetch chunk after {self.max_retries} retries. "
                        f"Exported {exported}/{total} so far.",
                        exported=exported,
                        total=total,
                        table=table,
                    ) from e
                delay = backoff_delay(attempt, self.base_delay, self.max_delay)
                logger.warning(
                    f"Chunk fetch for {table} failed ({e}); retrying in {delay}s "
                    f"(attempt {attempt}/{self.max_retries})"
                )
                await self._sleep(delay)

    async def export_rows(self, filters: Dict[str, str]) -> List[List[str]]:
        """All rows of the export in table order, numbered from 1"""
        counts = await self.fetch_counts(filters)
        total = counts.get("totalCount", 0)
        rows: List[List[str]] = []

        for entry in counts.get("tables", []):
            if not entry.get("count"):
                continue
            table = entry["table"]
            cursor = None
            while True:
                chunk = await self.fetch_chunk(filters, table, cursor, exported=len(rows), total=total)
                for fields in chunk.get("rows", []):
                    rows.append([str(len(rows) + 1), *fields])
                if self.on_progress:
                    self.on_progress(len(rows), total)
                cursor = chunk.get("nextCursor")
                if not chunk.get("hasMore") or not cursor:
                    break

        if len(rows) != total:
            logger.warning(f"Exported {len(rows)} row(s) but {total} were counted")
        return rows

    async def export_csv(self, filters: Dict[str, str]) -> str:
        rows = await self.export_rows(filters)
        return header_line() + csv_lines(rows)
