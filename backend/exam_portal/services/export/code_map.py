"""
Resolution of a school's canonical LGA code for export rows

The map is built from the `school_data` reference table merged with the
bundled static school dataset. Reference table entries win over the static
dataset. Both `lCode-schCode` and `lgaCode-schCode` keys are registered so a
registration's school can be found by either LGA code.
"""
import logging
from typing import Dict, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from exam_portal.db.database import SchoolData
from exam_portal.services.reference_data import SchoolDirectory
from exam_portal.services.shared.cache import InMemoryCache

logger = logging.getLogger(__name__)

CACHE_KEY = "export:code_map"


def _key(lga_code: str, sch_code: str) -> str:
    return f"{lga_code}-{sch_code}"


def _strip_zeros(sch_code: str) -> str:
    return sch_code.lstrip("0") or sch_code


class CodeResolutionMap:
    """Read-only (LGA code, school code) -> canonical LGA code lookup"""

    def __init__(self, mapping: Dict[str, str]):
        self._mapping = mapping

    def __len__(self) -> int:
        return len(self._mapping)

    def resolve(self, lga_code: Optional[str], sch_code: Optional[str]) -> str:
        lga = (lga_code or "").strip()
        sch = (sch_code or "").strip()
        if not lga or not sch:
            return ""
        found = self._mapping.get(_key(lga, sch))
        if found is None:
            found = self._mapping.get(_key(lga, _strip_zeros(sch)))
        return found or ""

    @classmethod
    async def build(cls, session: AsyncSession, directory: SchoolDirectory) -> "CodeResolutionMap":
        mapping: Dict[str, str] = {}

        result = await session.execute(select(SchoolData.l_code, SchoolData.lga_code, SchoolData.sch_code))
        table_rows = 0
        for l_code, lga_code, sch_code in result.all():
            table_rows += 1
            for source in (l_code, lga_code):
                if source and sch_code:
                    mapping[_key(source.strip(), sch_code.strip())] = lga_code.strip()

        static_added = 0
        for entry in directory.entries:
            for source in (entry.l_code, entry.lga_code):
                if not source or not entry.sch_code:
                    continue
                key = _key(source, entry.sch_code)
                if key not in mapping:
                    mapping[key] = entry.lga_code
                    static_added += 1

        logger.debug(
            f"Built code map: {len(mapping)} key(s) from {table_rows} reference row(s) "
            f"and {static_added} static entr(ies)"
        )
        return cls(mapping)


async def load_code_map(
    session: AsyncSession,
    directory: SchoolDirectory,
    cache: Optional[InMemoryCache] = None
) -> CodeResolutionMap:
    """
    The code map for one export request.

    Without a cache the map is rebuilt on every call. With one, a built map is
    reused until its TTL expires.
    """
    if cache is not None:
        cached = cache.get(CACHE_KEY)
        if cached is not None:
            return cached
    code_map = await CodeResolutionMap.build(session, directory)
    if cache is not None:
        cache.set(CACHE_KEY, code_map)
    return code_map
