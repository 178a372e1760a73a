"""
Batch generation of registration access codes
"""
import logging
import secrets
import string
from typing import Iterable, List, Optional, Set

from sqlalchemy.ext.asyncio import AsyncSession

from exam_portal.db.database import PostRegistration, StudentRegistration
from exam_portal.services.ingest.validation import fetch_existing_keys

logger = logging.getLogger(__name__)

ACC_CODE_ALPHABET = string.ascii_uppercase + string.digits
ACC_CODE_LENGTH = 10
MAX_ROUNDS = 10


def _candidate() -> str:
    return "".join(secrets.choice(ACC_CODE_ALPHABET) for _ in range(ACC_CODE_LENGTH))


async def generate_access_codes(
    session: AsyncSession,
    count: int,
    reserved: Optional[Iterable[str]] = None
) -> List[str]:
    """
    Generate `count` access codes unused by both registration tables.

    Each round checks all outstanding candidates with one IN query per table;
    collisions are regenerated in the next round.
    """
    taken: Set[str] = set(reserved or ())
    codes: List[str] = []
    for round_number in range(1, MAX_ROUNDS + 1):
        needed = count - len(codes)
        if needed <= 0:
            break
        candidates: Set[str] = set()
        while len(candidates) < needed:
            code = _candidate()
            if code not in taken:
                candidates.add(code)

        clashes = await fetch_existing_keys(session, StudentRegistration.acc_code, candidates)
        clashes |= await fetch_existing_keys(session, PostRegistration.acc_code, candidates)
        if clashes:
            logger.debug(f"Access code round {round_number}: {len(clashes)} collision(s), regenerating")
        fresh = sorted(candidates - clashes)
        codes.extend(fresh)
        taken.update(candidates)

    if len(codes) < count:
        raise RuntimeError(f"Could not generate {count} unique access codes")
    return codes[:count]
