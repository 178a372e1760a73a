"""
Row validation and duplicate detection for bulk uploads

Checks run in a fixed order and the first failure wins:

1. required fields (natural key and at least one name component)
2. score bounds (CA scores 1-100, examination scores 0-100, absent allowed)
3. duplicate natural key (already stored, or accepted earlier in the same upload)

Existing keys are fetched with one IN query per validation window and passed
to `evaluate` as a snapshot; the unique constraint on the table remains the
final arbiter for concurrent uploads.
"""
import enum
import math
from dataclasses import dataclass
from typing import Any, Collection, Dict, Iterable, Optional, Set, Tuple, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from exam_portal.config import config
from exam_portal.services.ingest.row_mapper import ABSENT, NormalizedRecord, RegistrationRecord, ResultRecord
from exam_portal.services.shared.retry import retry_on_db_lock

RESULT_SCORE_RANGE: Tuple[float, float] = (0, 100)
CA_SCORE_RANGE: Tuple[float, float] = (1, 100)

RESULT_REQUIRED_MESSAGE = "Missing required fields (SESSIONYR, EXAMINATIONNO, or name)"
REGISTRATION_REQUIRED_MESSAGE = "Missing required fields (Reg. No or name)"


class RejectionReason(str, enum.Enum):
    MISSING_REQUIRED_FIELD = "MissingRequiredField"
    DUPLICATE_KEY = "DuplicateKey"
    SCORE_OUT_OF_RANGE = "ScoreOutOfRange"


@dataclass(frozen=True)
class Accepted:
    record: NormalizedRecord


@dataclass(frozen=True)
class Rejected:
    reason: RejectionReason
    row: int
    message: str

    def to_dict(self) -> Dict[str, Any]:
        return {"row": self.row, "error": self.message, "reason": self.reason.value}


Evaluation = Union[Accepted, Rejected]


def score_in_range(value: str, bounds: Tuple[float, float]) -> bool:
    """True for the absent sentinel, or a finite number within the inclusive bounds"""
    if value in ("", ABSENT):
        return True
    try:
        number = float(value)
    except (TypeError, ValueError):
        return False
    if not math.isfinite(number):
        return False
    low, high = bounds
    return low <= number <= high


def _key_label(record: NormalizedRecord) -> str:
    if isinstance(record, ResultRecord):
        return "Examination number"
    return "Student number"


def missing_required(record: NormalizedRecord) -> Optional[str]:
    if isinstance(record, ResultRecord):
        if not record.session_yr or not record.examination_no or not (record.f_name or record.l_name):
            return RESULT_REQUIRED_MESSAGE
        return None
    if not record.student_number or not (record.lastname or record.firstname):
        return REGISTRATION_REQUIRED_MESSAGE
    return None


def _score_failure(record: NormalizedRecord) -> Optional[str]:
    bounds = CA_SCORE_RANGE if isinstance(record, RegistrationRecord) else RESULT_SCORE_RANGE
    for label, value in record.score_values():
        if not score_in_range(value, bounds):
            low, high = bounds
            return f"Invalid score for {label}: {value!r} (must be between {low:g} and {high:g})"
    return None


def evaluate(
    record: NormalizedRecord,
    existing_keys: Collection[str],
    seen_keys: Collection[str] = ()
) -> Evaluation:
    """
    Decide whether a record may be persisted.

    Args:
        record: Normalized record
        existing_keys: Natural keys already present in storage
        seen_keys: Natural keys accepted earlier in the same upload
    """
    message = missing_required(record)
    if message:
        return Rejected(RejectionReason.MISSING_REQUIRED_FIELD, record.row_number, message)

    message = _score_failure(record)
    if message:
        return Rejected(RejectionReason.SCORE_OUT_OF_RANGE, record.row_number, message)

    key = record.natural_key
    if key in existing_keys:
        return Rejected(
            RejectionReason.DUPLICATE_KEY, record.row_number,
            f"{_key_label(record)} {key} already exists",
        )
    if key in seen_keys:
        return Rejected(
            RejectionReason.DUPLICATE_KEY, record.row_number,
            f"{_key_label(record)} {key} appears more than once in this file",
        )
    return Accepted(record)


@retry_on_db_lock(max_retries=config.DEFAULT_MAX_RETRIES, base_delay=config.DEFAULT_RETRY_DELAY)
async def fetch_existing_keys(session: AsyncSession, key_column, keys: Iterable[str]) -> Set[str]:
    """Return the subset of `keys` already stored in `key_column`"""
    wanted = sorted({key for key in keys if key})
    found: Set[str] = set()
    step = max(1, config.SQLITE_MAX_VARIABLES - 1)
    for start in range(0, len(wanted), step):
        result = await session.execute(select(key_column).where(key_column.in_(wanted[start:start + step])))
        found.update(result.scalars().all())
    return found
