"""
Date parsing and formatting helpers shared by the upload and export paths.
"""
from datetime import datetime, date, timezone
from typing import Optional, Union
import logging

logger = logging.getLogger(__name__)

# Day-first formats seen in school spreadsheets
_DAY_FIRST_FORMATS = ("%d/%m/%Y", "%d-%m-%Y", "%d.%m.%Y")


def parse_date(value: Optional[str]) -> Optional[date]:
    """
    Parse a CSV date cell.

    Accepts DD/MM/YYYY (also with '-' or '.' separators) and ISO 8601
    (YYYY-MM-DD, optionally with a time part). Empty or unparseable input
    yields None; this function never raises.
    """
    if value is None:
        return None
    text = value.strip()
    if not text:
        return None

    for fmt in _DAY_FIRST_FORMATS:
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue

    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00")).date()
    except ValueError:
        pass

    try:
        return datetime.strptime(text[:10], "%Y-%m-%d").date()
    except ValueError:
        logger.debug(f"parse_date: unrecognised date value {text!r}")
        return None


def format_day_first(value: Optional[Union[datetime, date]]) -> str:
    """Format a date as DD/MM/YYYY, or an empty string when missing"""
    if value is None:
        return ""
    return value.strftime("%d/%m/%Y")


def utc_now() -> datetime:
    """Current UTC time as a naive datetime, matching the DateTime columns"""
    return datetime.now(timezone.utc).replace(tzinfo=None)
