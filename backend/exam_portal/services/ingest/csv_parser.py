"""
CSV parsing for bulk uploads

Rows are read with the standard quoted-CSV reader, so fields may contain
commas, doubled quotes and line breaks. A record whose field count differs
from the header's is skipped without being reported.
"""
import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Union

from exam_portal.services.shared.exceptions import InputFormatError

logger = logging.getLogger(__name__)

EMPTY_OR_INVALID = "CSV file is empty or invalid"
NO_VALID_DATA = "No valid data found in CSV"


@dataclass(frozen=True)
class RawRow:
    """One data record keyed by header; row_number is the record's line in the file"""
    row_number: int
    values: Dict[str, str]

    def get(self, *headers: str) -> str:
        """First non-empty value among the given header spellings, else ''"""
        for header in headers:
            value = self.values.get(header)
            if value:
                return value
        return ""


@dataclass
class ParsedCsv:
    headers: List[str]
    rows: List[RawRow]
    skipped_lines: int = 0
    filename: str = field(default="")

    def iter_rows(self) -> Iterator[RawRow]:
        return iter(self.rows)

    def __len__(self) -> int:
        return len(self.rows)


def decode_upload(content: Union[bytes, str]) -> str:
    """Decode an uploaded blob as UTF-8, dropping a leading byte order mark"""
    if isinstance(content, bytes):
        try:
            text = content.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise InputFormatError(f"{EMPTY_OR_INVALID}: file is not UTF-8 text") from e
    else:
        text = content.lstrip("\ufeff")
    return text


def iter_csv_rows(text: str, headers_out: List[str]) -> Iterator[Union[RawRow, None]]:
    """
    Yield a RawRow per well-formed record, or None for a skipped record.

    The header (after stripping) is appended to `headers_out` before the
    first data row is produced.
    """
    reader = csv.reader(io.StringIO(text))
    headers = None
    last_line = 0
    for record in reader:
        start_line = last_line + 1
        last_line = reader.line_num
        if not any(cell.strip() for cell in record):
            continue
        if headers is None:
            headers = [cell.strip() for cell in record]
            headers_out.extend(headers)
            continue
        if len(record) != len(headers):
            yield None
            continue
        yield RawRow(
            row_number=start_line,
            values={header: cell.strip() for header, cell in zip(headers, record)},
        )


def parse_csv(content: Union[bytes, str], filename: str = "") -> ParsedCsv:
    """
    Parse a whole CSV upload.

    Raises:
        InputFormatError: If the file is not text, or holds fewer than two
            non-blank lines (a header and at least one data line)
    """
    text = decode_upload(content)
    non_blank = 0
    for line in text.splitlines():
        if line.strip():
            non_blank += 1
            if non_blank >= 2:
                break
    if non_blank < 2:
        raise InputFormatError(EMPTY_OR_INVALID, filename=filename)

    headers: List[str] = []
    rows: List[RawRow] = []
    skipped = 0
    try:
        for row in iter_csv_rows(text, headers):
            if row is None:
                skipped += 1
            else:
                rows.append(row)
    except csv.Error as e:
        raise InputFormatError(f"{EMPTY_OR_INVALID}: {e}", filename=filename) from e

    if skipped:
        logger.info(f"Skipped {skipped} malformed CSV line(s) in {filename or 'upload'}")
    return ParsedCsv(headers=headers, rows=rows, skipped_lines=skipped, filename=filename)
