"""
Read-only reference data loaded at startup

The static school dataset is either a JSON array of objects with string fields
lgaCode, lCode, schCode, progID, schName and id, or the CSV those objects are
converted from (the same six columns, in that order, after a header line). It
is used to name schools on result uploads and as the fallback source of the
export code map. The LGA mapping is a JSON object of LGA name to LGA code used
by export filters.

The bundled files are empty placeholders. A deployment supplies its own through
SCHOOLS_DATA_PATH and LGA_MAPPING_PATH; until it does, result uploads name
schools "UNKNOWN (Code: ...)" and the code map only knows the school_data table.
"""
import csv
import io
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from exam_portal.services.ingest.csv_parser import decode_upload

logger = logging.getLogger(__name__)

SCHOOL_CSV_FIELDS = ("lgaCode", "lCode", "schCode", "progID", "schName", "id")


@dataclass(frozen=True)
class SchoolEntry:
    lga_code: str
    l_code: str
    sch_code: str
    prog_id: str
    sch_name: str


def _load_json(path: Path, kind: str, default):
    if not path.exists():
        logger.warning(f"{kind} file not found at {path}; continuing without it")
        return default
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _load_school_csv(path: Path) -> List[Dict[str, Any]]:
    if not path.exists():
        logger.warning(f"School dataset file not found at {path}; continuing without it")
        return []
    reader = csv.reader(io.StringIO(decode_upload(path.read_bytes())))
    next(reader, None)
    return [
        dict(zip(SCHOOL_CSV_FIELDS, (cell.strip() for cell in record)))
        for record in reader
        if len(record) >= len(SCHOOL_CSV_FIELDS) - 1 and any(cell.strip() for cell in record)
    ]


class SchoolDirectory:
    """Lookup of static school entries by (school code, LGA code)"""

    def __init__(self, entries: List[SchoolEntry]):
        self.entries = entries
        self._names: Dict[Tuple[str, str], str] = {}
        for entry in entries:
            self._names.setdefault((entry.sch_code, entry.lga_code), entry.sch_name)

    @classmethod
    def from_file(cls, path: str) -> "SchoolDirectory":
        source = Path(path)
        if source.suffix.lower() == ".csv":
            raw = _load_school_csv(source)
        else:
            raw = _load_json(source, "School dataset", [])
        entries = [
            SchoolEntry(
                lga_code=str(item.get("lgaCode", "")).strip(),
                l_code=str(item.get("lCode", "")).strip(),
                sch_code=str(item.get("schCode", "")).strip(),
                prog_id=str(item.get("progID", "")).strip(),
                sch_name=str(item.get("schName", "")).strip(),
            )
            for item in raw
        ]
        if entries:
            logger.info(f"Loaded {len(entries)} schools from {path}")
        else:
            logger.warning(f"School dataset {path} is empty; set SCHOOLS_DATA_PATH to the deployment's school list")
        return cls(entries)

    def school_name(self, school_code: str, lga_code: str) -> Optional[str]:
        return self._names.get((school_code, lga_code))

    def __len__(self) -> int:
        return len(self.entries)


class LgaMapping:
    """Resolve an LGA filter value (a name or already a code) to its code"""

    def __init__(self, name_to_code: Dict[str, str]):
        self._by_name = {name.strip().lower(): str(code).strip() for name, code in name_to_code.items()}

    @classmethod
    def from_file(cls, path: str) -> "LgaMapping":
        mapping = _load_json(Path(path), "LGA mapping", {})
        if not mapping:
            logger.warning(f"LGA mapping {path} is empty; LGA filters will only match LGA codes")
        return cls(mapping)

    def resolve(self, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        text = value.strip()
        if not text or text.lower() == "all":
            return None
        return self._by_name.get(text.lower(), text)
