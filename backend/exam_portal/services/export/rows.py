"""
Export rows: tagged registration variants and their CSV rendering

Each logical export table yields its own variant type. All variants expose the
same `RegistrationView` fields, so rendering never inspects the source model.
"""
import csv
import io
from dataclasses import dataclass
from datetime import date
from typing import Any, ClassVar, Dict, Iterable, List, Mapping, Optional, Sequence

from exam_portal.services.export.code_map import CodeResolutionMap
from exam_portal.services.ingest.field_map import CA_SUBJECTS, CA_YEARS, EXPORT_HEADERS
from exam_portal.utils.date_utils import format_day_first

REGULAR_TABLE = "studentRegistration-regular"
LATE_TABLE = "studentRegistration-late"
POST_TABLE = "postRegistration"


@dataclass(frozen=True)
class RegistrationView:
    """Fields of a registration joined with its school"""
    id: str
    year: str
    student_number: str
    acc_code: str
    lastname: str
    othername: str
    firstname: str
    gender: str
    ca_scores: Mapping[str, Mapping[str, str]]
    religious_type: str
    school_type: str
    date_of_birth: Optional[date]
    school_code: str
    school_lga_code: str

    table: ClassVar[str] = ""

    @classmethod
    def from_row(cls, registration: Any, school_code: Optional[str], school_lga_code: Optional[str]):
        return cls(
            id=registration.id,
            year=registration.year or "",
            student_number=registration.student_number or "",
            acc_code=registration.acc_code or "",
            lastname=registration.lastname or "",
            othername=registration.othername or "",
            firstname=registration.firstname or "",
            gender=registration.gender or "",
            ca_scores=registration.ca_scores or {},
            religious_type=registration.religious_type or "",
            school_type=registration.school_type or "",
            date_of_birth=registration.date_of_birth,
            school_code=school_code or "",
            school_lga_code=school_lga_code or "",
        )


@dataclass(frozen=True)
class RegularRegistration(RegistrationView):
    table: ClassVar[str] = REGULAR_TABLE


@dataclass(frozen=True)
class LateRegistration(RegistrationView):
    table: ClassVar[str] = LATE_TABLE


@dataclass(frozen=True)
class PostRegistration(RegistrationView):
    table: ClassVar[str] = POST_TABLE

VARIANTS: Dict[str, type] = {
    REGULAR_TABLE: RegularRegistration,
    LATE_TABLE: LateRegistration,
    POST_TABLE: PostRegistration,
}


def religion_code(value: str) -> str:
    lowered = value.strip().lower()
    if lowered == "christian":
        return "1"
    if lowered == "islam":
        return "2"
    return ""


def school_type_code(value: str) -> str:
    return "1" if value.strip().lower() == "private" else "0"


def ca_values(ca_scores: Mapping[str, Mapping[str, str]]) -> List[str]:
    values = []
    for subject in CA_SUBJECTS:
        years = ca_scores.get(subject) or {}
        values.extend(str(years.get(year) or "") for year in CA_YEARS)
    return values


def row_fields(view: RegistrationView, code_map: CodeResolutionMap, prog_id: str) -> List[str]:
    """One export row without the leading S/N column"""
    return [
        view.year,
        prog_id,
        view.student_number,
        view.acc_code,
        view.lastname,
        view.othername,
        view.firstname,
        view.gender,
        *ca_values(view.ca_scores),
        religion_code(view.religious_type),
        school_type_code(view.school_type),
        view.school_code,
        code_map.resolve(view.school_lga_code, view.school_code),
        format_day_first(view.date_of_birth),
    ]


def csv_lines(rows: Iterable[Sequence[Any]]) -> str:
    """Render rows as CSV text, quoting only fields that need it"""
    output = io.StringIO()
    writer = csv.writer(output, lineterminator="\n")
    writer.writerows(rows)
    return output.getvalue()


def header_line() -> str:
    return csv_lines([EXPORT_HEADERS])
