"""
Normalization of parsed CSV rows into typed upload records

`normalize` is a pure function of the raw row, the upload target and the
read-only school directory. Records are immutable; identifiers and timestamps
are only attached when a record is turned into an insert row.
"""
import enum
import uuid
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union

from exam_portal.services.ingest.csv_parser import RawRow
from exam_portal.services.ingest.field_map import (
    CA_SUBJECTS, CA_YEARS, RELIGION_CODES, RESULT_ALIASES, RESULT_SUBJECTS,
    REGISTRATION_ALIASES, SCHOOL_TYPE_CODES, ca_column,
)
from exam_portal.services.reference_data import SchoolDirectory
from exam_portal.utils.date_utils import parse_date, utc_now

# Sentinel stored for a score that was not supplied
ABSENT = "-"


class UploadTarget(str, enum.Enum):
    RESULTS = "results"
    REGULAR = "regular"
    LATE = "late"
    POST = "post"

    @property
    def is_registration(self) -> bool:
        return self is not UploadTarget.RESULTS


def normalize_score(value: Optional[str]) -> str:
    """Empty and '-' cells become the absent sentinel; anything else is kept as text"""
    text = (value or "").strip()
    return text if text and text != ABSENT else ABSENT


@dataclass(frozen=True)
class ResultRecord:
    row_number: int
    examination_no: str
    session_yr: str
    f_name: str
    m_name: str
    l_name: str
    date_of_birth: Optional[date]
    sex_cd: str
    institution_cd: str
    school_code: str
    school_name: str
    lga_cd: str
    scores: Mapping[str, Mapping[str, str]]
    rgs_type: str
    remark: str
    access_pin: str
    blocked: bool = False

    @property
    def natural_key(self) -> str:
        return self.examination_no

    def score_values(self) -> Iterator[Tuple[str, str]]:
        for subject, entry in self.scores.items():
            yield subject, entry["score"]

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": str(uuid.uuid4()),
            "examination_no": self.examination_no,
            "session_yr": self.session_yr,
            "f_name": self.f_name or None,
            "m_name": self.m_name or None,
            "l_name": self.l_name or None,
            "date_of_birth": self.date_of_birth,
            "sex_cd": self.sex_cd or None,
            "institution_cd": self.institution_cd or None,
            "school_name": self.school_name,
            "lga_cd": self.lga_cd or None,
            "scores": {subject: dict(entry) for subject, entry in self.scores.items()},
            "rgs_type": self.rgs_type or None,
            "remark": self.remark or None,
            "access_pin": self.access_pin,
            "blocked": self.blocked,
            "created_at": utc_now(),
        }


@dataclass(frozen=True)
class RegistrationRecord:
    row_number: int
    student_number: str
    acc_code: str
    firstname: str
    othername: str
    lastname: str
    date_of_birth: Optional[date]
    gender: str
    school_type: str
    religious_type: str
    ca_scores: Mapping[str, Mapping[str, str]]
    student_subjects: Tuple[str, ...]
    year: str
    school_code: str = ""
    lga_code: str = ""
    late_registration: bool = False
    prcd: int = 1
    passport: Optional[str] = None

    @property
    def natural_key(self) -> str:
        return self.student_number

    def score_values(self) -> Iterator[Tuple[str, str]]:
        for subject, years in self.ca_scores.items():
            for year in CA_YEARS:
                yield f"{subject} {year}", years.get(year, ABSENT)

    def to_row(self, school_id: int, acc_code: Optional[str] = None, include_late_flag: bool = True) -> Dict[str, Any]:
        row = {
            "id": str(uuid.uuid4()),
            "acc_code": acc_code or self.acc_code,
            "student_number": self.student_number,
            "firstname": self.firstname,
            "othername": self.othername,
            "lastname": self.lastname,
            "date_of_birth": self.date_of_birth,
            "gender": self.gender,
            "school_type": self.school_type,
            "passport": self.passport,
            "ca_scores": {subject: dict(years) for subject, years in self.ca_scores.items()},
            "student_subjects": list(self.student_subjects),
            "religious_type": self.religious_type,
            "year": self.year,
            "prcd": self.prcd,
            "school_id": school_id,
            "created_at": utc_now(),
        }
        if include_late_flag:
            row["late_registration"] = self.late_registration
        return row


NormalizedRecord = Union[ResultRecord, RegistrationRecord]


def _decode(value: str, codes: Mapping[str, str]) -> str:
    return codes.get(value, value)


def normalize_result(raw: RawRow, directory: SchoolDirectory, blocked: bool = False) -> ResultRecord:
    def get(name: str) -> str:
        return raw.get(*RESULT_ALIASES[name])

    examination_no = get("examination_no")
    school_code = get("school_code")
    lga_cd = get("lga_cd")

    scores = {
        subject: {
            "score": normalize_score(raw.values.get(subject)),
            "grade": normalize_score(raw.values.get(f"{subject}GRD")),
        }
        for subject in RESULT_SUBJECTS
    }

    return ResultRecord(
        row_number=raw.row_number,
        examination_no=examination_no,
        session_yr=get("session_yr"),
        f_name=get("f_name"),
        m_name=get("m_name"),
        l_name=get("l_name"),
        date_of_birth=parse_date(get("date_of_birth")),
        sex_cd=get("sex_cd"),
        institution_cd=get("institution_cd"),
        school_code=school_code,
        school_name=directory.school_name(school_code, lga_cd) or f"UNKNOWN (Code: {school_code})",
        lga_cd=lga_cd,
        scores=scores,
        rgs_type=get("rgs_type"),
        remark=get("remark"),
        access_pin=get("access_pin") or f"PIN-{examination_no}",
        blocked=blocked,
    )


def normalize_registration(raw: RawRow, target: UploadTarget, default_year: str) -> RegistrationRecord:
    def get(name: str) -> str:
        return raw.get(*REGISTRATION_ALIASES[name])

    ca_scores: Dict[str, Dict[str, str]] = {}
    subjects = []
    for subject in CA_SUBJECTS:
        years = {
            year: normalize_score(raw.values.get(ca_column(subject, index)))
            for index, year in enumerate(CA_YEARS, start=1)
        }
        ca_scores[subject] = years
        if any(value != ABSENT for value in years.values()):
            subjects.append(subject)

    return RegistrationRecord(
        row_number=raw.row_number,
        student_number=get("student_number"),
        acc_code=get("acc_code"),
        firstname=get("firstname"),
        othername=get("othername"),
        lastname=get("lastname"),
        date_of_birth=parse_date(get("date_of_birth")),
        gender=get("gender"),
        school_type=_decode(get("school_type"), SCHOOL_TYPE_CODES),
        religious_type=_decode(get("religious_type"), RELIGION_CODES),
        ca_scores=ca_scores,
        student_subjects=tuple(subjects),
        year=get("year") or default_year,
        school_code=get("school_code"),
        lga_code=get("lga_code"),
        late_registration=target is UploadTarget.LATE,
    )


def normalize(
    raw: RawRow,
    target: UploadTarget,
    directory: SchoolDirectory,
    blocked: bool = False,
    default_year: str = "2025/2026"
) -> NormalizedRecord:
    """Map one parsed row to the record type of the upload target"""
    if target is UploadTarget.RESULTS:
        return normalize_result(raw, directory, blocked=blocked)
    return normalize_registration(raw, target, default_year)
