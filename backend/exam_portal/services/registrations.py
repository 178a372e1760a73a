"""
JSON registration submission for a school

A school submits its whole registration list at once. With `override` the
school's existing rows are replaced in one bounded transaction; otherwise the
submission is refused if any student number already exists, and inserted in
one transaction if none does.
"""
import logging
from typing import List, Tuple

from sqlalchemy.ext.asyncio import async_sessionmaker

from exam_portal.config import config
from exam_portal.db.database import PostRegistration, School, StudentRegistration
from exam_portal.models.schemas import RegistrationPayload
from exam_portal.services.ingest.access_codes import generate_access_codes
from exam_portal.services.ingest.batch_writer import BatchWriter
from exam_portal.services.ingest.row_mapper import ABSENT, RegistrationRecord, normalize_score
from exam_portal.services.ingest.validation import CA_SCORE_RANGE, fetch_existing_keys, missing_required, score_in_range
from exam_portal.services.shared.exceptions import RegistrationRejected, SchoolNotFoundError
from exam_portal.utils.date_utils import parse_date

logger = logging.getLogger(__name__)


def payload_to_record(payload: RegistrationPayload, index: int, default_year: str, default_prcd: int) -> RegistrationRecord:
    ca_scores = {
        subject.upper(): {
            "year1": normalize_score(score.year1),
            "year2": normalize_score(score.year2),
            "year3": normalize_score(score.year3),
        }
        for subject, score in payload.caScores.items()
    }
    return RegistrationRecord(
        row_number=index,
        student_number=payload.studentNumber.strip(),
        acc_code="",
        firstname=payload.firstname.strip(),
        othername=payload.othername.strip(),
        lastname=payload.lastname.strip(),
        date_of_birth=parse_date(payload.dateOfBirth),
        gender=payload.gender,
        school_type=payload.schoolType,
        religious_type=payload.religious.type if payload.religious else "",
        ca_scores=ca_scores,
        student_subjects=tuple(payload.studentSubjects),
        year=payload.year or default_year,
        late_registration=payload.isLateRegistration,
        prcd=payload.prcd or default_prcd,
        passport=payload.passport,
    )


REQUIRED_FIELDS_MESSAGE = "Missing required fields (studentNumber or name)"


def required_errors(records: List[RegistrationRecord]) -> List[dict]:
    return [
        {"row": record.row_number, "studentNumber": record.student_number, "error": REQUIRED_FIELDS_MESSAGE}
        for record in records
        if missing_required(record)
    ]


def score_errors(records: List[RegistrationRecord]) -> List[dict]:
    errors = []
    for record in records:
        for label, value in record.score_values():
            if value != ABSENT and not score_in_range(value, CA_SCORE_RANGE):
                errors.append({
                    "row": record.row_number,
                    "studentNumber": record.student_number,
                    "error": f"Invalid score for {label}: {value!r} (must be between 1 and 100)",
                })
    return errors


class RegistrationService:
    """Saves JSON registration submissions for one school at a time"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        batch_writer: BatchWriter,
        default_year: str = config.DEFAULT_REGISTRATION_YEAR,
        default_prcd: int = config.DEFAULT_PRCD
    ):
        self.session_factory = session_factory
        self.batch_writer = batch_writer
        self.default_year = default_year
        self.default_prcd = default_prcd

    async def submit(
        self,
        school_id: int,
        registrations: List[RegistrationPayload],
        override: bool = False,
        post: bool = False
    ) -> Tuple[str, int]:
        """
        Save a school's registrations.

        Returns:
            (message, number of rows created)

        Raises:
            RegistrationRejected: Empty submission, missing fields, invalid scores or existing student numbers
            SchoolNotFoundError: Unknown school
            TransactionTimeout: The override transaction exceeded its bounds
        """
        if not registrations:
            raise RegistrationRejected("No registrations to save")

        model = PostRegistration if post else StudentRegistration
        records = [
            payload_to_record(payload, index, self.default_year, self.default_prcd)
            for index, payload in enumerate(registrations, start=1)
        ]
        errors = required_errors(records)
        if errors:
            raise RegistrationRejected("One or more registrations are missing required fields", errors=errors)
        errors = score_errors(records)
        if errors:
            raise RegistrationRejected("One or more CA scores are invalid", errors=errors)

        async with self.session_factory() as session:
            if await session.get(School, school_id) is None:
                raise SchoolNotFoundError(school_id)
            codes = await generate_access_codes(session, len(records))
            if not override:
                existing = await fetch_existing_keys(session, model.student_number, [r.student_number for r in records])
                if existing:
                    duplicates = ", ".join(r.student_number for r in records if r.student_number in existing)
                    raise RegistrationRejected(f"The following student numbers already exist: {duplicates}")

        rows = [
            record.to_row(school_id, acc_code=code, include_late_flag=not post)
            for record, code in zip(records, codes)
        ]

        if override:
            outcome = await self.batch_writer.replace_scope(model, model.school_id == school_id, rows)
            logger.info(f"School {school_id}: replaced {outcome.deleted} {model.__tablename__} row(s) with {outcome.created}")
            return "Registrations replaced successfully", outcome.created

        created = await self.batch_writer.insert_atomic(model, rows)
        logger.info(f"School {school_id}: saved {created} {model.__tablename__} row(s)")
        return "Registrations saved successfully", created
