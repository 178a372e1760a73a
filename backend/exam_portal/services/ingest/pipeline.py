"""
Bulk upload pipeline: parse -> normalize -> validate -> persist, with progress

One pipeline serves every upload target. The target selects the record type,
the destination table and the natural key column; everything else is shared.

Example:
    ```python
    pipeline = container.get_upload_pipeline()
    prepared = await pipeline.prepare(content, "results.csv", UploadTarget.RESULTS)
    channel = CollectingChannel()
    report = await pipeline.run(prepared, channel)
    ```
"""
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.ext.asyncio import async_sessionmaker

from exam_portal.config import config
from exam_portal.db.database import (
    GLOBAL_RELEASE_PIN, AccessPin, PostRegistration, Result, School, StudentRegistration,
)
from exam_portal.services.ingest.access_codes import generate_access_codes
from exam_portal.services.ingest.batch_writer import BatchWriter, ChunkOutcome
from exam_portal.services.ingest.csv_parser import NO_VALID_DATA, ParsedCsv, parse_csv
from exam_portal.services.ingest.progress import ProgressChannel, ProgressTracker
from exam_portal.services.ingest.report import UploadReport
from exam_portal.services.ingest.row_mapper import (
    NormalizedRecord, RegistrationRecord, UploadTarget, normalize,
)
from exam_portal.services.ingest.validation import Accepted, evaluate, fetch_existing_keys
from exam_portal.services.reference_data import SchoolDirectory
from exam_portal.services.shared.exceptions import ChannelClosed, InputFormatError, SchoolNotFoundError
from exam_portal.utils.logging import get_logger
from exam_portal.utils.metrics import record_upload
from exam_portal.utils.thread_pool import run_in_thread_pool

logger = get_logger(__name__)

_MODELS = {
    UploadTarget.RESULTS: (Result, Result.examination_no, "results"),
    UploadTarget.REGULAR: (StudentRegistration, StudentRegistration.student_number, "registrations"),
    UploadTarget.LATE: (StudentRegistration, StudentRegistration.student_number, "registrations"),
    UploadTarget.POST: (PostRegistration, PostRegistration.student_number, "post registrations"),
}


@dataclass
class PreparedUpload:
    target: UploadTarget
    parsed: ParsedCsv
    upload_id: str
    school_id: Optional[int] = None


class UploadPipeline:
    """Runs bulk CSV uploads against one database"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        batch_writer: BatchWriter,
        school_directory: SchoolDirectory,
        progress_interval: int = config.UPLOAD_PROGRESS_INTERVAL,
        error_display_limit: int = config.ERROR_DISPLAY_LIMIT,
        default_year: str = config.DEFAULT_REGISTRATION_YEAR
    ):
        self.session_factory = session_factory
        self.batch_writer = batch_writer
        self.school_directory = school_directory
        self.progress_interval = max(1, progress_interval)
        self.error_display_limit = error_display_limit
        self.default_year = default_year

    async def prepare(
        self,
        content: bytes,
        filename: str,
        target: UploadTarget,
        school_id: Optional[int] = None
    ) -> PreparedUpload:
        """
        Parse the file and check the owner, before any progress is reported.

        Raises:
            InputFormatError: The file is unreadable or holds no well-formed row
            SchoolNotFoundError: A registration upload names an unknown school
        """
        parsed = await run_in_thread_pool(parse_csv, content, filename)
        if not parsed.rows:
            raise InputFormatError(NO_VALID_DATA, filename=filename)

        if target.is_registration:
            async with self.session_factory() as session:
                school = await session.get(School, school_id) if school_id is not None else None
            if school is None:
                raise SchoolNotFoundError(school_id)

        upload_id = uuid.uuid4().hex[:8]
        logger.info(
            f"Prepared {target.value} upload {filename!r}: {len(parsed)} row(s), "
            f"{parsed.skipped_lines} malformed line(s) skipped",
            extra={"upload_id": upload_id}
        )
        return PreparedUpload(target=target, parsed=parsed, upload_id=upload_id, school_id=school_id)

    async def run(self, prepared: PreparedUpload, channel: ProgressChannel) -> UploadReport:
        """
        Validate and persist a prepared upload, publishing progress to `channel`.

        A closed channel aborts the run; chunks committed before that stay.
        Unexpected errors are reported as a failed completion event and re-raised.
        """
        tracker = ProgressTracker(channel, self.progress_interval)
        noun = _MODELS[prepared.target][2]
        report = UploadReport(noun=noun, total_processed=len(prepared.parsed))
        try:
            await self._run(prepared, tracker, report)
        except ChannelClosed:
            report.aborted = True
            self._record(prepared, report, "aborted")
            logger.warning(
                f"Upload {prepared.upload_id} aborted: progress consumer disconnected "
                f"({report.created} row(s) already committed)",
                extra={"upload_id": prepared.upload_id}
            )
        except Exception as e:
            report.aborted = True
            logger.error(f"Upload {prepared.upload_id} failed: {e}", exc_info=True, extra={"upload_id": prepared.upload_id})
            self._record(prepared, report, "error")
            if not tracker.completed:
                try:
                    await tracker.complete(
                        f"Failed to process CSV file: {e}",
                        error="Failed to process CSV file",
                        details=str(e),
                        **report.summary(),
                    )
                except ChannelClosed:
                    logger.debug("Failure event not delivered; consumer already gone")
            raise
        else:
            self._record(prepared, report, "complete")
        return report

    @staticmethod
    def _record(prepared: PreparedUpload, report: UploadReport, status: str) -> None:
        record_upload(
            prepared.target.value,
            status,
            created=report.created,
            rejected=len(report.rejections),
            failed=max(0, report.accepted - report.created) if status == "complete" else 0,
        )

    async def _run(self, prepared: PreparedUpload, tracker: ProgressTracker, report: UploadReport) -> None:
        model, key_column, _ = _MODELS[prepared.target]
        rows = prepared.parsed.rows
        total = len(rows)

        await tracker.start_validation()
        blocked = await self._results_blocked() if prepared.target is UploadTarget.RESULTS else False

        accepted: List[NormalizedRecord] = []
        seen: Set[str] = set()
        async with self.session_factory() as session:
            for start in range(0, total, self.progress_interval):
                records = [
                    normalize(raw, prepared.target, self.school_directory, blocked=blocked, default_year=self.default_year)
                    for raw in rows[start:start + self.progress_interval]
                ]
                existing = await fetch_existing_keys(session, key_column, [r.natural_key for r in records])
                for offset, record in enumerate(records):
                    outcome = evaluate(record, existing, seen)
                    if isinstance(outcome, Accepted):
                        accepted.append(record)
                        seen.add(record.natural_key)
                    else:
                        report.rejections.append(outcome)
                    done = start + offset + 1
                    if tracker.should_report_validation(done, total):
                        await tracker.validated(done, total)

        report.accepted = len(accepted)
        await tracker.start_insert()

        insert_rows = await self._insert_rows(prepared, accepted)
        processed = 0

        async def on_chunk(outcome: ChunkOutcome, chunks_done: int, total_chunks: int) -> None:
            nonlocal processed
            processed += outcome.attempted
            report.created += outcome.inserted
            await tracker.inserted(chunks_done, total_chunks, processed, len(insert_rows))

        result = await self.batch_writer.persist(model, insert_rows, on_chunk=on_chunk, upload_id=prepared.upload_id)
        report.failed_chunks = len(result.failed_chunks)
        if result.aborted:
            raise ChannelClosed("Progress consumer disconnected during insert")

        if result.created < len(insert_rows):
            logger.warning(
                f"Upload {prepared.upload_id}: created {result.created} of {len(insert_rows)} accepted row(s) "
                f"({report.failed_chunks} failed chunk(s))",
                extra={"upload_id": prepared.upload_id}
            )
        logger.info(
            f"Upload {prepared.upload_id} complete: {result.created} created, "
            f"{len(report.rejections)} rejected of {total}",
            extra={"upload_id": prepared.upload_id, "created_count": result.created}
        )
        await tracker.complete(report.message(self.error_display_limit), **report.summary())

    async def _results_blocked(self) -> bool:
        """New results are withheld while the global release pin exists and is inactive"""
        async with self.session_factory() as session:
            result = await session.execute(select(AccessPin.is_active).where(AccessPin.pin == GLOBAL_RELEASE_PIN))
            is_active = result.scalar_one_or_none()
        return is_active is not None and not is_active

    async def _insert_rows(self, prepared: PreparedUpload, accepted: List[NormalizedRecord]) -> List[Dict]:
        if prepared.target is UploadTarget.RESULTS:
            return [record.to_row() for record in accepted]

        registrations: List[RegistrationRecord] = accepted  # type: ignore[assignment]
        missing = [record for record in registrations if not record.acc_code]
        generated: List[str] = []
        if missing:
            async with self.session_factory() as session:
                generated = await generate_access_codes(
                    session, len(missing), reserved=[r.acc_code for r in registrations if r.acc_code]
                )
        codes = iter(generated)
        include_late_flag = prepared.target is not UploadTarget.POST
        return [
            record.to_row(
                prepared.school_id,
                acc_code=record.acc_code or next(codes),
                include_late_flag=include_late_flag,
            )
            for record in registrations
        ]
