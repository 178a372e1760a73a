"""
Tests for cursor-paginated registration export
"""
import csv
import io
import logging
from datetime import datetime, timedelta

import pytest
from sqlalchemy import delete

from exam_portal.db.database import PostRegistration, StudentRegistration
from exam_portal.services.export import ExportFilters, ExportService
from exam_portal.services.export.code_map import CodeResolutionMap
from exam_portal.services.export.rows import (
    LATE_TABLE, POST_TABLE, REGULAR_TABLE, RegularRegistration, csv_lines, header_line, row_fields,
)
from exam_portal.services.ingest.batch_writer import BatchWriter
from exam_portal.services.ingest.field_map import EXPORT_HEADERS, REGISTRATION_COLUMNS
from exam_portal.services.ingest.pipeline import UploadPipeline
from exam_portal.services.ingest.progress import CollectingChannel
from exam_portal.services.ingest.row_mapper import UploadTarget
from exam_portal.services.shared.exceptions import InvalidCursorError
from tests.helpers.csv_helpers import registration_row, registrations_csv
from tests.helpers.db_helpers import get_rows, make_registration


@pytest.fixture
def service(session_factory, school_directory, lga_mapping):
    return ExportService(session_factory, school_directory, lga_mapping, chunk_size=2, prog_id="2")


async def collect_csv(service, filters=ExportFilters()):
    text = "".join([part async for part in service.stream_csv(filters)])
    return list(csv.reader(io.StringIO(text)))


def test_csv_lines_quote_only_when_needed():
    rows = [
        ["plain", "a,b"],
        ['say "hi"', "line\nbreak"],
        [None, "O'Neil, Jr"],
    ]
    assert csv_lines(rows) == (
        'plain,"a,b"\n'
        '"say ""hi""","line\nbreak"\n'
        ',"O\'Neil, Jr"\n'
    )
    assert header_line().startswith("S/N,school_session,progID,")
    assert header_line().endswith("DATE OF BIRTH\n")


def test_row_fields_layout():
    registration = make_registration(StudentRegistration, 1, "S1", id="r1", religious_type="Christian")
    view = RegularRegistration.from_row(registration, "001", "LG01")
    fields = row_fields(view, CodeResolutionMap({"LG01-001": "LG01"}), "2")

    assert len(fields) == len(EXPORT_HEADERS) - 1
    named = dict(zip(EXPORT_HEADERS[1:], fields))
    assert named["school_session"] == "2025/2026"
    assert named["progID"] == "2"
    assert named["Reg. No"] == "S1"
    assert named["ACCESSCODE"] == "ACCS1"
    assert (named["ENGY1"], named["ENGY2"], named["ENGY3"]) == ("55", "-", "70")
    assert named["MTHY1"] == ""
    assert named["rgsType"] == "1"
    assert named["schType"] == "1"
    assert named["schcode"] == "001"
    assert named["lgacode"] == "LG01"
    assert named["DATE OF BIRTH"] == "03/09/2011"


@pytest.mark.database
@pytest.mark.asyncio
async def test_chunks_are_disjoint_and_cover_the_table(service, test_db, school):
    same_time = datetime(2025, 3, 1, 9, 0, 0)
    test_db.add_all([
        make_registration(StudentRegistration, school.id, f"S{i}", created_at=same_time) for i in range(5)
    ])
    await test_db.commit()

    seen = []
    cursor = None
    pages = 0
    while True:
        chunk = await service.fetch_chunk(ExportFilters(), REGULAR_TABLE, cursor)
        pages += 1
        seen.extend(row[2] for row in chunk["rows"])
        if not chunk["hasMore"]:
            assert chunk["nextCursor"] is None
            break
        cursor = chunk["nextCursor"]

    assert pages == 3
    assert len(seen) == len(set(seen)) == 5


@pytest.mark.database
@pytest.mark.asyncio
async def test_rows_added_during_export_do_not_shift_pages(service, test_db, school):
    base = datetime(2025, 3, 1, 9, 0, 0)
    test_db.add_all([
        make_registration(StudentRegistration, school.id, f"S{i}", created_at=base - timedelta(minutes=i))
        for i in range(4)
    ])
    await test_db.commit()

    first = await service.fetch_chunk(ExportFilters(), REGULAR_TABLE)
    test_db.add(make_registration(StudentRegistration, school.id, "NEW", created_at=base + timedelta(hours=1)))
    await test_db.commit()
    second = await service.fetch_chunk(ExportFilters(), REGULAR_TABLE, first["nextCursor"])

    assert [row[2] for row in first["rows"]] == ["S0", "S1"]
    assert [row[2] for row in second["rows"]] == ["S2", "S3"]


@pytest.mark.database
@pytest.mark.asyncio
async def test_unknown_cursor_is_rejected(service, test_engine):
    with pytest.raises(InvalidCursorError):
        await service.fetch_chunk(ExportFilters(), REGULAR_TABLE, "no-such-row")


@pytest.mark.database
@pytest.mark.asyncio
async def test_stream_numbers_rows_across_tables(service, test_db, school):
    base = datetime(2025, 3, 1, 9, 0, 0)
    test_db.add_all([
        make_registration(StudentRegistration, school.id, "R1", created_at=base),
        make_registration(StudentRegistration, school.id, "R2", created_at=base + timedelta(minutes=1)),
        make_registration(StudentRegistration, school.id, "R3", created_at=base - timedelta(minutes=1)),
        make_registration(StudentRegistration, school.id, "L1", late_registration=True),
        make_registration(PostRegistration, school.id, "P1"),
    ])
    await test_db.commit()

    rows = await collect_csv(service)

    assert rows[0] == EXPORT_HEADERS
    body = rows[1:]
    assert [row[0] for row in body] == ["1", "2", "3", "4", "5"]
    assert [row[3] for row in body] == ["R2", "R1", "R3", "L1", "P1"]
    assert all(row[EXPORT_HEADERS.index("lgacode")] == "LG01" for row in body)


@pytest.mark.database
@pytest.mark.asyncio
async def test_counts_and_filters(service, test_db, school):
    test_db.add_all([
        make_registration(StudentRegistration, school.id, "R1", lastname="Adebayo"),
        make_registration(StudentRegistration, school.id, "R2"),
        make_registration(StudentRegistration, school.id, "L1", late_registration=True),
        make_registration(PostRegistration, school.id, "P1"),
        make_registration(StudentRegistration, None, "ORPHAN"),
    ])
    await test_db.commit()

    counts = await service.count_tables(ExportFilters())
    assert counts == {
        "totalCount": 5,
        "tables": [
            {"table": REGULAR_TABLE, "count": 3},
            {"table": LATE_TABLE, "count": 1},
            {"table": POST_TABLE, "count": 1},
        ],
    }

    searched = await service.count_tables(ExportFilters(search="adebayo"))
    assert searched["totalCount"] == 1

    by_lga = await service.count_tables(ExportFilters(lga="Central"))
    assert by_lga["totalCount"] == 4

    other_lga = await service.count_tables(ExportFilters(lga="Riverside"))
    assert other_lga["totalCount"] == 0

    late_only = await service.count_tables(ExportFilters(registration_type="late", school_code="001"))
    assert late_only == {"totalCount": 1, "tables": [{"table": LATE_TABLE, "count": 1}]}


@pytest.mark.database
@pytest.mark.asyncio
async def test_orphaned_registration_exports_blank_school_columns(service, test_db):
    test_db.add(make_registration(StudentRegistration, None, "ORPHAN"))
    await test_db.commit()

    rows = await collect_csv(service)
    named = dict(zip(EXPORT_HEADERS, rows[1]))
    assert named["schcode"] == ""
    assert named["lgacode"] == ""


@pytest.mark.database
@pytest.mark.asyncio
async def test_abandoned_stream_is_logged(service, test_db, school, caplog):
    test_db.add_all([make_registration(StudentRegistration, school.id, f"S{i}") for i in range(5)])
    await test_db.commit()

    stream = service.stream_csv(ExportFilters())
    await stream.__anext__()
    await stream.__anext__()
    with caplog.at_level(logging.WARNING):
        await stream.aclose()

    assert "Export aborted by client after 2 row(s)" in caplog.text


@pytest.mark.database
@pytest.mark.asyncio
async def test_failing_fetch_ends_the_stream_with_an_error(service, test_db, school, caplog, monkeypatch):
    test_db.add_all([make_registration(StudentRegistration, school.id, f"S{i}") for i in range(5)])
    await test_db.commit()
    render = service.render
    calls = []

    def failing_render(table, rows, code_map):
        calls.append(table)
        if len(calls) == 2:
            raise RuntimeError("connection lost")
        return render(table, rows, code_map)

    monkeypatch.setattr(service, "render", failing_render)
    parts = []
    with caplog.at_level(logging.ERROR):
        with pytest.raises(RuntimeError, match="connection lost"):
            async for part in service.stream_csv(ExportFilters()):
                parts.append(part)

    assert len(parts) == 2
    assert "Export failed after 2 row(s): connection lost" in caplog.text


@pytest.mark.database
@pytest.mark.asyncio
async def test_export_can_be_uploaded_again(service, school, session_factory, school_directory):
    pipeline = UploadPipeline(session_factory, BatchWriter(session_factory), school_directory)
    rows = [
        registration_row("S1"),
        registration_row("S2", ACCESSCODE="KEEP000002", ENGY2="", rgsType="2", schType="1"),
        registration_row("S3", **{"Other Name(s)": "Ngozi, Ada"}),
    ]
    prepared = await pipeline.prepare(registrations_csv(rows), "r.csv", UploadTarget.REGULAR, school_id=school.id)
    await pipeline.run(prepared, CollectingChannel())

    def snapshot(registrations):
        return {
            r.student_number: (r.acc_code, r.othername, r.ca_scores, r.religious_type, r.school_type, r.date_of_birth)
            for r in registrations
        }

    async with session_factory() as session:
        before = snapshot(await get_rows(session, StudentRegistration))

    exported = await collect_csv(service)
    assert exported[0][1:] == REGISTRATION_COLUMNS
    stripped = [dict(zip(REGISTRATION_COLUMNS, row[1:])) for row in exported[1:]]

    async with session_factory() as session:
        await session.execute(delete(StudentRegistration))
        await session.commit()

    prepared = await pipeline.prepare(registrations_csv(stripped), "again.csv", UploadTarget.REGULAR, school_id=school.id)
    report = await pipeline.run(prepared, CollectingChannel())

    assert report.created == 3
    async with session_factory() as session:
        after = snapshot(await get_rows(session, StudentRegistration))
    assert after == before
