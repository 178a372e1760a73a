"""
Tests for chunked persistence and the atomic replace path
"""
import asyncio
import uuid

import pytest
from sqlalchemy.exc import IntegrityError

from exam_portal.db.database import Result, StudentRegistration
from exam_portal.services.ingest.batch_writer import BatchWriter, split_chunks
from exam_portal.services.shared.exceptions import ChannelClosed, TransactionTimeout
from exam_portal.utils.date_utils import utc_now
from tests.helpers.db_helpers import count_rows, get_rows


def result_dict(examination_no, session_yr="2024"):
    return {
        "id": str(uuid.uuid4()),
        "examination_no": examination_no,
        "session_yr": session_yr,
        "scores": {"ENG": {"score": "50", "grade": "C"}},
        "created_at": utc_now(),
    }


def registration_dict(student_number, school_id):
    return {
        "id": str(uuid.uuid4()),
        "acc_code": f"ACC{student_number}",
        "student_number": student_number,
        "lastname": "Okafor",
        "school_id": school_id,
        "late_registration": False,
        "created_at": utc_now(),
    }


def test_split_chunks():
    assert split_chunks(list(range(5)), 2) == [[0, 1], [2, 3], [4]]
    assert split_chunks([], 3) == []


@pytest.mark.database
@pytest.mark.asyncio
async def test_persist_commits_every_chunk(session_factory):
    writer = BatchWriter(session_factory, chunk_size=2)
    seen = []

    async def on_chunk(outcome, done, total):
        seen.append((outcome.inserted, done, total))

    result = await writer.persist(Result, [result_dict(f"EX{i}") for i in range(5)], on_chunk=on_chunk)

    assert result.created == 5
    assert result.total_chunks == 3
    assert seen == [(2, 1, 3), (2, 2, 3), (1, 3, 3)]
    async with session_factory() as session:
        assert await count_rows(session, Result) == 5


@pytest.mark.database
@pytest.mark.asyncio
async def test_failed_chunk_does_not_stop_later_chunks(session_factory):
    writer = BatchWriter(session_factory, chunk_size=2)
    rows = [result_dict(f"EX{i}") for i in range(5)]
    rows[2]["session_yr"] = None  # NOT NULL violation in chunk 2

    result = await writer.persist(Result, rows)

    assert result.created == 3
    assert [chunk.index for chunk in result.failed_chunks] == [2]
    assert not result.aborted
    async with session_factory() as session:
        stored = {row.examination_no for row in await get_rows(session, Result)}
    assert stored == {"EX0", "EX1", "EX4"}


@pytest.mark.database
@pytest.mark.asyncio
async def test_existing_keys_are_skipped_not_failed(session_factory):
    writer = BatchWriter(session_factory, chunk_size=10)
    await writer.persist(Result, [result_dict("EX1")])

    result = await writer.persist(Result, [result_dict("EX1"), result_dict("EX2")])

    assert result.created == 1
    assert not result.failed_chunks
    async with session_factory() as session:
        assert await count_rows(session, Result) == 2


@pytest.mark.database
@pytest.mark.asyncio
async def test_statements_respect_parameter_limit(session_factory):
    # 5 columns per row and 12 parameters per statement -> 2 rows per statement
    writer = BatchWriter(session_factory, chunk_size=50, max_variables=12)
    result = await writer.persist(Result, [result_dict(f"EX{i}") for i in range(7)])
    assert result.created == 7
    assert result.total_chunks == 1


@pytest.mark.database
@pytest.mark.asyncio
async def test_closed_channel_stops_insert(session_factory):
    writer = BatchWriter(session_factory, chunk_size=1)

    async def on_chunk(outcome, done, total):
        raise ChannelClosed("gone")

    result = await writer.persist(Result, [result_dict(f"EX{i}") for i in range(3)], on_chunk=on_chunk)

    assert result.aborted
    assert result.created == 1
    async with session_factory() as session:
        assert await count_rows(session, Result) == 1


@pytest.mark.database
@pytest.mark.asyncio
async def test_replace_scope_swaps_rows(session_factory, school):
    writer = BatchWriter(session_factory)
    await writer.insert_atomic(StudentRegistration, [registration_dict(n, school.id) for n in ("A", "B")])

    outcome = await writer.replace_scope(
        StudentRegistration,
        StudentRegistration.school_id == school.id,
        [registration_dict(n, school.id) for n in ("B", "C", "D")],
    )

    assert outcome.deleted == 2
    assert outcome.created == 3
    async with session_factory() as session:
        stored = {row.student_number for row in await get_rows(session, StudentRegistration)}
    assert stored == {"B", "C", "D"}


@pytest.mark.database
@pytest.mark.asyncio
async def test_replace_scope_rolls_back_on_error(session_factory, school):
    writer = BatchWriter(session_factory)
    await writer.insert_atomic(StudentRegistration, [registration_dict(n, school.id) for n in ("A", "B")])

    duplicate = registration_dict("C", school.id)
    with pytest.raises(IntegrityError):
        await writer.replace_scope(
            StudentRegistration,
            StudentRegistration.school_id == school.id,
            [duplicate, {**duplicate, "id": str(uuid.uuid4())}],
        )

    async with session_factory() as session:
        stored = {row.student_number for row in await get_rows(session, StudentRegistration)}
    assert stored == {"A", "B"}


@pytest.mark.database
@pytest.mark.asyncio
async def test_replace_scope_timeout_leaves_rows_untouched(session_factory, school, monkeypatch):
    writer = BatchWriter(session_factory)
    await writer.insert_atomic(StudentRegistration, [registration_dict("A", school.id)])

    async def slow_insert(self, session, model, rows, skip_duplicates=True):
        await asyncio.sleep(5)
        return 0

    monkeypatch.setattr(BatchWriter, "_insert_all", slow_insert)

    with pytest.raises(TransactionTimeout) as exc_info:
        await writer.replace_scope(
            StudentRegistration,
            StudentRegistration.school_id == school.id,
            [registration_dict("Z", school.id)],
            timeout_seconds=0.1,
        )
    assert exc_info.value.timeout == 0.1

    async with session_factory() as session:
        stored = {row.student_number for row in await get_rows(session, StudentRegistration)}
    assert stored == {"A"}


@pytest.mark.database
@pytest.mark.asyncio
async def test_insert_atomic_is_all_or_nothing(session_factory, school):
    writer = BatchWriter(session_factory)
    await writer.insert_atomic(StudentRegistration, [registration_dict("A", school.id)])

    with pytest.raises(IntegrityError):
        await writer.insert_atomic(
            StudentRegistration,
            [registration_dict("B", school.id), registration_dict("A", school.id)],
        )

    async with session_factory() as session:
        assert await count_rows(session, StudentRegistration) == 1
