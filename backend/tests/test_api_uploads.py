"""
Tests for the bulk upload endpoints
"""
import json

import pytest

from exam_portal.db.database import PostRegistration, Result, StudentRegistration
from tests.helpers.csv_helpers import registration_row, registrations_csv, result_row, results_csv
from tests.helpers.db_helpers import count_rows


def csv_file(content: bytes, name: str = "upload.csv"):
    return {"file": (name, content, "text/csv")}


def parse_events(body: str):
    return [json.loads(line[len("data: "):]) for line in body.splitlines() if line.startswith("data: ")]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_results_upload_returns_summary(client, session_factory):
    rows = [result_row("EX1"), result_row("EX2", ENG="250"), result_row("EX3")]
    response = await client.post("/api/results/bulk", files=csv_file(results_csv(rows)))

    assert response.status_code == 201
    data = response.json()
    assert data["success"] is True
    assert data["created"] == 2
    assert data["totalProcessed"] == 3
    assert data["errors"][0]["row"] == 3
    assert data["errors"][0]["reason"] == "ScoreOutOfRange"
    assert data["message"].startswith("Successfully created 2 results. 1 row(s) had errors: Row 3:")
    async with session_factory() as session:
        assert await count_rows(session, Result) == 2


@pytest.mark.integration
@pytest.mark.asyncio
async def test_results_upload_streams_progress(client):
    rows = [result_row(f"EX{i}") for i in range(4)]
    response = await client.post(
        "/api/results/bulk",
        files=csv_file(results_csv(rows)),
        headers={"Accept": "text/event-stream"},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    events = parse_events(response.text)
    assert events[0]["phase"] == "validating"
    assert events[0]["progress"] == 0
    assert any(event["phase"] == "inserting" for event in events)
    progress = [event["progress"] for event in events]
    assert progress == sorted(progress)
    final = events[-1]
    assert final["phase"] == "complete"
    assert final["progress"] == 100
    assert final["success"] is True
    assert final["created"] == 4
    assert final["totalProcessed"] == 4


@pytest.mark.integration
@pytest.mark.asyncio
@pytest.mark.parametrize("files,message", [
    (None, "No file uploaded"),
    ({"file": ("scores.xlsx", b"binary", "application/octet-stream")}, "Only CSV files are accepted"),
])
async def test_upload_rejects_missing_or_non_csv_file(client, files, message):
    response = await client.post("/api/results/bulk", files=files, data={"note": "x"})
    assert response.status_code == 400
    assert response.json()["error"]["message"] == message


@pytest.mark.integration
@pytest.mark.asyncio
async def test_empty_csv_is_rejected(client):
    response = await client.post("/api/results/bulk", files=csv_file(b""))
    assert response.status_code == 400
    assert response.json()["error"]["code"] == "INPUT_FORMAT_ERROR"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_registration_upload_for_school(client, school, session_factory):
    content = registrations_csv([registration_row("S1"), registration_row("S2")])
    response = await client.post(
        "/api/registrations/bulk",
        files=csv_file(content),
        data={"registrationType": "late"},
        headers={"X-School-Id": str(school.id)},
    )

    assert response.status_code == 201
    assert response.json()["created"] == 2
    assert response.json()["message"] == "Successfully created 2 registrations"
    async with session_factory() as session:
        assert await count_rows(session, StudentRegistration, late_registration=True) == 2


@pytest.mark.integration
@pytest.mark.asyncio
async def test_post_registration_upload(client, school, session_factory):
    response = await client.post(
        "/api/registrations/bulk",
        files=csv_file(registrations_csv([registration_row("P1")])),
        data={"registrationType": "post"},
        headers={"X-School-Id": str(school.id)},
    )
    assert response.status_code == 201
    async with session_factory() as session:
        assert await count_rows(session, PostRegistration) == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_registration_upload_requires_school_header(client):
    response = await client.post(
        "/api/registrations/bulk", files=csv_file(registrations_csv([registration_row("S1")]))
    )
    assert response.status_code == 400
    assert response.json()["error"]["message"] == "Missing X-School-Id header"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_registration_upload_for_unknown_school(client, test_engine):
    response = await client.post(
        "/api/registrations/bulk",
        files=csv_file(registrations_csv([registration_row("S1")])),
        headers={"X-School-Id": "404"},
    )
    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_FOUND"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_invalid_registration_type(client, school):
    response = await client.post(
        "/api/registrations/bulk",
        files=csv_file(registrations_csv([registration_row("S1")])),
        data={"registrationType": "supplementary"},
        headers={"X-School-Id": str(school.id)},
    )
    assert response.status_code == 400
    assert response.json()["error"]["details"]["allowed"] == ["late", "post", "regular"]
