"""
Tests for the JSON registration endpoints
"""
import pytest

from exam_portal.db.database import PostRegistration, StudentRegistration
from tests.helpers.db_helpers import count_rows, get_rows


def registration(student_number, **overrides):
    data = {
        "studentNumber": student_number,
        "lastname": "Bello",
        "firstname": "Amina",
        "dateOfBirth": "03/09/2011",
        "gender": "F",
        "schoolType": "Public",
        "caScores": {"ENG": {"year1": "55", "year2": "61", "year3": "70"}},
        "studentSubjects": ["ENG"],
        "religious": {"type": "Islam"},
    }
    data.update(overrides)
    return data


def school_headers(school):
    return {"X-School-Id": str(school.id)}


@pytest.mark.integration
@pytest.mark.asyncio
async def test_save_registrations(client, school, session_factory):
    response = await client.post(
        "/api/school/registrations",
        json={"registrations": [registration("S1"), registration("S2")]},
        headers=school_headers(school),
    )

    assert response.status_code == 201
    assert response.json() == {"message": "Registrations saved successfully", "count": 2}
    async with session_factory() as session:
        stored = await get_rows(session, StudentRegistration)
    assert {r.student_number for r in stored} == {"S1", "S2"}
    assert all(r.school_id == school.id for r in stored)


@pytest.mark.integration
@pytest.mark.asyncio
async def test_existing_student_numbers_are_listed(client, school):
    await client.post(
        "/api/school/registrations", json={"registrations": [registration("S1")]}, headers=school_headers(school)
    )

    response = await client.post(
        "/api/school/registrations",
        json={"registrations": [registration("S1"), registration("S5")]},
        headers=school_headers(school),
    )

    assert response.status_code == 400
    error = response.json()["error"]
    assert error["code"] == "VALIDATION_ERROR"
    assert error["message"] == "The following student numbers already exist: S1"


@pytest.mark.integration
@pytest.mark.asyncio
async def test_override_replaces_registrations(client, school, session_factory):
    await client.post(
        "/api/school/registrations",
        json={"registrations": [registration("S1"), registration("S2")]},
        headers=school_headers(school),
    )

    response = await client.post(
        "/api/school/registrations",
        json={"registrations": [registration("S3")], "override": True},
        headers=school_headers(school),
    )

    assert response.status_code == 201
    assert response.json() == {"message": "Registrations replaced successfully", "count": 1}
    async with session_factory() as session:
        stored = await get_rows(session, StudentRegistration)
    assert [r.student_number for r in stored] == ["S3"]


@pytest.mark.integration
@pytest.mark.asyncio
async def test_invalid_scores_are_reported(client, school, session_factory):
    response = await client.post(
        "/api/school/registrations",
        json={"registrations": [registration("S1", caScores={"MTH": {"year3": "120"}})]},
        headers=school_headers(school),
    )

    assert response.status_code == 400
    errors = response.json()["error"]["details"]["errors"]
    assert errors[0]["studentNumber"] == "S1"
    assert "MTH year3" in errors[0]["error"]
    async with session_factory() as session:
        assert await count_rows(session, StudentRegistration) == 0


@pytest.mark.integration
@pytest.mark.asyncio
async def test_post_registrations_route(client, school, session_factory):
    response = await client.post(
        "/api/school/post-registrations",
        json={"registrations": [registration("P1")]},
        headers=school_headers(school),
    )

    assert response.status_code == 201
    async with session_factory() as session:
        assert await count_rows(session, PostRegistration) == 1


@pytest.mark.integration
@pytest.mark.asyncio
async def test_invalid_school_header(client):
    response = await client.post(
        "/api/school/registrations",
        json={"registrations": [registration("S1")]},
        headers={"X-School-Id": "abc"},
    )
    assert response.status_code == 400
    assert "X-School-Id" in response.json()["error"]["message"]
