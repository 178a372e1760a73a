"""
Tests for health check and basic endpoints
"""
import pytest
from httpx import ASGITransport, AsyncClient

from exam_portal.config import config
from exam_portal.main import app


@pytest.mark.smoke
@pytest.mark.asyncio
async def test_root_endpoint(client: AsyncClient):
    """Test root endpoint returns correct message"""
    response = await client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["message"] == "Examination Portal API"
    assert "version" in data


@pytest.mark.smoke
@pytest.mark.asyncio
async def test_health_endpoint(client: AsyncClient):
    response = await client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


@pytest.mark.smoke
@pytest.mark.asyncio
async def test_database_health(client: AsyncClient):
    response = await client.get("/health/database")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["details"]["dialect"] == "sqlite"


@pytest.mark.asyncio
async def test_requests_without_container_are_unavailable():
    app.state.container = None
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/health/database")
    assert response.status_code == 503
    assert response.json()["error"]["code"] == "SERVICE_UNAVAILABLE"


@pytest.mark.asyncio
async def test_openapi_schema_lists_portal_routes(client: AsyncClient):
    response = await client.get("/openapi.json")
    assert response.status_code == 200
    paths = response.json()["paths"]
    for path in (
        "/api/results/bulk",
        "/api/registrations/bulk",
        "/api/school/registrations",
        "/api/school/post-registrations",
        "/api/admin/students/export",
        "/api/admin/students/export-chunk",
    ):
        assert path in paths


@pytest.mark.asyncio
async def test_api_docs_accessible(client: AsyncClient):
    response = await client.get("/docs")
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_metrics_disabled_by_default(client: AsyncClient):
    response = await client.get("/metrics")
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_metrics_count_uploads(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(config, "METRICS_ENABLED", True)
    content = b"SESSIONYR,FNAME,EXAMINATIONNO\n2024,Ada,EX77\n"
    await client.post("/api/results/bulk", files={"file": ("r.csv", content, "text/csv")})

    response = await client.get("/metrics")
    assert response.status_code == 200
    assert 'exam_portal_uploads_total{target="results",status="complete"}' in response.text
    assert 'exam_portal_upload_rows_total{target="results",outcome="created"}' in response.text
