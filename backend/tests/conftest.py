"""
Pytest configuration and fixtures for the examination portal tests
"""
from typing import AsyncGenerator

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from exam_portal.db.database import School, SchoolData, init_db
from exam_portal.main import app
from exam_portal.services.container import ServiceContainer
from exam_portal.services.ingest.batch_writer import BatchWriter
from exam_portal.services.reference_data import LgaMapping, SchoolDirectory, SchoolEntry


@pytest.fixture(scope="function")
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """
    Engine over a fresh SQLite file.
    Each test gets its own database.
    """
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}", echo=False)
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture(scope="function")
def session_factory(test_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(scope="function")
async def test_db(session_factory) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest.fixture(scope="function")
def school_directory() -> SchoolDirectory:
    """Bundled-dataset stand-in with two schools"""
    return SchoolDirectory([
        SchoolEntry(lga_code="LG01", l_code="101", sch_code="001", prog_id="2", sch_name="Central Academy"),
        SchoolEntry(lga_code="LG02", l_code="102", sch_code="7", prog_id="2", sch_name="Riverside College"),
    ])


@pytest.fixture(scope="function")
def lga_mapping() -> LgaMapping:
    return LgaMapping({"Central": "LG01", "Riverside": "LG02"})


@pytest.fixture(scope="function")
def batch_writer(session_factory) -> BatchWriter:
    return BatchWriter(session_factory, chunk_size=50)


@pytest.fixture(scope="function")
async def container(session_factory, test_engine, school_directory, lga_mapping) -> AsyncGenerator[ServiceContainer, None]:
    container = ServiceContainer(
        session_factory,
        engine=test_engine,
        school_directory=school_directory,
        lga_mapping=lga_mapping,
    )
    yield container
    await container.cancel_running_tasks()


@pytest.fixture(scope="function")
async def client(container: ServiceContainer) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client for the FastAPI app, wired to the test container.
    """
    app.state.container = container
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.state.container = None


@pytest.fixture(scope="function")
async def school(test_db: AsyncSession) -> School:
    """School owning uploaded registrations"""
    school = School(school_name="Central Academy", school_code="001", lga_code="LG01")
    test_db.add(school)
    await test_db.commit()
    return school


@pytest.fixture(scope="function")
async def school_data(test_db: AsyncSession):
    """Reference table rows for the code map"""
    rows = [
        SchoolData(lga_code="LG01", l_code="101", sch_code="001", prog_id="2", sch_name="Central Academy"),
        SchoolData(lga_code="LG09", l_code="109", sch_code="9", prog_id="2", sch_name="Hilltop School"),
    ]
    test_db.add_all(rows)
    await test_db.commit()
    return rows
