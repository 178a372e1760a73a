"""
Database models and connection management

Models:
- School: Schools that own registrations
- SchoolData: Reference table mapping school codes to canonical LGA codes
- AccessPin: Result access pins, including the global results-release switch
- Result: Examination results uploaded by CSV
- StudentRegistration: Regular and late registrations
- PostRegistration: Post registrations

The module also provides the default engine and session factory, the
FastAPI session dependency and table initialization.

Example:
    ```python
    from exam_portal.db.database import AsyncSessionLocal, Result

    async with AsyncSessionLocal() as session:
        result = await session.execute(
            select(Result).where(Result.examination_no == "EX001")
        )
        row = result.scalar_one_or_none()
    ```
"""
import logging
import uuid

from sqlalchemy import (
    Boolean, Column, Date, DateTime, ForeignKey, Index, Integer, JSON, String,
    UniqueConstraint, text,
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base, declared_attr

from exam_portal.config import config
from exam_portal.utils.date_utils import utc_now

logger = logging.getLogger(__name__)

Base = declarative_base()

# Pin whose is_active flag releases (or withholds) all results
GLOBAL_RELEASE_PIN = "__GLOBAL_RESULTS_RELEASE__"


def new_id() -> str:
    return str(uuid.uuid4())


class School(Base):
    """School owning registrations"""
    __tablename__ = "schools"

    id = Column(Integer, primary_key=True, index=True)
    school_name = Column(String, nullable=False)
    school_code = Column(String, nullable=False, index=True)
    lga_code = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, default=utc_now)

    __table_args__ = (
        UniqueConstraint('lga_code', 'school_code', name='uq_school_lga_code'),
    )


class SchoolData(Base):
    """Reference data used to resolve a school's canonical LGA code"""
    __tablename__ = "school_data"

    id = Column(Integer, primary_key=True, index=True)
    lga_code = Column(String, nullable=False)
    l_code = Column(String, nullable=False)
    sch_code = Column(String, nullable=False)
    prog_id = Column(String)
    sch_name = Column(String)

    __table_args__ = (
        UniqueConstraint('lga_code', 'sch_code', name='uq_school_data_lga_sch'),
        Index('idx_school_data_lcode_sch', 'l_code', 'sch_code'),
    )


class AccessPin(Base):
    """Result access pins"""
    __tablename__ = "access_pins"

    id = Column(Integer, primary_key=True, index=True)
    pin = Column(String, unique=True, nullable=False, index=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utc_now)


class Result(Base):
    """Examination result for one candidate"""
    __tablename__ = "results"

    id = Column(String, primary_key=True, default=new_id)
    examination_no = Column(String, unique=True, nullable=False, index=True)
    session_yr = Column(String, nullable=False)
    f_name = Column(String)
    m_name = Column(String)
    l_name = Column(String)
    date_of_birth = Column(Date)
    sex_cd = Column(String)
    institution_cd = Column(String)
    school_name = Column(String)
    lga_cd = Column(String, index=True)
    # {SUBJECT: {"score": str, "grade": str}}, "-" marks an absent value
    scores = Column(JSON, nullable=False, default=dict)
    rgs_type = Column(String)
    remark = Column(String)
    access_pin = Column(String, index=True)
    blocked = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utc_now, index=True)


class RegistrationColumns:
    """Columns shared by both registration tables"""

    id = Column(String, primary_key=True, default=new_id)
    acc_code = Column(String, unique=True, nullable=False, index=True)
    student_number = Column(String, unique=True, nullable=False, index=True)
    firstname = Column(String)
    othername = Column(String)
    lastname = Column(String)
    date_of_birth = Column(Date)
    gender = Column(String)
    school_type = Column(String)
    passport = Column(String)
    # {SUBJECT: {"year1": str, "year2": str, "year3": str}}
    ca_scores = Column(JSON)
    student_subjects = Column(JSON)
    religious_type = Column(String)
    year = Column(String)
    prcd = Column(Integer, default=1)
    created_at = Column(DateTime, default=utc_now, nullable=False)

    @declared_attr
    def school_id(cls):
        return Column(Integer, ForeignKey("schools.id", ondelete="CASCADE"), index=True)


class StudentRegistration(RegistrationColumns, Base):
    """Regular and late registrations"""
    __tablename__ = "student_registrations"

    late_registration = Column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index('idx_student_reg_late_created', 'late_registration', 'created_at'),
    )


class PostRegistration(RegistrationColumns, Base):
    """Post registrations"""
    __tablename__ = "post_registrations"

    __table_args__ = (
        Index('idx_post_reg_created', 'created_at'),
    )


def _async_sqlite_url(database_url: str) -> str:
    if database_url.startswith("sqlite://"):
        return "sqlite+aiosqlite://" + database_url[len("sqlite://"):]
    return database_url


def create_engine_for(database_url: str) -> AsyncEngine:
    """Create an async engine with pool settings suited to the backend"""
    if database_url.startswith("sqlite"):
        # SQLite serialises writers; keep the pool small and wait on locks
        return create_async_engine(
            _async_sqlite_url(database_url),
            echo=config.DEBUG,
            pool_pre_ping=True,
            pool_size=config.SQLITE_POOL_SIZE,
            max_overflow=config.SQLITE_MAX_OVERFLOW,
            pool_timeout=120.0,
            pool_recycle=3600,
            connect_args={"timeout": 60.0},
        )
    return create_async_engine(
        database_url,
        echo=config.DEBUG,
        pool_pre_ping=True,
        pool_size=config.POSTGRES_POOL_SIZE,
        max_overflow=config.POSTGRES_MAX_OVERFLOW,
        pool_timeout=120.0,
        pool_recycle=3600,
    )


engine = create_engine_for(config.DATABASE_URL)

AsyncSessionLocal = async_sessionmaker(
    engine, class_=AsyncSession, expire_on_commit=False
)


async def init_db(bind: AsyncEngine = engine):
    """Create tables and apply SQLite pragmas"""
    logger.info("Starting database initialization...")
    async with bind.begin() as conn:
        if bind.dialect.name == "sqlite":
            try:
                await conn.execute(text("PRAGMA journal_mode=WAL"))
                await conn.execute(text("PRAGMA synchronous=NORMAL"))
                await conn.execute(text("PRAGMA busy_timeout=60000"))
                logger.info("SQLite WAL mode enabled")
            except Exception as e:
                logger.warning(f"Could not configure WAL mode: {e}")

        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialized successfully")
