"""
Settings for the examination portal

Every value comes from an environment variable (or a local .env file) and has a
default suitable for a single-node SQLite deployment. Upload, override and
export tuning lives here next to the database and logging settings.

Example:
    ```python
    from exam_portal.config import config

    writer = BatchWriter(session_factory, chunk_size=config.UPLOAD_BATCH_SIZE)
    for warning in config.validate():
        logger.warning(warning)
    ```
"""
import os
from pathlib import Path
from typing import List
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()

_PACKAGE_DIR = Path(__file__).resolve().parent
_DATA_DIR = _PACKAGE_DIR / "data"


class Config:
    """
    Application configuration with environment variable support

    Values are read once at import time. Tests that need different values
    construct services with explicit arguments instead of mutating this class.
    """

    # Database Configuration
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./exam_portal.db")
    SQLITE_POOL_SIZE: int = int(os.getenv("SQLITE_POOL_SIZE", "10"))
    SQLITE_MAX_OVERFLOW: int = int(os.getenv("SQLITE_MAX_OVERFLOW", "10"))
    # SQLite caps bound parameters per statement
    SQLITE_MAX_VARIABLES: int = int(os.getenv("SQLITE_MAX_VARIABLES", "999"))
    POSTGRES_POOL_SIZE: int = int(os.getenv("POSTGRES_POOL_SIZE", "20"))
    POSTGRES_MAX_OVERFLOW: int = int(os.getenv("POSTGRES_MAX_OVERFLOW", "30"))

    # Application Configuration
    DEBUG: bool = os.getenv("DEBUG", "False").lower() in ("true", "1", "yes")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
    LOG_JSON: bool = os.getenv("LOG_JSON", "false").lower() == "true"
    LOG_DIR: str = os.getenv("LOG_DIR", "./logs")
    LOG_TO_FILE: bool = os.getenv("LOG_TO_FILE", "true").lower() in ("true", "1", "yes")
    LOG_FILE_MAX_BYTES: int = int(os.getenv("LOG_FILE_MAX_BYTES", "10485760"))
    LOG_FILE_BACKUP_COUNT: int = int(os.getenv("LOG_FILE_BACKUP_COUNT", "5"))
    METRICS_ENABLED: bool = os.getenv("METRICS_ENABLED", "false").lower() in ("true", "1", "yes")

    # CORS Configuration
    CORS_ORIGINS: List[str] = [
        origin.strip()
        for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:5173").split(",")
        if origin.strip()
    ]

    # Performance Configuration
    UVICORN_WORKERS: int = int(os.getenv("UVICORN_WORKERS", "1"))
    THREAD_POOL_WORKERS: int = int(os.getenv("THREAD_POOL_WORKERS", "4"))

    # Upload Configuration
    UPLOAD_BATCH_SIZE: int = int(os.getenv("UPLOAD_BATCH_SIZE", "50"))
    UPLOAD_PROGRESS_INTERVAL: int = int(os.getenv("UPLOAD_PROGRESS_INTERVAL", "50"))
    MAX_UPLOAD_BYTES: int = int(os.getenv("MAX_UPLOAD_BYTES", str(50 * 1024 * 1024)))
    ERROR_DISPLAY_LIMIT: int = int(os.getenv("ERROR_DISPLAY_LIMIT", "5"))
    DEFAULT_REGISTRATION_YEAR: str = os.getenv("DEFAULT_REGISTRATION_YEAR", "2025/2026")
    DEFAULT_PRCD: int = int(os.getenv("DEFAULT_PRCD", "1"))
    OVERRIDE_MAX_WAIT_SECONDS: float = float(os.getenv("OVERRIDE_MAX_WAIT_SECONDS", "20"))
    OVERRIDE_TIMEOUT_SECONDS: float = float(os.getenv("OVERRIDE_TIMEOUT_SECONDS", "30"))

    # Export Configuration
    EXPORT_CHUNK_SIZE: int = int(os.getenv("EXPORT_CHUNK_SIZE", "5000"))
    EXPORT_PROG_ID: str = os.getenv("EXPORT_PROG_ID", "2")
    EXPORT_MAX_RETRIES: int = int(os.getenv("EXPORT_MAX_RETRIES", "5"))
    EXPORT_RETRY_BASE_DELAY: float = float(os.getenv("EXPORT_RETRY_BASE_DELAY", "2.0"))
    EXPORT_RETRY_MAX_DELAY: float = float(os.getenv("EXPORT_RETRY_MAX_DELAY", "32.0"))
    EXPORT_REQUEST_TIMEOUT: float = float(os.getenv("EXPORT_REQUEST_TIMEOUT", "120.0"))
    # 0 disables caching; the code map is then rebuilt on every export request
    CODE_MAP_CACHE_TTL_SECONDS: int = int(os.getenv("CODE_MAP_CACHE_TTL_SECONDS", "0"))

    # Reference data. The bundled files are empty placeholders; point these at the
    # deployment's school list (JSON or CSV) and LGA name-to-code mapping.
    SCHOOLS_DATA_PATH: str = os.getenv("SCHOOLS_DATA_PATH", str(_DATA_DIR / "schools.json"))
    LGA_MAPPING_PATH: str = os.getenv("LGA_MAPPING_PATH", str(_DATA_DIR / "lga_mapping.json"))

    # Retry Configuration
    DEFAULT_MAX_RETRIES: int = int(os.getenv("DEFAULT_MAX_RETRIES", "3"))
    DEFAULT_RETRY_DELAY: float = float(os.getenv("DEFAULT_RETRY_DELAY", "0.1"))

    @classmethod
    def validate(cls) -> List[str]:
        """
        Validate configuration and return list of warnings/errors

        Returns:
            List of validation messages (empty if all valid)
        """
        warnings = []

        if cls.UVICORN_WORKERS > 1 and cls.DATABASE_URL.startswith("sqlite"):
            warnings.append(
                f"Warning: Using {cls.UVICORN_WORKERS} workers with SQLite may cause "
                "database lock contention during bulk uploads. Consider using 1-2 workers."
            )

        if cls.UPLOAD_BATCH_SIZE < 1:
            warnings.append("UPLOAD_BATCH_SIZE must be at least 1")

        if cls.EXPORT_CHUNK_SIZE < 1:
            warnings.append("EXPORT_CHUNK_SIZE must be at least 1")

        if cls.OVERRIDE_TIMEOUT_SECONDS < cls.OVERRIDE_MAX_WAIT_SECONDS:
            warnings.append(
                "OVERRIDE_TIMEOUT_SECONDS is lower than OVERRIDE_MAX_WAIT_SECONDS; "
                "override submissions may time out before acquiring a connection"
            )

        if not Path(cls.SCHOOLS_DATA_PATH).exists():
            warnings.append(
                f"SCHOOLS_DATA_PATH {cls.SCHOOLS_DATA_PATH} does not exist - "
                "school names and LGA codes will only come from the database"
            )

        if cls.THREAD_POOL_WORKERS < 1:
            warnings.append("THREAD_POOL_WORKERS must be at least 1")

        return warnings


# Global config instance
config = Config()
