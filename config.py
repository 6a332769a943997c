"""
Configuration for the QuickCare Admin API.

Settings are loaded from environment variables (and an optional .env file)
using pydantic-settings.
"""

from enum import Enum
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class LogLevel(str, Enum):
    """Log level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class Environment(str, Enum):
    """Environment enumeration."""
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TEST = "test"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    # General settings
    PROJECT_NAME: str = "QuickCare Admin API"
    VERSION: str = "0.1.0"
    ENVIRONMENT: Environment = Environment.DEVELOPMENT
    LOG_LEVEL: LogLevel = LogLevel.INFO
    PORT: int = 8000
    CORS_ORIGINS: List[str] = ["*"]

    # Document store
    DATABASE_URL: str = "mongodb://localhost:27017"
    DATABASE_NAME: str = "quickcare"

    # Object store: "gridfs" or "firebase"
    STORAGE_TYPE: str = "gridfs"
    GRIDFS_BUCKET: str = "fs"
    STORAGE_BUCKET: str = ""
    STORAGE_BASE_URL: str = "https://firebasestorage.googleapis.com/v0"

    # Identity provider
    IDENTITY_BASE_URL: str = "https://identitytoolkit.googleapis.com/v1"
    IDENTITY_API_KEY: str = ""

    REQUEST_TIMEOUT: float = 10.0

    # Records and mutations
    STRICT_RECORDS: bool = False
    ENFORCE_TRANSITIONS: bool = True

    RECENT_EMERGENCY_LIMIT: int = 5
    TRIP_HISTORY_LIMIT: int = 100
    NEARBY_RADIUS_KM: float = 5.0

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        use_enum_values=True,
        extra="ignore",
    )


settings = Settings()
