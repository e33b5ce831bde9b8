"""
Configuration management for CareAdherence
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "CareAdherence"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENV: str = "development"

    # API
    API_PREFIX: str = "/api/v1"
    HOST: str = "0.0.0.0"
    PORT: int = 8000

    # Database
    DATABASE_URL: str = "sqlite:///./care_adherence.db"
    DATABASE_ECHO: bool = False

    # Occurrences
    EVENT_GRACE_MINUTES: int = 30  # scheduled_end = scheduled_start + grace
    MATERIALIZE_HORIZON_DAYS: int = 30  # initial materialization on template creation

    # Expiry sweep
    SWEEPER_ENABLED: bool = True
    SWEEP_INTERVAL_SECONDS: int = 300
    SWEEP_BATCH_SIZE: int = 500

    # Reporting
    MISSED_EVENTS_LIMIT: int = 50  # per category
    UPCOMING_EVENTS_LIMIT: int = 20
    VITAL_TIMELINE_LIMIT: int = 30
    TREND_TOLERANCE: float = 0.05  # relative to the first-half mean

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:3000", "http://localhost:5173"]

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    # Timezone for templates created without one
    DEFAULT_TIMEZONE: str = "UTC"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


settings = get_settings()
