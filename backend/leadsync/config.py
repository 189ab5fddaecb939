"""Application configuration."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str = "postgresql+asyncpg://leadsync:leadsync@db:5432/leadsync"

    # Scheduling
    LEADS_SYNC_CRON: str = "*/10 * * * *"  # every 10 minutes
    ENABLE_SCHEDULER: bool = True

    # Sheet export
    SHEET_EXPORT_BASE_URL: str = "https://docs.google.com/spreadsheets/d"
    SHEET_DEFAULT_GID: str = "0"
    SHEET_FETCH_TIMEOUT_SECONDS: float = 30.0
    SHEET_FETCH_MAX_RETRIES: int = 3
    SHEET_FETCH_INITIAL_RETRY_DELAY: float = 1.0
    SHEET_FETCH_MAX_RETRY_DELAY: float = 10.0

    # Sync runs
    SYNC_TIMEOUT_SECONDS: float = 120.0
    REPORTING_TIMEZONE: str = "Europe/London"

    # Lead handling
    LEAD_QUALIFICATION_THRESHOLD: int = 70
    BULK_CONVERT_ERROR_LIMIT: int = 50
    DEFAULT_PHONE_REGION: str = "GB"

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
