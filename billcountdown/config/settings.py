from typing import List, Union

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Bill Countdown Jobs"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "http://localhost:3000"
    LOG_LEVEL: str = "info"
    APP_URL: str = "https://billcountdown.app"

    # Database
    DATABASE_URL: str = "sqlite:///./billcountdown.db"
    CREATE_TABLES_ON_STARTUP: bool = True
    # Seconds a SQLite write waits on another writer; the event loop is blocked meanwhile
    SQLITE_BUSY_TIMEOUT_SECONDS: float = 5.0

    # Scheduler trigger authentication
    CRON_SECRET: str = "<your-cron-secret>"

    # Redis & Celery
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0

    # Email (Resend)
    RESEND_API_KEY: str = ""
    RESEND_API_URL: str = "https://api.resend.com/emails"
    EMAIL_FROM: str = "Bill Countdown <reminders@billcountdown.app>"

    # Web push (VAPID)
    VAPID_PUBLIC_KEY: str = ""
    VAPID_PRIVATE_KEY: str = ""
    VAPID_SUBJECT: str = "mailto:support@billcountdown.app"

    # APNs
    APNS_PRIVATE_KEY: str = ""
    APNS_KEY_ID: str = ""
    APNS_TEAM_ID: str = ""
    APNS_BUNDLE_ID: str = "app.duezo"
    APNS_USE_SANDBOX: bool = True

    # Mailbox sync pipeline
    MAILBOX_SYNC_URL: str = "http://localhost:3000/api/internal/mailbox-sync"

    # Reminder queue
    REMINDER_HOUR: int = 9
    REMINDER_BATCH_SIZE: int = 100
    CHANNEL_SEND_TIMEOUT_SECONDS: float = 15.0
    CLAIM_TIMEOUT_MINUTES: int = 15

    # Auto sync
    SYNC_BATCH_SIZE: int = 5
    SYNC_TIMEOUT_SECONDS: float = 300.0
    SYNC_LOCK_TTL_SECONDS: int = 900
    SYNC_STALE_HOURS: int = 20
    SYNC_ERROR_BACKOFF_HOURS: int = 1
    SYNC_MAX_RESULTS: int = 100
    SYNC_DAYS_BACK: int = 2

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
