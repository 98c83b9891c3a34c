from datetime import datetime
from pathlib import Path
from typing import Literal
from zoneinfo import ZoneInfo

from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve .env from project root so it loads regardless of cwd
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
_ENV_FILE = _PROJECT_ROOT / ".env"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=(str(_ENV_FILE), ".env", "../.env"),
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database
    database_url: str
    database_ssl: bool = False
    create_tables_on_startup: bool = False

    # JWT (provider portal)
    secret_key: str
    access_token_expire_minutes: int = 60
    algorithm: str = "HS256"

    # CORS
    cors_origins: str = "http://localhost:3000"

    # Env
    env: str = "development"

    # Demo catalog (providers + session types) seeded on startup
    seed_demo_data: bool = False
    demo_provider_password: str = "changeme123"

    # Scheduling business rules
    facility_timezone: str = "UTC"
    cancellation_notice_hours: int = 24
    pending_payment_hold_minutes: int = 30
    reminder_lead_hours: int = 24
    provider_lock_timeout_seconds: float = 2.0
    maintenance_interval_seconds: int = 5 * 60
    # "allow": availability edits leave already-confirmed bookings in place (logged)
    # "reject": availability edits that would orphan a confirmed booking are refused
    orphan_policy: Literal["allow", "reject"] = "allow"

    # Payment collaborator callback
    payment_webhook_secret: str = ""

    # Email (SMTP). Leave smtp_host empty to disable sending.
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    from_email: str = ""
    from_name: str = "Clinic Scheduler"
    site_name: str = "Clinic Scheduler"
    frontend_url: str = "http://localhost:3000"
    contact_email: str = "hello@clinic.example.com"
    contact_phone: str = ""
    contact_address: str = ""

    @property
    def cors_origins_list(self) -> list[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    @property
    def email_enabled(self) -> bool:
        return bool(self.smtp_host and self.smtp_user and self.smtp_password and self.from_email)


settings = Settings()


def facility_now() -> datetime:
    """Naive wall-clock time in the facility timezone; bookings are stored the same way."""
    return datetime.now(ZoneInfo(settings.facility_timezone)).replace(tzinfo=None, microsecond=0)
