"""Application settings."""

from functools import lru_cache
from typing import List, Optional

from pydantic_settings import BaseSettings
from pydantic import Field

# Placeholders shipped as defaults; codes still set to these are refused
DEFAULT_SCHOOL_CODE = "change-me-school"
DEFAULT_ADMIN_CODE = "change-me-admin"


class Settings(BaseSettings):
    """Application settings."""

    # Application
    app_name: str = "School System Bot"
    app_version: str = "1.0.0"
    environment: str = "development"
    debug: bool = False

    # Database
    database_url: str = "sqlite+aiosqlite:///./school_bot.db"
    database_pool_size: int = 20
    database_max_overflow: int = 10

    # Redis (Celery broker for maintenance jobs)
    redis_url: str = "redis://localhost:6379/0"

    # Telegram
    telegram_bot_token: str = ""
    telegram_webhook_url: Optional[str] = None
    telegram_webhook_secret: Optional[str] = None

    # Registration secrets
    school_registration_code: str = Field(default=DEFAULT_SCHOOL_CODE)
    admin_registration_code: str = Field(default=DEFAULT_ADMIN_CODE)

    # Oversight: comma-separated chat IDs of master admins
    master_admin_ids: str = ""

    # Conversations
    page_size: int = 10
    session_idle_timeout_ms: int = 5 * 60 * 1000

    # Records
    data_retention_days: int = 365
    activity_log_cap: int = 200
    export_dir: str = "./exports"
    school_timezone: str = "Asia/Singapore"

    # One-time codes
    otp_ttl_seconds: int = 600
    otp_max_attempts: int = 3

    # Teacher password login
    login_max_attempts: int = 3
    login_lockout_seconds: int = 15 * 60

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        extra = "ignore"

    @property
    def school_code_configured(self) -> bool:
        """True once a real school registration code has been set."""
        code = self.school_registration_code.strip()
        return bool(code) and code != DEFAULT_SCHOOL_CODE

    @property
    def admin_code_configured(self) -> bool:
        code = self.admin_registration_code.strip()
        return bool(code) and code != DEFAULT_ADMIN_CODE

    @property
    def oversight_chat_ids(self) -> List[int]:
        """Chat IDs that receive oversight notifications."""
        ids = []
        for part in self.master_admin_ids.split(","):
            part = part.strip()
            if part.lstrip("-").isdigit():
                ids.append(int(part))
        return ids


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
