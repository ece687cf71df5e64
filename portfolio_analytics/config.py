"""
Configuration management for the analytics service.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration with validation."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Store
    database_url: str = Field("", description="Connection URL used by the ingestion endpoints")
    admin_database_url: str = Field("", description="Privileged connection for reporting reads")
    auto_create_tables: bool = True

    # Privacy
    ip_hash_salt: str = "default-salt-change-in-production"

    # Throttling / dedup (product constants, tunable)
    page_view_rate_limit: int = Field(10, ge=1)
    click_rate_limit: int = Field(50, ge=1)
    rate_limit_window_seconds: float = Field(60.0, gt=0)
    dedup_window_seconds: float = Field(2.0, ge=0)
    admin_path_prefix: str = "/admin"

    # Geolocation
    geolocation_url: str = (
        "http://ip-api.com/json/{ip}"
        "?fields=status,message,country,countryCode,city,region,lat,lon,timezone,isp"
    )
    geolocation_timeout: float = 3.0

    # Notifications
    telegram_bot_token: Optional[str] = None
    telegram_chat_id: Optional[str] = None
    notification_timeout: float = 5.0
    cron_secret: Optional[str] = None
    site_url: str = "http://localhost:5000"

    # Admin
    admin_email: Optional[str] = None
    admin_password: Optional[str] = None
    admin_token: Optional[str] = None
    secret_key: str = "dev-key-change-in-production"

    # Dashboard
    dashboard_refresh_seconds: float = 60.0
    recent_clicks_limit: int = 100

    # Flask
    environment: str = "production"
    cors_origins: str = "*"

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"

    @property
    def reporting_database_url(self) -> str:
        """Reporting reads prefer the privileged connection."""
        return self.admin_database_url or self.database_url

    @property
    def telegram_configured(self) -> bool:
        return bool(self.telegram_bot_token and self.telegram_chat_id)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings instance."""
    return Settings()
