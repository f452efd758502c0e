"""Pydantic settings models for configuration management."""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import BaseModel, Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import ConfigError


class DatabaseSettings(BaseModel):
    """Database configuration settings."""

    url: str = "sqlite:///./data/sitewatch.db"
    echo: bool = False
    pool_size: int = 10
    max_overflow: int = 20
    busy_timeout_seconds: int = 30

    @field_validator("url")
    @classmethod
    def validate_url(cls, v):
        if not v:
            raise ValueError("Database URL cannot be empty")
        return v


class FetcherSettings(BaseModel):
    """Sitemap fetching configuration."""

    timeout_seconds: float = 30.0
    connect_timeout_seconds: float = 10.0
    max_depth: int = 3
    max_urls: int = 50000
    max_sitemaps: int = 1000
    user_agent: str = "Mozilla/5.0 (compatible; SitewatchBot/1.0)"

    @field_validator("timeout_seconds", "connect_timeout_seconds")
    @classmethod
    def validate_timeout(cls, v):
        if v <= 0:
            raise ValueError("Timeout must be positive")
        return v

    @field_validator("max_depth")
    @classmethod
    def validate_depth(cls, v):
        if v < 0:
            raise ValueError("Max depth cannot be negative")
        return v

    @field_validator("max_urls")
    @classmethod
    def validate_max_urls(cls, v):
        if v <= 0:
            raise ValueError("Max URLs must be positive")
        return v

    @field_validator("max_sitemaps")
    @classmethod
    def validate_max_sitemaps(cls, v):
        if v <= 0:
            raise ValueError("Max sitemaps must be positive")
        return v


class SchedulerSettings(BaseModel):
    """Scan scheduling configuration."""

    max_concurrent: int = 3
    stuck_timeout_minutes: int = 60
    scan_timeout_seconds: float = 600.0
    tag_match_mode: Literal["substring", "exact"] = "substring"

    # Periods used by the in-process worker
    due_scan_interval_minutes: int = 5
    queue_interval_minutes: int = 1
    reap_interval_minutes: int = 10

    @field_validator(
        "max_concurrent",
        "stuck_timeout_minutes",
        "due_scan_interval_minutes",
        "queue_interval_minutes",
        "reap_interval_minutes",
    )
    @classmethod
    def validate_positive(cls, v):
        if v <= 0:
            raise ValueError("Value must be positive")
        return v

    @field_validator("scan_timeout_seconds")
    @classmethod
    def validate_scan_timeout(cls, v):
        if v <= 0:
            raise ValueError("Scan timeout must be positive")
        return v


class EmailSettings(BaseModel):
    """SMTP transport used by email notification channels."""

    smtp_host: Optional[str] = None
    smtp_port: int = 587
    username: Optional[str] = None
    password: SecretStr = SecretStr("")
    from_address: str = "sitewatch@localhost"
    use_tls: bool = True


class NotificationSettings(BaseModel):
    """Notification delivery configuration."""

    timeout_seconds: float = 10.0
    max_retries: int = 2
    retry_delay: float = 1.0
    signature_header: str = "X-Sitewatch-Signature"
    email: EmailSettings = Field(default_factory=EmailSettings)

    @field_validator("max_retries")
    @classmethod
    def validate_retries(cls, v):
        if v < 0:
            raise ValueError("Max retries cannot be negative")
        return v


class APISettings(BaseModel):
    """HTTP API configuration."""

    host: str = "127.0.0.1"
    port: int = 8000


class AppSettings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="allow",
    )

    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool = False

    # API authentication
    api_tokens: list[str] = Field(default_factory=lambda: ["dev-token-12345"])
    cron_token: Optional[SecretStr] = None

    # Component settings
    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    fetcher: FetcherSettings = Field(default_factory=FetcherSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    notification: NotificationSettings = Field(default_factory=NotificationSettings)
    api: APISettings = Field(default_factory=APISettings)

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v):
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Log level must be one of: {valid_levels}")
        return v.upper()


@lru_cache
def get_settings() -> AppSettings:
    """Get the application settings instance."""
    try:
        return AppSettings()
    except Exception as e:
        raise ConfigError(f"Failed to load settings: {str(e)}") from e


def reload_settings() -> AppSettings:
    """Force reload of settings (useful for testing)."""
    get_settings.cache_clear()
    return get_settings()


def validate_settings(settings: AppSettings) -> None:
    """Validate settings for common configuration issues."""
    if not settings.api_tokens:
        raise ConfigError("At least one API token must be configured")

    scheduler = settings.scheduler
    if scheduler.scan_timeout_seconds >= scheduler.stuck_timeout_minutes * 60:
        raise ConfigError("scan_timeout_seconds must be shorter than stuck_timeout_minutes")

