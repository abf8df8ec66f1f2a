"""Application settings loaded from environment variables.

Hey future me - every tunable lives HERE, grouped in nested sections so call sites
read like ``settings.jobs.batch_size`` or ``settings.database.url``. Environment
variables use the ``CLEANSPOT_`` prefix and ``__`` for nesting, e.g.
``CLEANSPOT_DATABASE__URL`` or ``CLEANSPOT_WEBHOOKS__SIGNING_SECRET``.
Don't read os.environ anywhere else - go through get_settings()!
"""

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class DatabaseSettings(BaseModel):
    """Database connection settings."""

    url: str = "sqlite+aiosqlite:///./cleanspot.db"
    echo: bool = False
    pool_pre_ping: bool = True
    # Pool settings only apply to PostgreSQL (SQLite has no real pool)
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    pool_recycle: int = 3600


class SpotifySettings(BaseModel):
    """Spotify Web API settings (client credentials + endpoints)."""

    client_id: str = ""
    client_secret: str = ""
    token_url: str = "https://accounts.spotify.com/api/token"
    api_base_url: str = "https://api.spotify.com/v1"
    request_timeout: float = 30.0


class SecuritySettings(BaseModel):
    """Secrets used for encryption at rest."""

    # Fernet key (urlsafe base64, 32 bytes). Generate with Fernet.generate_key().
    token_encryption_key: str = ""


class JobSettings(BaseModel):
    """Clean-playlist job engine tuning."""

    batch_size: int = Field(default=100, ge=1, le=500)
    batch_retries: int = Field(default=2, ge=0)
    batch_retry_delay_seconds: float = 2.0
    worker_count: int = Field(default=2, ge=1)
    heartbeat_seconds: float = 15.0
    stale_after_minutes: int = 30
    subscriber_queue_size: int = 100


class SyncSettings(BaseModel):
    """Sync scheduler tuning."""

    poll_interval_seconds: int = 300
    max_concurrent: int = Field(default=3, ge=1)
    default_frequency: Literal["daily", "weekly", "monthly", "manual"] = "daily"


class WebhookSettings(BaseModel):
    """Payment webhook verification + retry tuning."""

    signing_secret: str = ""
    tolerance_seconds: int = 300
    max_retries: int = 5
    base_delay_minutes: float = 1.0
    max_delay_minutes: float = 60.0
    jitter: bool = True
    sweep_interval_seconds: int = 60
    sweep_batch_size: int = 50


class MatchingSettings(BaseModel):
    """Clean alternative search tuning."""

    similarity_threshold: float = Field(default=85.0, ge=0, le=100)
    search_limit: int = Field(default=20, ge=1, le=50)


class ObservabilitySettings(BaseModel):
    """Logging and tracing settings."""

    log_json_format: bool = False
    tracing_enabled: bool = False
    otlp_endpoint: str | None = None
    trace_console_exporter: bool = False
    environment: str = "development"



class Settings(BaseSettings):
    """Root settings object."""

    model_config = SettingsConfigDict(
        env_prefix="CLEANSPOT_",
        env_nested_delimiter="__",
        env_file=".env",
        extra="ignore",
    )

    app_name: str = "CleanSpot"
    log_level: str = "INFO"
    debug: bool = False

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    spotify: SpotifySettings = Field(default_factory=SpotifySettings)
    security: SecuritySettings = Field(default_factory=SecuritySettings)
    jobs: JobSettings = Field(default_factory=JobSettings)
    sync: SyncSettings = Field(default_factory=SyncSettings)
    webhooks: WebhookSettings = Field(default_factory=WebhookSettings)
    matching: MatchingSettings = Field(default_factory=MatchingSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        level = value.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            raise ValueError(f"Invalid log level: {value}")
        return level


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
