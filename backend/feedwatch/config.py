"""
Application configuration using Pydantic Settings.
"""

from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class FetcherSettings(BaseSettings):
    """HTTP identity, timeouts and retry policy."""

    model_config = SettingsConfigDict(env_prefix="FETCH_")

    user_agent: str = Field(
        default="Mozilla/5.0 (compatible; RSS Feed Discovery Bot)",
        description="User-Agent sent with every crawler request",
    )
    browser_user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
        ),
        description="User-Agent used for full-article and browser fetches",
    )
    default_timeout_seconds: float = Field(default=10.0, gt=0)
    min_domain_interval_seconds: float = Field(
        default=2.0,
        ge=0.0,
        description="Minimum spacing between two requests to the same hostname",
    )
    max_retries: int = Field(default=3, ge=0)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0.0)


class GovernorSettings(BaseSettings):
    """Memory and browser resource limits."""

    model_config = SettingsConfigDict(env_prefix="GOVERNOR_")

    memory_limit_mb: int = Field(
        default=450,
        description="Above this RSS, browser-backed scraping is skipped for the pass",
    )
    memory_soft_limit_mb: int = Field(
        default=400,
        description="Above this RSS, an extra delay is inserted before scraping",
    )
    soft_limit_delay_seconds: float = Field(default=2.0, ge=0.0)
    browser_cooldown_seconds: float = Field(default=2.0, ge=0.0)
    skip_sources: list[str] = Field(
        default_factory=list,
        description="Source names or URLs that are never processed",
    )

    @field_validator("memory_soft_limit_mb")
    @classmethod
    def validate_soft_limit(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("Memory limits must be positive")
        return v


class SchedulerSettings(BaseSettings):
    """Ingestion pass behaviour."""

    model_config = SettingsConfigDict(env_prefix="INGEST_")

    interval_minutes: int = Field(default=30, ge=1)
    autostart: bool = Field(
        default=True,
        description="Start periodic monitoring when the API server starts",
    )
    batch_size: int = Field(default=3, ge=1)
    rss_item_limit: int = Field(default=50, ge=1)
    discovery_cache_ttl_minutes: float = Field(default=30.0, ge=0.0)
    min_content_length: int = Field(
        default=240,
        description="Feed content shorter than this triggers a full-article fetch",
    )
    extractor_strict_domain: bool = Field(
        default=False,
        description="Treat any wrong-domain extractor result as a total failure",
    )
    enrich_batch_size: int = Field(default=2, ge=1)
    enrich_article_delay_seconds: float = Field(default=0.5, ge=0.0)
    enrich_batch_delay_seconds: float = Field(default=1.0, ge=0.0)
    enrich_window_hours: int = Field(default=2, ge=1)


class Settings(BaseSettings):
    """Main application settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Feedwatch"
    app_version: str = "0.1.0"
    debug: bool = Field(default=False)
    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = Field(default="INFO")

    # Server
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./feedwatch.db",
        description="Async database URL (SQLAlchemy format)",
    )

    # API Keys (all optional for local development)
    anthropic_api_key: str | None = Field(default=None)
    openai_api_key: str | None = Field(default=None)

    # LLM models
    anthropic_model: str = Field(default="claude-3-haiku-20240307")
    openai_model: str = Field(default="gpt-3.5-turbo")
    extractor_min_interval_seconds: float = Field(
        default=7.0,
        description="Minimum spacing between two external extractor LLM calls",
    )

    # CORS
    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
    )

    # Nested groups
    fetcher: FetcherSettings = Field(default_factory=FetcherSettings)
    governor: GovernorSettings = Field(default_factory=GovernorSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
