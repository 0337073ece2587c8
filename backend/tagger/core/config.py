"""Application configuration loaded from environment variables.

All configuration is via environment variables (optionally a local .env file).
No hardcoded credentials.
"""

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = Field(default="Newsletter Tagger")
    app_version: str = Field(default="1.0.0")
    debug: bool = Field(default=False)
    environment: str = Field(default="development")

    # Database
    database_url: str = Field(
        default="sqlite+aiosqlite:///./newsletters.db",
        description="SQLAlchemy async connection string (SQLite or PostgreSQL)",
    )
    db_echo: bool = Field(default=False, description="Echo SQL statements")
    db_slow_query_threshold_ms: int = Field(
        default=100, description="Threshold for slow query warnings (ms)"
    )
    db_connect_timeout: int = Field(
        default=60, description="Connection timeout in seconds"
    )

    # Logging
    log_level: str = Field(default="INFO", description="Log level")
    log_format: str = Field(default="json", description="Log format: json or text")

    # Claude/Anthropic LLM
    anthropic_api_key: str | None = Field(
        default=None,
        description="Anthropic API key for Claude models",
    )
    claude_model: str = Field(
        default="claude-3-haiku-20240307",
        description="Claude model used for tag extraction and canonicalization",
    )
    claude_timeout: float = Field(
        default=60.0, description="Claude API request timeout in seconds"
    )
    claude_max_retries: int = Field(
        default=3,
        description="Attempts for timeouts, transport errors and 5xx responses",
    )
    claude_retry_delay: float = Field(
        default=1.0, description="Base delay between retries in seconds"
    )
    claude_max_tokens: int = Field(
        default=1024, description="Maximum tokens in Claude response"
    )

    # Tagging pipeline
    tagging_extraction_concurrency: int = Field(
        default=3,
        ge=1,
        description="Newsletters classified concurrently per window",
    )
    tagging_batch_delay_seconds: float = Field(
        default=0.5, ge=0.0, description="Pause between extraction windows"
    )
    tagging_rate_limit_cooldown: float = Field(
        default=30.0,
        ge=0.0,
        description="Cooldown before the single retry of a rate-limited call",
    )
    tagging_max_content_chars: int = Field(
        default=8000, ge=1, description="Newsletter content sent per prompt"
    )
    tagging_retry_delay_seconds: float = Field(
        default=5.0,
        ge=0.0,
        description="Pause between items when re-tagging untagged newsletters",
    )
    tagging_canonicalization_warn_threshold: int = Field(
        default=1500,
        description="Raw tag count above which a single canonicalization call is risky",
    )
    tagging_canonicalization_max_tokens: int = Field(
        default=8000,
        description="Maximum response tokens for the canonicalization call",
    )
    tagging_top_tags_in_summary: int = Field(
        default=20, description="Tags listed in the run summary"
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
