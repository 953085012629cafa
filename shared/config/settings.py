"""
Centralized configuration management for the Good Brief curator.
Uses Pydantic Settings for validation and type safety.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field, validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppBaseSettings(BaseSettings):
    """Base settings with shared configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )


class RedisSettings(AppBaseSettings):
    """Redis configuration settings (score cache backend)."""

    redis_url: Optional[str] = Field(
        default=None,
        validation_alias="REDIS_URL",
    )
    redis_host: str = Field(
        default="localhost",
        validation_alias="REDIS_HOST",
    )
    redis_port: int = Field(
        default=6379,
        validation_alias="REDIS_PORT",
    )
    redis_db: int = Field(
        default=0,
        validation_alias="REDIS_DB",
    )
    redis_password: Optional[str] = Field(
        default=None,
        validation_alias="REDIS_PASSWORD",
    )
    redis_timeout: float = Field(
        default=5.0,
        validation_alias="REDIS_TIMEOUT",
    )


class OpenAISettings(AppBaseSettings):
    """OpenAI API configuration settings."""

    api_key: Optional[str] = Field(
        default=None,
        validation_alias="OPENAI_API_KEY",
    )
    model: str = Field(
        default="gpt-4o-mini",
        validation_alias="OPENAI_MODEL",
    )
    max_tokens: int = Field(
        default=16000,
        validation_alias="OPENAI_MAX_TOKENS",
    )
    temperature: float = Field(
        default=0.3,
        validation_alias="OPENAI_TEMPERATURE",
    )
    timeout: float = Field(
        default=120.0,
        validation_alias="OPENAI_TIMEOUT",
    )


class CuratorSettings(AppBaseSettings):
    """Curation pipeline thresholds, sizes and locations."""

    data_dir: str = Field(
        default="data",
        validation_alias="CURATOR_DATA_DIR",
    )
    issues_dir: str = Field(
        default="content/issues",
        validation_alias="CURATOR_ISSUES_DIR",
    )
    cache_backend: str = Field(
        default="file",
        validation_alias="CURATOR_CACHE_BACKEND",
    )
    cache_key: str = Field(
        default="curator:scores",
        validation_alias="CURATOR_CACHE_KEY",
    )
    intra_batch_similarity: float = Field(
        default=0.70,
        validation_alias="CURATOR_INTRA_BATCH_SIMILARITY",
    )
    cross_edition_similarity: float = Field(
        default=0.74,
        validation_alias="CURATOR_CROSS_EDITION_SIMILARITY",
    )
    token_overlap_threshold: float = Field(
        default=0.50,
        validation_alias="CURATOR_TOKEN_OVERLAP_THRESHOLD",
    )
    min_common_tokens: int = Field(
        default=3,
        validation_alias="CURATOR_MIN_COMMON_TOKENS",
    )
    batch_size: int = Field(
        default=200,
        validation_alias="CURATOR_BATCH_SIZE",
    )
    max_content_chars: int = Field(
        default=300,
        validation_alias="CURATOR_MAX_CONTENT_CHARS",
    )
    max_attempts: int = Field(
        default=3,
        validation_alias="CURATOR_MAX_ATTEMPTS",
    )
    retry_base_delay: float = Field(
        default=1.0,
        validation_alias="CURATOR_RETRY_BASE_DELAY",
    )
    retry_backoff_factor: float = Field(
        default=2.0,
        validation_alias="CURATOR_RETRY_BACKOFF_FACTOR",
    )
    batch_delay: float = Field(
        default=1.0,
        validation_alias="CURATOR_BATCH_DELAY",
    )
    positivity_threshold: int = Field(
        default=40,
        validation_alias="CURATOR_POSITIVITY_THRESHOLD",
    )
    selected_count: int = Field(
        default=10,
        validation_alias="CURATOR_SELECTED_COUNT",
    )
    reserve_count: int = Field(
        default=20,
        validation_alias="CURATOR_RESERVE_COUNT",
    )
    min_positive_articles: int = Field(
        default=5,
        validation_alias="CURATOR_MIN_POSITIVE_ARTICLES",
    )
    history_draft_limit: int = Field(
        default=4,
        validation_alias="CURATOR_HISTORY_DRAFT_LIMIT",
    )
    history_issue_limit: int = Field(
        default=4,
        validation_alias="CURATOR_HISTORY_ISSUE_LIMIT",
    )
    history_title_sample: int = Field(
        default=40,
        validation_alias="CURATOR_HISTORY_TITLE_SAMPLE",
    )
    refine_enabled: bool = Field(
        default=True,
        validation_alias="CURATOR_REFINE_ENABLED",
    )
    include_reasoning: bool = Field(
        default=False,
        validation_alias="CURATOR_INCLUDE_REASONING",
    )

    @validator(
        "intra_batch_similarity",
        "cross_edition_similarity",
        "token_overlap_threshold",
    )
    def validate_ratio(cls, v):
        """Similarity thresholds are ratios."""
        if not 0.0 <= v <= 1.0:
            raise ValueError(f"Threshold must be between 0 and 1, got {v}")
        return v

    @validator("cache_backend")
    def validate_cache_backend(cls, v):
        """Only the known cache stores can be selected."""
        backend = v.strip().lower()
        if backend not in ("file", "redis", "none"):
            raise ValueError(
                f"CURATOR_CACHE_BACKEND must be one of file, redis, none (got {v!r})"
            )
        return backend

    @validator("batch_size", "max_attempts")
    def validate_positive(cls, v):
        if v < 1:
            raise ValueError("Value must be at least 1")
        return v


class AlertSettings(AppBaseSettings):
    """Operator alerting configuration."""

    webhook_url: Optional[str] = Field(
        default=None,
        validation_alias="ALERT_WEBHOOK_URL",
    )
    timeout: float = Field(
        default=10.0,
        validation_alias="ALERT_TIMEOUT",
    )
    max_retries: int = Field(
        default=2,
        validation_alias="ALERT_MAX_RETRIES",
    )
    run_url: Optional[str] = Field(
        default=None,
        validation_alias="ALERT_RUN_URL",
    )


class LoggingSettings(AppBaseSettings):
    """Logging configuration settings."""

    level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
    )
    include_correlation_id: bool = Field(
        default=True,
        validation_alias="LOG_INCLUDE_CORRELATION_ID",
    )
    json_logs: bool = Field(
        default=False,
        validation_alias="JSON_LOGS",
    )


class Settings(AppBaseSettings):
    """Main settings class that combines all configuration sections."""

    redis: RedisSettings = Field(default_factory=RedisSettings)
    openai: OpenAISettings = Field(default_factory=OpenAISettings)
    curator: CuratorSettings = Field(default_factory=CuratorSettings)
    alerts: AlertSettings = Field(default_factory=AlertSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    service_name: str = Field(
        default="curator",
        validation_alias="SERVICE_NAME",
    )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


def get_redis_url() -> str:
    """Get the Redis URL, built from components when REDIS_URL is unset."""
    redis = get_settings().redis
    if redis.redis_url:
        return redis.redis_url
    if redis.redis_password:
        return f"redis://:{redis.redis_password}@{redis.redis_host}:{redis.redis_port}/{redis.redis_db}"
    return f"redis://{redis.redis_host}:{redis.redis_port}/{redis.redis_db}"


def get_openai_api_key() -> str:
    """Get the OpenAI API key, failing loudly when it is missing."""
    api_key = get_settings().openai.api_key
    if not api_key:
        raise RuntimeError("OPENAI_API_KEY environment variable is required")
    return api_key
