"""Application settings using Pydantic BaseSettings."""

from functools import lru_cache

from pydantic import field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
_VALID_PROVIDERS = {"anthropic", "openai"}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_name: str = "Semantic Pipeline"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        upper = v.upper()
        if upper not in _VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {_VALID_LOG_LEVELS}, got '{v}'")
        return upper

    @field_validator("llm_provider")
    @classmethod
    def validate_llm_provider(cls, v: str) -> str:
        lower = v.lower()
        if lower not in _VALID_PROVIDERS:
            raise ValueError(f"llm_provider must be one of {_VALID_PROVIDERS}, got '{v}'")
        return lower

    @model_validator(mode="after")
    def validate_timeouts_positive(self) -> "Settings":
        for field_name in (
            "llm_timeout",
            "sql_execution_timeout",
            "pipeline_timeout",
            "circuit_cooldown_seconds",
            "circuit_window_seconds",
            "coalesce_ttl",
            "narrative_min_timeout",
            "llm_queue_timeout",
        ):
            value = getattr(self, field_name)
            if value <= 0:
                raise ValueError(f"{field_name} must be positive, got {value}")
        return self

    # LLM provider
    llm_provider: str = "anthropic"
    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    llm_timeout: float = 60.0
    llm_max_retries: int = 3
    llm_retry_delay: float = 1.0
    retry_backoff_factor: float = 2.0
    llm_max_concurrent: int = 5
    llm_queue_timeout: float = 30.0

    # Intent Resolver
    intent_model: str = "claude-sonnet-4-5"
    intent_temperature: float = 0.0
    intent_max_tokens: int = 1024
    intent_retrieval_max_examples: int = 3

    # SQL Generator
    sql_model: str = "claude-sonnet-4-5"
    sql_temperature: float = 0.0
    sql_max_tokens: int = 2048

    # Narrative Generator
    narrative_model: str = "claude-sonnet-4-5"
    narrative_temperature: float = 0.3
    narrative_max_tokens: int = 2048

    # Data source (tenant data, read-only)
    database_url: str = ""
    database_schema: str | None = None
    sql_execution_timeout: float = 30.0
    max_result_rows: int = 10_000

    # Pipeline
    pipeline_timeout: float = 120.0
    sql_max_retries: int = 1
    max_history_turns: int = 6
    max_history_chars: int = 4_000
    max_date_range_days: int = 366
    eval_log_dir: str | None = None

    # Deadline awareness (seconds left in the turn)
    sql_fallback_min_remaining: float = 20.0
    narrative_timeout_margin: float = 2.0
    narrative_min_timeout: float = 5.0
    narrative_fast_model: str | None = None

    # Circuit breaker
    circuit_failure_threshold: int = 5
    circuit_window_seconds: float = 60.0
    circuit_cooldown_seconds: float = 30.0

    # Request coalescing / adaptive backoff
    coalesce_ttl: float = 10.0
    backoff_decay_seconds: float = 60.0

    # Prompt guard (characters)
    prompt_max_chars: int = 100_000
    prompt_max_schema_chars: int = 40_000
    prompt_max_examples_chars: int = 16_000
    prompt_max_retrieval_chars: int = 12_000

    # LLM response cache
    llm_cache_ttl: int = 300
    llm_cache_stale_ttl: int = 3600
    llm_cache_max_size: int = 500

    # Query result cache
    query_cache_ttl: int = 60
    query_cache_stale_ttl: int = 900
    query_cache_max_size: int = 200

    # Schema cache
    schema_cache_ttl: int = 3600


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
