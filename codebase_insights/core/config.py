from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # App
    app_env: str = "development"

    # LLM provider
    llm_provider: str = "openai"
    openai_api_key: str = ""
    openai_base_url: str = "https://api.openai.com/v1"
    openai_embeddings_model: str = "text-embedding-3-small"
    openai_embeddings_max_tokens: int = 8191
    openai_small_model: str = "gpt-4o-mini"  # empty string disables the tier
    openai_small_max_total_tokens: int = 128_000
    openai_small_max_completion_tokens: int = 16_384
    openai_large_model: str = "gpt-4o"
    openai_large_max_total_tokens: int = 128_000
    openai_large_max_completion_tokens: int = 16_384

    # Retries (milliseconds)
    llm_max_attempts: int = 3
    llm_min_retry_delay_ms: int = 20_000
    llm_max_retry_jitter_ms: int = 30_000
    llm_request_timeout_ms: int = 7 * 60 * 1000

    # Prompt cropping
    llm_crop_exceeded_safety_percent: float = 15.0
    llm_crop_overloaded_safety_percent: float = 5.0
    llm_crop_reserved_min_completion_tokens: int = 256
    llm_crop_min_completion_token_ratio: float = 0.25
    llm_crop_min_chars: int = 200
    llm_crop_max_per_request: int = 10

    # Batching
    llm_max_concurrency: int = 100

    # Logging
    log_level: str = "INFO"
    log_json: bool = False  # set True in production for structured JSON logs
    log_event_ticks: bool = False  # emit one DEBUG symbol per invocation event

    # Sentry
    sentry_dsn: str = ""  # leave empty to disable


settings = Settings()


def validate_settings(s: Settings | None = None) -> None:
    """Validate critical settings. Called on startup by entry-point scripts."""
    s = s or settings
    errors: list[str] = []

    if s.llm_provider == "openai" and not s.openai_api_key:
        errors.append("OPENAI_API_KEY must be set when LLM_PROVIDER=openai")

    if not s.openai_small_model and not s.openai_large_model:
        errors.append("At least one of OPENAI_SMALL_MODEL / OPENAI_LARGE_MODEL must be set")

    if s.llm_max_attempts < 1:
        errors.append("LLM_MAX_ATTEMPTS must be at least 1")

    if s.llm_max_concurrency < 1:
        errors.append("LLM_MAX_CONCURRENCY must be at least 1")

    for name in ("llm_crop_exceeded_safety_percent", "llm_crop_overloaded_safety_percent"):
        value = getattr(s, name)
        if not 0 <= value < 100:
            errors.append(f"{name.upper()} must be in the range [0, 100)")

    if errors:
        raise SystemExit("Configuration errors:\n  - " + "\n  - ".join(errors))
