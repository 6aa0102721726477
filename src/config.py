from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    An empty API key means that extraction backend is not configured.
    """

    # API Keys
    openai_api_key: str = ""  # Primary backend
    anthropic_api_key: str = ""  # Secondary backend

    # Backend models
    primary_model: str = "gpt-4o-mini"
    secondary_model: str = "claude-sonnet-4-20250514"
    llm_max_tokens: int = 1024
    llm_timeout_seconds: float = 30.0

    # Retry policy for each backend call
    retry_max_retries: int = 2
    retry_initial_delay_ms: int = 1000
    retry_max_delay_ms: int = 10000

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
