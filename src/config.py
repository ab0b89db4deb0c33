from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    anthropic_api_key: str = ""
    openai_api_key: str = ""

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""

    # Models
    routing_model: str = "claude-sonnet-4-20250514"
    extraction_model: str = "claude-sonnet-4-20250514"
    classifier_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 120.0

    # Conversation state
    pending_offer_ttl_seconds: int = 300
    short_reply_word_limit: int = 5

    # Progress notices
    progress_delay_seconds: float = 8.0
    max_progress_messages: int = 4
    notifier_url: str = ""  # progress notices are skipped when empty

    # App config
    api_host: str = "0.0.0.0"
    api_port: int = 8000

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
