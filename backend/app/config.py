"""Typed settings configuration - single source of truth."""

from functools import lru_cache

from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database (unset -> in-memory repositories)
    database_url: str | None = None

    # LLM (unset key -> deterministic stub client)
    openai_api_key: SecretStr | None = None
    openai_model: str = "gpt-4o-mini"
    llm_timeout_seconds: float = 20.0

    # Place lookup
    places_api_key: SecretStr | None = None
    places_base_url: str = "https://places.googleapis.com/v1/places:searchText"
    places_timeout_seconds: float = 4.0
    places_cache_ttl_seconds: int = 24 * 3600
    places_cache_max_entries: int = 1024

    # Intent classification
    intent_confidence_threshold: float = 0.6

    # Chat behaviour
    chat_auto_apply_default: bool = False
    chat_context_messages: int = 5

    # Disambiguation idle timeout (seconds)
    disambiguation_idle_timeout_seconds: int = 15 * 60

    # Real-time fan-out (per-connection outbound queue bound)
    realtime_queue_size: int = 100


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
