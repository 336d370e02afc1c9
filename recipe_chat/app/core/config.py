import logging
from functools import lru_cache
from typing import Dict, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    database_url: str = Field("sqlite:///./recipe_chat.db", alias="DATABASE_URL")
    auth_secret_key: str = Field("change-me", alias="AUTH_SECRET_KEY")
    auth_algorithm: str = Field("HS256", alias="AUTH_ALGORITHM")
    log_level: str = Field("INFO", alias="LOG_LEVEL")

    # OpenAI-compatible chat + embeddings endpoint
    llm_base_url: str | None = Field(None, alias="LLM_BASE_URL")
    llm_api_key: str | None = Field(None, alias="LLM_API_KEY")
    llm_model_name: str = Field("gpt-4o-mini", alias="LLM_MODEL_NAME")
    llm_timeout_seconds: float = Field(30.0, alias="LLM_TIMEOUT_SECONDS")
    embedding_model_name: str = Field("text-embedding-3-small", alias="EMBEDDING_MODEL_NAME")
    embedding_dimensions: int = Field(1536, alias="EMBEDDING_DIMENSIONS")
    embedding_timeout_seconds: float = Field(20.0, alias="EMBEDDING_TIMEOUT_SECONDS")

    # Routing policy
    confidence_threshold: float = Field(0.8, alias="CONFIDENCE_THRESHOLD")
    intent_redirects: Dict[str, str] = Field(
        default_factory=lambda: {"generate_recipe": "search_recipe"},
        alias="INTENT_REDIRECTS",
    )
    classifier_history_turns: int = Field(4, alias="CLASSIFIER_HISTORY_TURNS")
    chat_history_context_length: int = Field(10, alias="CHAT_HISTORY_CONTEXT_LENGTH")
    chat_message_max_chars: int = Field(10000, alias="CHAT_MESSAGE_MAX_CHARS")
    store_message_max_chars: int = Field(50000, alias="STORE_MESSAGE_MAX_CHARS")

    # Fetching untrusted content
    url_max_length: int = Field(2048, alias="URL_MAX_LENGTH")
    fetch_timeout_seconds: float = Field(10.0, alias="FETCH_TIMEOUT_SECONDS")
    fetch_connect_timeout_seconds: float = Field(5.0, alias="FETCH_CONNECT_TIMEOUT_SECONDS")
    fetch_max_redirects: int = Field(5, alias="FETCH_MAX_REDIRECTS")
    fetch_max_bytes: int = Field(5 * 1024 * 1024, alias="FETCH_MAX_BYTES")
    extract_max_chars: int = Field(12000, alias="EXTRACT_MAX_CHARS")
    scraper_user_agent: str = Field(
        "Mozilla/5.0 (compatible; RecipeChatBot/1.0; +https://example.com/bot)",
        alias="SCRAPER_USER_AGENT",
    )
    caption_languages: List[str] = Field(default_factory=lambda: ["en", "en-US", "en-GB"], alias="CAPTION_LANGUAGES")
    captions_timeout_seconds: float = Field(30.0, alias="CAPTIONS_TIMEOUT_SECONDS")
    oembed_timeout_seconds: float = Field(5.0, alias="OEMBED_TIMEOUT_SECONDS")

    # Search
    search_limit: int = Field(10, alias="SEARCH_LIMIT")
    search_min_similarity: float = Field(0.3, alias="SEARCH_MIN_SIMILARITY")

    # Per-user sliding-window rate limits
    redis_url: str | None = Field(None, alias="REDIS_URL")
    rate_limit_window_seconds: int = Field(60, alias="RATE_LIMIT_WINDOW_SECONDS")
    rate_limit_chat_max: int = Field(10, alias="RATE_LIMIT_CHAT_MAX")
    rate_limit_store_max: int = Field(5, alias="RATE_LIMIT_STORE_MAX")

    model_config = SettingsConfigDict(
        env_file=".env", case_sensitive=False, extra="ignore", populate_by_name=True
    )


logger = logging.getLogger(__name__)


@lru_cache
def get_settings() -> Settings:
    try:
        settings = Settings()
    except PermissionError:
        logger.warning("Unable to read .env; continuing with environment variables only")
        settings = Settings(_env_file=None)
    return settings
