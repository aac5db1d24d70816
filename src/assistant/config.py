"""Application configuration using environment variables."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import AliasChoices, AnyHttpUrl, Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

# Resolve the project root once so that `.env` is discovered regardless of CWD
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent


class Settings(BaseSettings):
    """Load configuration from environment variables and `.env`."""

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    openai_api_key: SecretStr = Field(
        ...,
        validation_alias=AliasChoices("OPENAI_API_KEY", "openai_api_key"),
    )
    openai_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://api.openai.com/v1"),
        validation_alias=AliasChoices("OPENAI_BASE_URL", "openai_base_url"),
    )
    chat_model: str = Field(
        default="gpt-5",
        validation_alias=AliasChoices("OPENAI_CHAT_MODEL", "chat_model"),
    )
    intent_model: str = Field(
        default="gpt-5-nano",
        validation_alias=AliasChoices("OPENAI_INTENT_MODEL", "intent_model"),
    )
    title_model: str = Field(
        default="gpt-4o-mini",
        validation_alias=AliasChoices(
            "OPENAI_TITLE_GEN_MODEL",
            "OPENAI_TTITLE_GEN_MODEL",
            "title_model",
        ),
    )
    image_model: str = Field(
        default="dall-e-3",
        validation_alias=AliasChoices("OPENAI_IMAGE_MODEL", "image_model"),
    )
    system_prompt: Optional[str] = Field(
        default=(
            "You are a friendly, knowledgeable assistant. Answer clearly, use the "
            "available tools when they improve your answer, and say so plainly when "
            "a tool could not help."
        ),
        validation_alias=AliasChoices("ASSISTANT_SYSTEM_PROMPT", "system_prompt"),
    )
    history_limit: int = Field(
        default=20,
        ge=0,
        validation_alias=AliasChoices("CHAT_HISTORY_LIMIT", "history_limit"),
    )

    # Upstream request deadline (server -> completion API)
    request_timeout: float = Field(
        default=240.0,
        ge=1,
        validation_alias=AliasChoices("OPENAI_TIMEOUT", "request_timeout"),
    )
    # Client-side deadlines per transport (client -> this service)
    stream_timeout: float = Field(
        default=240.0,
        ge=1,
        validation_alias=AliasChoices("CHAT_STREAM_TIMEOUT", "stream_timeout"),
    )
    buffered_timeout: float = Field(
        default=240.0,
        ge=1,
        validation_alias=AliasChoices("CHAT_BUFFERED_TIMEOUT", "buffered_timeout"),
    )
    reconciliation_delay_seconds: float = Field(
        default=3.0,
        ge=0,
        validation_alias=AliasChoices(
            "CHAT_RECONCILIATION_DELAY", "reconciliation_delay_seconds"
        ),
    )

    google_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("GOOGLE_API_KEY", "google_api_key"),
    )
    google_cse_id: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("GOOGLE_CSE_ID", "google_cse_id"),
    )
    search_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl(
            "https://www.googleapis.com/customsearch/v1"
        ),
        validation_alias=AliasChoices("SEARCH_BASE_URL", "search_base_url"),
    )
    search_result_limit: int = Field(
        default=5,
        ge=1,
        le=10,
        validation_alias=AliasChoices("SEARCH_RESULT_LIMIT", "search_result_limit"),
    )
    enable_ai_web_search_detection: bool = Field(
        default=True,
        validation_alias=AliasChoices(
            "ENABLE_AI_WEB_SEARCH_DETECTION",
            "enable_ai_web_search_detection",
        ),
    )

    chat_database_path: Path = Field(
        default_factory=lambda: Path("data/chat.db"),
        validation_alias=AliasChoices("CHAT_DATABASE_PATH", "chat_db"),
    )

    feedback_rate_limit: int = Field(
        default=10,
        ge=1,
        validation_alias=AliasChoices("FEEDBACK_RATE_LIMIT", "feedback_rate_limit"),
    )
    feedback_rate_window_seconds: float = Field(
        default=300.0,
        gt=0,
        validation_alias=AliasChoices(
            "FEEDBACK_RATE_WINDOW_SECONDS", "feedback_rate_window_seconds"
        ),
    )

    logging_settings_path: Path = Field(
        default_factory=lambda: Path("logging_settings.conf"),
        validation_alias=AliasChoices(
            "LOGGING_SETTINGS_PATH", "logging_settings_path"
        ),
    )
    log_dir: Path = Field(
        default_factory=lambda: Path("logs/app"),
        validation_alias=AliasChoices("LOG_DIR", "log_dir"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["PROJECT_ROOT", "Settings", "get_settings"]
