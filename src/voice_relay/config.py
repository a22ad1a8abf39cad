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

    # Optional at startup; the completion client refuses to run without it.
    openrouter_api_key: SecretStr | None = Field(
        default=None,
        validation_alias=AliasChoices("OPENROUTER_API_KEY", "openrouter_api_key"),
    )
    openrouter_base_url: AnyHttpUrl = Field(
        default_factory=lambda: AnyHttpUrl("https://openrouter.ai/api/v1"),
        validation_alias=AliasChoices("OPENROUTER_BASE_URL", "openrouter_base_url"),
    )
    openrouter_app_url: Optional[AnyHttpUrl] = Field(
        default=None,
        validation_alias=AliasChoices(
            "OPENROUTER_APP_URL",
            "openrouter_app_url",
            "HTTP_REFERER",
            "http_referer",
            "REFERER",
        ),
    )
    openrouter_app_name: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices(
            "OPENROUTER_APP_TITLE",
            "openrouter_app_name",
            "X_TITLE",
            "x_title",
        ),
    )
    default_model: str = Field(
        default="openai/gpt-4o",
        validation_alias=AliasChoices(
            "OPENROUTER_DEFAULT_MODEL",
            "default_model",
        ),
    )
    max_tokens: int = Field(
        default=150,
        ge=1,
        validation_alias=AliasChoices("VOICE_MAX_TOKENS", "max_tokens"),
    )
    temperature: Optional[float] = Field(
        default=None,
        ge=0.0,
        le=2.0,
        validation_alias=AliasChoices("VOICE_TEMPERATURE", "temperature"),
    )
    request_timeout: float = Field(
        default=120.0,
        validation_alias=AliasChoices("OPENROUTER_TIMEOUT", "request_timeout"),
        ge=1,
    )

    # Voice session behaviour
    voice_history_limit: int = Field(
        default=10,
        ge=1,
        validation_alias=AliasChoices("VOICE_HISTORY_LIMIT", "voice_history_limit"),
    )
    greeting_cue_delay: float = Field(
        default=3.0,
        ge=0,
        validation_alias=AliasChoices(
            "VOICE_GREETING_CUE_DELAY", "greeting_cue_delay"
        ),
    )
    reply_cue_delay: float = Field(
        default=2.0,
        ge=0,
        validation_alias=AliasChoices("VOICE_REPLY_CUE_DELAY", "reply_cue_delay"),
    )
    audio_frame_threshold: int = Field(
        default=1000,
        ge=1,
        validation_alias=AliasChoices(
            "VOICE_AUDIO_FRAME_THRESHOLD", "audio_frame_threshold"
        ),
    )

    transcript_log_dir: Path = Field(
        default_factory=lambda: Path("logs/voice"),
        validation_alias=AliasChoices("TRANSCRIPT_LOG_DIR", "transcript_log_dir"),
    )
    app_log_dir: Path = Field(
        default_factory=lambda: Path("logs/app"),
        validation_alias=AliasChoices("APP_LOG_DIR", "app_log_dir"),
    )

    cors_allow_origins: list[str] = Field(
        default_factory=lambda: ["*"],
        validation_alias=AliasChoices("CORS_ALLOW_ORIGINS", "cors_allow_origins"),
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached `Settings` instance."""

    return Settings()  # pyright: ignore[reportCallIssue]


__all__ = ["PROJECT_ROOT", "Settings", "get_settings"]
