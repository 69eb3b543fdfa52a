"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import AliasChoices, Field, HttpUrl, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="Cinemix", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(
        default=None,
        alias="TMDB_API_KEY",
        validation_alias=AliasChoices("TMDB_API_KEY", "TMDB_KEY"),
    )
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")

    identity_lookup_url: HttpUrl = Field(
        default="https://api.ipify.org?format=json", alias="IDENTITY_LOOKUP_URL"
    )
    identity_lookup_enabled: bool = Field(
        default=True, alias="IDENTITY_LOOKUP_ENABLED"
    )
    identity_lookup_timeout_seconds: float = Field(
        default=5.0, alias="IDENTITY_LOOKUP_TIMEOUT", gt=0, le=60
    )

    history_key_prefix: str = Field(
        default="cinemix_watch_history_", alias="HISTORY_KEY_PREFIX"
    )
    browser_id_key: str = Field(default="cinemix_browser_id", alias="BROWSER_ID_KEY")
    max_history: int = Field(default=50, alias="MAX_HISTORY", ge=1, le=1_000)
    debounce_seconds: float = Field(
        default=1.0, alias="HISTORY_DEBOUNCE", ge=0, le=60
    )
    flush_poll_seconds: float = Field(
        default=0.25, alias="HISTORY_FLUSH_POLL", gt=0, le=60
    )

    rotation_window_hours: int = Field(
        default=4, alias="ROTATION_WINDOW_HOURS", ge=1, le=168
    )
    recent_window_days: int = Field(
        default=7, alias="RECENT_WINDOW_DAYS", ge=1, le=365
    )
    continue_watching_threshold: float = Field(
        default=95.0, alias="CONTINUE_WATCHING_THRESHOLD", gt=0, le=100
    )

    recommendation_genre_limit: int = Field(
        default=3, alias="RECOMMENDATION_GENRES", ge=1, le=10
    )
    items_per_genre: int = Field(default=4, alias="ITEMS_PER_GENRE", ge=1, le=20)
    recommendation_limit: int = Field(
        default=20, alias="RECOMMENDATION_LIMIT", ge=1, le=100
    )
    catalog_fetch_timeout_seconds: float = Field(
        default=8.0, alias="CATALOG_FETCH_TIMEOUT", gt=0, le=120
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./cinemix.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("tmdb_api_key", mode="before")
    @classmethod
    def _strip_blank_key(cls, value: object) -> object:
        """Treat blank API keys as missing."""

        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("history_key_prefix", "browser_id_key")
    @classmethod
    def _require_storage_key(cls, value: str) -> str:
        cleaned = value.strip()
        if not cleaned:
            raise ValueError("Storage keys may not be blank")
        return cleaned

    @model_validator(mode="after")
    def _check_recommendation_window(self) -> "Settings":
        """Ensure the display limit can be filled by the per-genre fetches."""

        if self.recommendation_limit > self.recommendation_genre_limit * self.items_per_genre * 2:
            raise ValueError(
                "RECOMMENDATION_LIMIT exceeds what RECOMMENDATION_GENRES and "
                "ITEMS_PER_GENRE can supply"
            )
        return self

    @property
    def rotation_window_ms(self) -> int:
        return self.rotation_window_hours * 60 * 60 * 1000

    @property
    def recent_window_ms(self) -> int:
        return self.recent_window_days * 24 * 60 * 60 * 1000

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", populate_by_name=True
    )


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
