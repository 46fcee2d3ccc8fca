"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .utils import split_csv

DEFAULT_REFRESH_WINDOWS: tuple[int, ...] = (4, 12, 20)
DEFAULT_TRANSLATION_KEYS: tuple[str, ...] = (
    "zho",
    "zh-CN",
    "zh",
    "zh-Hans",
    "zh-Hant",
    "chi",
)
GIST_MAX_FILE_BYTES = 1024 * 1024


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="AniCache", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tvdb_api_key: str | None = Field(default=None, alias="THE_TVDB_API_KEY")
    tvdb_api_url: HttpUrl = Field(
        default="https://api4.thetvdb.com/v4", alias="THE_TVDB_API_URL"
    )
    anilist_api_url: HttpUrl = Field(
        default="https://graphql.anilist.co", alias="ANILIST_API_URL"
    )
    anilist_access_token: str | None = Field(
        default=None, alias="ANILIST_ACCESS_TOKEN"
    )
    anilist_page_size: int = Field(
        default=50, alias="ANILIST_PAGE_SIZE", ge=1, le=50
    )

    search_language: str = Field(default="en", alias="TMDB_SEARCH_LANGUAGE")
    metadata_language: str = Field(
        default="zh-CN", alias="PREFERRED_METADATA_LANGUAGE"
    )
    tvdb_translation_keys: Annotated[tuple[str, ...], NoDecode] = Field(
        default=DEFAULT_TRANSLATION_KEYS, alias="TVDB_TRANSLATION_KEYS"
    )

    enrichment_concurrency: int = Field(
        default=5, alias="ENRICHMENT_CONCURRENCY", ge=1, le=50
    )
    provider_timeout_seconds: float = Field(
        default=20.0, alias="PROVIDER_TIMEOUT", gt=0
    )
    no_data_cooldown_seconds: int = Field(
        default=86_400, alias="NO_DATA_COOLDOWN", ge=0
    )

    refresh_windows: Annotated[tuple[int, ...], NoDecode] = Field(
        default=DEFAULT_REFRESH_WINDOWS, alias="REFRESH_WINDOWS"
    )
    refresh_window_hours: int = Field(
        default=1, alias="REFRESH_WINDOW_HOURS", ge=1, le=24
    )
    data_validity_seconds: int = Field(
        default=28_800, alias="DATA_VALIDITY", ge=60
    )
    result_cache_seconds: int = Field(
        default=28_800, alias="RESULT_CACHE_TTL", ge=0
    )

    snapshot_backend: Literal["database", "gist"] = Field(
        default="database", alias="SNAPSHOT_BACKEND"
    )
    snapshot_file_name: str = Field(default="anime.json", alias="SNAPSHOT_FILE_NAME")
    snapshot_max_bytes: int = Field(
        default=GIST_MAX_FILE_BYTES, alias="SNAPSHOT_MAX_BYTES", ge=1_024
    )
    gist_id: str | None = Field(default=None, alias="GIST_ID")
    gist_token: str | None = Field(default=None, alias="GIST_TOKEN")
    github_api_url: HttpUrl = Field(
        default="https://api.github.com", alias="GITHUB_API_URL"
    )
    database_url: str = Field(
        default="sqlite+aiosqlite:///./anicache.db", alias="DATABASE_URL"
    )

    cron_secret: str | None = Field(default=None, alias="CRON_SECRET")

    background_refresh: bool = Field(default=False, alias="BACKGROUND_REFRESH")
    refresh_poll_seconds: int = Field(
        default=300, alias="REFRESH_POLL_SECONDS", ge=10
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("refresh_windows", mode="before")
    @classmethod
    def _parse_refresh_windows(cls, value: object) -> tuple[int, ...]:
        """Normalise refresh window hours from environment values."""

        if value is None:
            return DEFAULT_REFRESH_WINDOWS
        if isinstance(value, int):
            value = [value]
        cleaned: list[int] = []
        for entry in split_csv(value):
            try:
                hour = int(entry)
            except ValueError as exc:
                raise ValueError("REFRESH_WINDOWS must contain integer hours") from exc
            if not 0 <= hour <= 23:
                raise ValueError("REFRESH_WINDOWS hours must be between 0 and 23")
            if hour not in cleaned:
                cleaned.append(hour)
        if not cleaned:
            return DEFAULT_REFRESH_WINDOWS
        return tuple(sorted(cleaned))

    @field_validator("tvdb_translation_keys", mode="before")
    @classmethod
    def _parse_translation_keys(cls, value: object) -> tuple[str, ...]:
        cleaned: list[str] = []
        for entry in split_csv(value):
            if entry not in cleaned:
                cleaned.append(entry)
        if not cleaned:
            return DEFAULT_TRANSLATION_KEYS
        return tuple(cleaned)

    @field_validator(
        "tmdb_api_key",
        "tvdb_api_key",
        "gist_id",
        "gist_token",
        "cron_secret",
        mode="before",
    )
    @classmethod
    def _strip_blank(cls, value: object) -> object:
        if isinstance(value, str):
            stripped = value.strip()
            return stripped or None
        return value

    @property
    def has_tmdb(self) -> bool:
        return bool(self.tmdb_api_key)

    @property
    def has_tvdb(self) -> bool:
        return bool(self.tvdb_api_key)

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
