"""Application configuration models."""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated, Iterable, Literal

from pydantic import Field, HttpUrl, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or a .env file."""

    app_name: str = Field(default="ReelMatch", alias="APP_NAME")
    server_host: str = Field(default="0.0.0.0", alias="HOST")
    server_port: int = Field(default=3000, alias="PORT")

    tmdb_api_key: str | None = Field(default=None, alias="TMDB_API_KEY")
    tmdb_api_url: HttpUrl = Field(
        default="https://api.themoviedb.org/3", alias="TMDB_API_URL"
    )
    tmdb_language: str = Field(default="en-US", alias="TMDB_LANGUAGE")

    recommendation_cache_ttl_seconds: int = Field(
        default=1_800, alias="RECOMMENDATION_CACHE_TTL", ge=60
    )
    recommendation_cache_version: str = Field(
        default="v4", alias="RECOMMENDATION_CACHE_VERSION", min_length=1
    )
    recommendation_debug_users: Annotated[tuple[str, ...], NoDecode] = Field(
        default=(), alias="RECOMMENDATION_DEBUG_USERS"
    )

    database_url: str = Field(
        default="sqlite+aiosqlite:///./reelmatch.db", alias="DATABASE_URL"
    )

    environment: Literal["development", "production"] = Field(
        default="development", alias="ENVIRONMENT"
    )

    @field_validator("recommendation_debug_users", mode="before")
    @classmethod
    def _parse_debug_users(cls, value: object) -> tuple[str, ...]:
        """Normalise the debug allow-list from environment values."""

        if value is None:
            return ()
        if isinstance(value, str):
            raw_values = [part.strip() for part in value.split(",")]
        elif isinstance(value, Iterable):
            raw_values = [str(part).strip() for part in value]
        else:
            raise TypeError(
                "RECOMMENDATION_DEBUG_USERS must be a string or iterable of strings"
            )

        cleaned: list[str] = []
        for entry in raw_values:
            if entry and entry not in cleaned:
                cleaned.append(entry)
        return tuple(cleaned)

    @property
    def recommendation_cache_ttl_minutes(self) -> int:
        return self.recommendation_cache_ttl_seconds // 60

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


@lru_cache
def get_settings() -> Settings:
    """Return a cached settings instance."""

    return Settings()  # type: ignore[call-arg]


settings = get_settings()
