"""Configuration settings behaviour tests."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from app.config import Settings


def test_defaults() -> None:
    settings = Settings(_env_file=None)

    assert settings.server_port == 3000
    assert settings.recommendation_cache_ttl_seconds == 1_800
    assert settings.recommendation_cache_ttl_minutes == 30
    assert settings.recommendation_cache_version == "v4"
    assert settings.recommendation_debug_users == ()
    assert str(settings.tmdb_api_url).startswith("https://api.themoviedb.org/3")


def test_debug_users_parse_comma_separated_values() -> None:
    """Debug users should be trimmed and deduplicated."""

    settings = Settings(_env_file=None, RECOMMENDATION_DEBUG_USERS=" alice, bob ,,alice ")

    assert settings.recommendation_debug_users == ("alice", "bob")


def test_debug_users_accept_iterables() -> None:
    settings = Settings(_env_file=None, RECOMMENDATION_DEBUG_USERS=["carol", " dave "])

    assert settings.recommendation_debug_users == ("carol", "dave")


def test_debug_users_read_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    """Plain comma-separated environment values should not be JSON decoded."""

    monkeypatch.setenv("RECOMMENDATION_DEBUG_USERS", "erin,frank")

    settings = Settings(_env_file=None)

    assert settings.recommendation_debug_users == ("erin", "frank")


def test_cache_ttl_has_a_floor() -> None:
    """TTLs shorter than a minute should be rejected."""

    with pytest.raises(ValidationError):
        Settings(_env_file=None, RECOMMENDATION_CACHE_TTL=30)


def test_cache_version_is_configurable() -> None:
    settings = Settings(
        _env_file=None, RECOMMENDATION_CACHE_VERSION="v5", RECOMMENDATION_CACHE_TTL=600
    )

    assert settings.recommendation_cache_version == "v5"
    assert settings.recommendation_cache_ttl_minutes == 10
