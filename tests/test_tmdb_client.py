"""Tests for the TMDB gateway."""

from __future__ import annotations

from typing import Any

import httpx
import pytest

from app.config import Settings
from app.models import MediaRef
from app.services.tmdb import TMDBClient


@pytest.fixture
def anyio_backend() -> str:
    """Force AnyIO tests to run on asyncio without requiring trio."""

    return "asyncio"


def build_settings(**overrides: Any) -> Settings:
    """Return a settings object with defaults suitable for tests."""

    base = {"TMDB_API_KEY": "tmdb-key"}
    base.update(overrides)
    return Settings(_env_file=None, **base)  # type: ignore[arg-type]


def build_client(handler, **overrides: Any) -> TMDBClient:
    http_client = httpx.AsyncClient(
        base_url="https://tmdb.test/3", transport=httpx.MockTransport(handler)
    )
    return TMDBClient(build_settings(**overrides), http_client)


@pytest.mark.anyio("asyncio")
async def test_fetch_appends_credentials_and_language() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(200, json={"id": 603, "title": "The Matrix"})

    client = build_client(handler, TMDB_LANGUAGE="de-DE")
    payload = await client.details(MediaRef.movie(603))

    assert payload == {"id": 603, "title": "The Matrix"}
    assert requests[0].url.path == "/3/movie/603"
    assert requests[0].url.params["api_key"] == "tmdb-key"
    assert requests[0].url.params["language"] == "de-DE"
    assert requests[0].url.params["append_to_response"] == "keywords"


@pytest.mark.anyio("asyncio")
async def test_series_use_tv_endpoints() -> None:
    paths: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        paths.append(request.url.path)
        return httpx.Response(200, json={"results": [{"id": 1}, {"name": "no id"}]})

    client = build_client(handler)
    results = await client.similar(MediaRef.tv(1399))

    assert paths == ["/3/tv/1399/similar"]
    assert results == [{"id": 1}]


@pytest.mark.anyio("asyncio")
async def test_server_error_returns_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"status_message": "down"})

    client = build_client(handler)

    assert await client.credits(MediaRef.movie(1)) is None
    assert await client.recommendations(MediaRef.movie(1)) == []
    listing = await client.trending(1)
    assert listing.results == []
    assert listing.total_pages == 0


@pytest.mark.anyio("asyncio")
async def test_network_error_returns_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    client = build_client(handler)

    assert await client.fetch("/movie/1") is None


@pytest.mark.anyio("asyncio")
async def test_malformed_json_returns_none() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>oops</html>")

    client = build_client(handler)

    assert await client.fetch("/movie/1") is None


@pytest.mark.anyio("asyncio")
async def test_missing_api_key_skips_requests() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(200, json={})

    http_client = httpx.AsyncClient(
        base_url="https://tmdb.test/3", transport=httpx.MockTransport(handler)
    )
    client = TMDBClient(Settings(_env_file=None), http_client)

    assert await client.fetch("/movie/1") is None
    assert calls == 0


@pytest.mark.anyio("asyncio")
async def test_discover_by_person_filters_by_role_and_genres() -> None:
    params: list[httpx.QueryParams] = []

    def handler(request: httpx.Request) -> httpx.Response:
        params.append(request.url.params)
        return httpx.Response(
            200, json={"results": [{"id": 1}], "total_pages": 1, "total_results": 1}
        )

    client = build_client(handler)
    await client.discover_by_person(525, role="crew", genre_ids=[28, 878])
    await client.discover_by_person(6193, role="cast")

    assert params[0]["with_crew"] == "525"
    assert params[0]["sort_by"] == "vote_average.desc"
    assert params[0]["with_genres"] == "28|878"
    assert params[0]["vote_count.gte"] == "100"
    assert params[1]["with_cast"] == "6193"
    assert params[1]["sort_by"] == "popularity.desc"
    assert "with_genres" not in params[1]


def test_extract_directors_and_lead_cast() -> None:
    credits = {
        "crew": [
            {"id": 1, "name": "Director", "job": "Director", "department": "Directing"},
            {"id": 2, "name": "Showrunner", "job": "Series Director", "department": "Directing"},
            {"id": 3, "name": "Writer", "job": "Screenplay", "department": "Writing"},
        ],
        "cast": [
            {"id": 13, "name": "Fourth", "order": 3},
            {"id": 10, "name": "Lead", "order": 0},
            {"id": 12, "name": "Third", "order": 2},
            {"id": 11, "name": "Second", "order": 1},
        ],
    }

    movie_directors = TMDBClient.extract_directors(credits, is_movie=True)
    series_directors = TMDBClient.extract_directors(credits, is_movie=False)
    lead_cast = TMDBClient.extract_lead_cast(credits)

    assert [person.id for person in movie_directors] == [1]
    assert [person.id for person in series_directors] == [1, 2]
    assert [person.id for person in lead_cast] == [10, 11, 12]
    assert TMDBClient.extract_directors(None, is_movie=True) == []


@pytest.mark.anyio("asyncio")
async def test_results_without_integer_ids_are_dropped() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "results": [{"id": 5}, {"id": None}, {"id": "6"}, {"id": True}, {"id": -1}, "x"],
                "total_pages": "N/A",
                "total_results": None,
            },
        )

    client = build_client(handler)
    listing = await client.trending(1)

    assert listing.results == [{"id": 5}]
    assert listing.total_pages == 0
    assert listing.total_results == 0


def test_credit_extraction_tolerates_malformed_members() -> None:
    credits = {
        "crew": [{"id": None, "job": "Director"}, {"id": 4, "name": "Kept", "job": "Director"}],
        "cast": [
            {"id": 10, "name": "Unordered", "order": None},
            {"id": 11, "name": "Text order", "order": "2"},
            {"id": 12, "name": "Lead", "order": -1},
            {"id": "13", "name": "String id", "order": 0},
        ],
    }

    assert [person.id for person in TMDBClient.extract_directors(credits, is_movie=True)] == [4]
    assert [person.id for person in TMDBClient.extract_lead_cast(credits)] == [12, 10, 11]
