"""Affinity profile construction from sampled source items."""

from __future__ import annotations

import random

import httpx
import pytest

from app.config import Settings
from app.models import MediaRef
from app.services.profile import AffinityProfile, PersonAffinity, ProfileBuilder
from app.services.tmdb import TMDBClient

DETAILS = {
    "/3/movie/1": {"id": 1, "title": "Heat", "genres": [{"id": 80, "name": "Crime"}, {"id": 18, "name": "Drama"}]},
    "/3/movie/2": {"id": 2, "title": "Collateral", "genres": [{"id": 80, "name": "Crime"}]},
    "/3/tv/3": {"id": 3, "name": "The Wire", "genres": [{"id": 18, "name": "Drama"}]},
}

CREDITS = {
    "/3/movie/1/credits": {
        "crew": [{"id": 100, "name": "Michael Mann", "job": "Director"}],
        "cast": [{"id": 200, "name": "Al Pacino", "order": 0}],
    },
    "/3/movie/2/credits": {
        "crew": [{"id": 100, "name": "Michael Mann", "job": "Director"}],
        "cast": [{"id": 200, "name": "Al Pacino", "order": 0}, {"id": 201, "name": "Jamie Foxx", "order": 1}],
    },
    "/3/tv/3/credits": {
        "crew": [{"id": 300, "name": "David Simon", "job": "Executive Producer", "department": "Directing"}],
        "cast": [],
    },
}


def build_builder(requests: list[str]) -> ProfileBuilder:
    def handler(request: httpx.Request) -> httpx.Response:
        path = request.url.path
        requests.append(path)
        if path in DETAILS:
            return httpx.Response(200, json=DETAILS[path])
        if path in CREDITS:
            return httpx.Response(200, json=CREDITS[path])
        if path.endswith("/recommendations") or path.endswith("/similar"):
            return httpx.Response(200, json={"results": [{"id": len(requests)}]})
        return httpx.Response(404, json={})

    http_client = httpx.AsyncClient(
        base_url="https://tmdb.test/3", transport=httpx.MockTransport(handler)
    )
    tmdb = TMDBClient(Settings(_env_file=None, TMDB_API_KEY="key"), http_client)
    return ProfileBuilder(tmdb, random.Random(3))


SOURCES = [MediaRef.movie(1), MediaRef.movie(2), MediaRef.tv(3)]


@pytest.mark.anyio("asyncio")
async def test_build_counts_genres_directors_and_actors() -> None:
    requests: list[str] = []
    builder = build_builder(requests)

    profile, sources = await builder.build(SOURCES, sample_size=10)

    assert profile.genres == {80: 2, 18: 2}
    assert profile.genre_names == {80: "Crime", 18: "Drama"}
    assert [person.name for person in profile.top_directors()] == ["Michael Mann"]
    assert [person.id for person in profile.top_actors()] == [200]
    assert set(profile.significant_actors()) == {200}
    assert 300 in profile.directors
    assert sorted(source.label for source in sources) == [
        "Collateral (movie)",
        "Heat (movie)",
        "The Wire (tv show)",
    ]
    assert all(len(source.related) == 2 for source in sources)


@pytest.mark.anyio("asyncio")
async def test_build_can_skip_credits_and_related() -> None:
    requests: list[str] = []
    builder = build_builder(requests)

    profile, sources = await builder.build(
        SOURCES, sample_size=10, include_credits=False, include_related=False
    )

    assert all(path in DETAILS for path in requests)
    assert profile.directors == {}
    assert all(source.related == [] for source in sources)


def test_sample_is_bounded_and_unique() -> None:
    builder = build_builder([])
    items = [MediaRef.movie(tmdb_id) for tmdb_id in range(40)]

    sampled = builder.sample(items, 10)

    assert len(sampled) == 10
    assert len(set(sampled)) == 10
    assert set(sampled) <= set(items)
    assert len(builder.sample(items[:3], 10)) == 3


def test_seeded_sampling_is_reproducible() -> None:
    items = [MediaRef.movie(tmdb_id) for tmdb_id in range(40)]
    tmdb = TMDBClient(Settings(_env_file=None), httpx.AsyncClient())

    first = ProfileBuilder(tmdb, random.Random(42)).sample(items, 10)
    second = ProfileBuilder(tmdb, random.Random(42)).sample(items, 10)

    assert first == second


def test_top_people_require_two_appearances() -> None:
    profile = AffinityProfile(
        directors={
            1: PersonAffinity(1, "Once", 1),
            2: PersonAffinity(2, "Twice", 2),
            3: PersonAffinity(3, "Thrice", 3),
            4: PersonAffinity(4, "Four", 4),
        }
    )

    assert [person.id for person in profile.top_directors()] == [4, 3]
    assert set(profile.significant_directors()) == {2, 3, 4}


def test_genres_by_affinity_orders_by_count() -> None:
    profile = AffinityProfile()
    profile.genres.update({18: 1, 80: 3, 28: 2})
    profile.genre_names.update({18: "Drama", 80: "Crime"})

    assert profile.genres_by_affinity() == [(80, "Crime", 3), (28, "28", 2), (18, "Drama", 1)]
    assert profile.top_genre_ids(2) == [80, 28]
