"""Gateway to The Movie Database (TMDB) metadata API."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping

import httpx

from ..config import Settings
from ..models import MediaKind, MediaRef
from ..utils import as_number, is_tmdb_id

logger = logging.getLogger(__name__)

LEAD_CAST_SIZE = 3


@dataclass(slots=True)
class ListingPage:
    """One page of a TMDB list endpoint (trending, discover, now playing)."""

    results: list[dict[str, Any]] = field(default_factory=list)
    total_pages: int = 0
    total_results: int = 0


@dataclass(slots=True)
class Person:
    id: int
    name: str


class TMDBClient:
    """Thin wrapper around the TMDB HTTP API.

    Every call degrades to ``None`` (or an empty listing) when the provider
    fails, so a single flaky request only shrinks a recommendation pass.
    """

    def __init__(self, settings: Settings, http_client: httpx.AsyncClient):
        self._settings = settings
        self._client = http_client

    async def fetch(
        self, endpoint: str, params: Mapping[str, str | int] | None = None
    ) -> dict[str, Any] | None:
        """Return the decoded JSON object for ``endpoint`` or ``None`` on failure."""

        api_key = self._settings.tmdb_api_key
        if not api_key:
            logger.error("TMDB API key is missing; skipping %s", endpoint)
            return None

        query: dict[str, str] = {
            "api_key": api_key,
            "language": self._settings.tmdb_language,
        }
        if params:
            query.update({key: str(value) for key, value in params.items()})

        try:
            response = await self._client.get(endpoint, params=query)
        except httpx.HTTPError as exc:
            logger.warning("TMDB network error on %s: %s", endpoint, exc)
            return None

        if response.status_code >= 400:
            logger.warning("TMDB API error (%s) on %s", response.status_code, endpoint)
            return None

        try:
            payload = response.json()
        except ValueError:
            logger.warning("TMDB returned malformed JSON on %s", endpoint)
            return None
        if not isinstance(payload, dict):
            logger.warning("TMDB returned an unexpected payload on %s", endpoint)
            return None
        return payload

    async def details(self, ref: MediaRef) -> dict[str, Any] | None:
        return await self.fetch(
            f"/{ref.kind}/{ref.id}", {"append_to_response": "keywords"}
        )

    async def credits(self, ref: MediaRef) -> dict[str, Any] | None:
        return await self.fetch(f"/{ref.kind}/{ref.id}/credits")

    async def recommendations(self, ref: MediaRef) -> list[dict[str, Any]]:
        payload = await self.fetch(f"/{ref.kind}/{ref.id}/recommendations")
        return self._results(payload)

    async def similar(self, ref: MediaRef) -> list[dict[str, Any]]:
        payload = await self.fetch(f"/{ref.kind}/{ref.id}/similar")
        return self._results(payload)

    async def discover(
        self, kind: MediaKind, params: Mapping[str, str | int]
    ) -> ListingPage:
        payload = await self.fetch(f"/discover/{kind}", params)
        return self._listing(payload)

    async def discover_by_person(
        self,
        person_id: int,
        *,
        role: str,
        kind: MediaKind = "movie",
        genre_ids: list[int] | None = None,
    ) -> list[dict[str, Any]]:
        """Return well-voted works featuring a director (``crew``) or actor (``cast``)."""

        params: dict[str, str | int] = {
            f"with_{role}": person_id,
            "sort_by": "vote_average.desc" if role == "crew" else "popularity.desc",
            "vote_count.gte": 100,
            "page": 1,
        }
        if genre_ids:
            # Pipe-separated genre ids are OR-combined by TMDB.
            params["with_genres"] = "|".join(str(genre_id) for genre_id in genre_ids)
        listing = await self.discover(kind, params)
        return listing.results

    async def trending(self, page: int) -> ListingPage:
        payload = await self.fetch("/trending/all/week", {"page": page})
        return self._listing(payload)

    async def now_playing(self, page: int) -> ListingPage:
        payload = await self.fetch("/movie/now_playing", {"page": page})
        return self._listing(payload)

    @staticmethod
    def extract_directors(
        credits: Mapping[str, Any] | None, *, is_movie: bool
    ) -> list[Person]:
        """Directors for movies; anyone in the Directing department for series."""

        if not credits:
            return []
        crew = credits.get("crew") or []
        directors: list[Person] = []
        for member in crew:
            if not isinstance(member, dict) or not is_tmdb_id(member.get("id")):
                continue
            is_director = member.get("job") == "Director"
            if not is_movie:
                is_director = is_director or member.get("department") == "Directing"
            if is_director:
                directors.append(Person(int(member["id"]), str(member.get("name") or "")))
        return directors

    @staticmethod
    def extract_lead_cast(credits: Mapping[str, Any] | None) -> list[Person]:
        """Return the top-billed actors ordered by billing."""

        if not credits:
            return []
        cast = [
            member
            for member in credits.get("cast") or []
            if isinstance(member, dict) and is_tmdb_id(member.get("id"))
        ]
        cast.sort(key=lambda member: as_number(member.get("order")))
        return [
            Person(int(member["id"]), str(member.get("name") or ""))
            for member in cast[:LEAD_CAST_SIZE]
        ]

    @staticmethod
    def _results(payload: Mapping[str, Any] | None) -> list[dict[str, Any]]:
        if not payload:
            return []
        results = payload.get("results")
        if not isinstance(results, list):
            return []
        kept = [item for item in results if isinstance(item, dict) and is_tmdb_id(item.get("id"))]
        if len(kept) != len(results):
            logger.debug("Dropped %s TMDB results without a usable id", len(results) - len(kept))
        return kept

    @classmethod
    def _listing(cls, payload: Mapping[str, Any] | None) -> ListingPage:
        if not payload:
            return ListingPage()
        return ListingPage(
            results=cls._results(payload),
            total_pages=int(as_number(payload.get("total_pages"))),
            total_results=int(as_number(payload.get("total_results"))),
        )
