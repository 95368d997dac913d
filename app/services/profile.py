"""Affinity profiles built from a sample of the user's source items."""

from __future__ import annotations

import asyncio
import logging
import random
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Sequence

from ..models import MediaRef
from ..utils import is_tmdb_id
from .tmdb import TMDBClient

logger = logging.getLogger(__name__)

SIGNIFICANT_PERSON_COUNT = 2
TOP_PEOPLE = 2
TOP_GENRES = 3


@dataclass(slots=True)
class PersonAffinity:
    id: int
    name: str
    count: int = 0


@dataclass(slots=True)
class SampledSource:
    """Related titles discovered for one sampled source item."""

    ref: MediaRef
    label: str
    recommendations: list[dict[str, Any]] = field(default_factory=list)
    similar: list[dict[str, Any]] = field(default_factory=list)

    @property
    def related(self) -> list[dict[str, Any]]:
        return [*self.recommendations, *self.similar]


@dataclass(slots=True)
class AffinityProfile:
    """Genre, director and lead-actor histograms for one recommendation pass."""

    genres: Counter[int] = field(default_factory=Counter)
    genre_names: dict[int, str] = field(default_factory=dict)
    directors: dict[int, PersonAffinity] = field(default_factory=dict)
    actors: dict[int, PersonAffinity] = field(default_factory=dict)

    def top_genre_ids(self, limit: int = TOP_GENRES) -> list[int]:
        return [genre_id for genre_id, _ in self.genres.most_common(limit)]

    def genres_by_affinity(self) -> list[tuple[int, str, int]]:
        return [
            (genre_id, self.genre_names.get(genre_id, str(genre_id)), count)
            for genre_id, count in self.genres.most_common()
        ]

    def top_directors(self, limit: int = TOP_PEOPLE) -> list[PersonAffinity]:
        return self._top(self.directors, limit)

    def top_actors(self, limit: int = TOP_PEOPLE) -> list[PersonAffinity]:
        return self._top(self.actors, limit)

    def significant_directors(self) -> dict[int, PersonAffinity]:
        return self._significant(self.directors)

    def significant_actors(self) -> dict[int, PersonAffinity]:
        return self._significant(self.actors)

    @staticmethod
    def _significant(people: dict[int, PersonAffinity]) -> dict[int, PersonAffinity]:
        return {
            person_id: person
            for person_id, person in people.items()
            if person.count >= SIGNIFICANT_PERSON_COUNT
        }

    @classmethod
    def _top(cls, people: dict[int, PersonAffinity], limit: int) -> list[PersonAffinity]:
        ranked = sorted(
            cls._significant(people).values(), key=lambda person: person.count, reverse=True
        )
        return ranked[:limit]


def format_source_label(title: str, *, is_movie: bool) -> str:
    return f"{title} ({'movie' if is_movie else 'tv show'})"


class ProfileBuilder:
    """Samples source items and derives affinities from their metadata."""

    def __init__(self, tmdb: TMDBClient, rng: random.Random | None = None):
        self._tmdb = tmdb
        self._rng = rng or random.Random()

    def sample(self, items: Sequence[MediaRef], size: int) -> list[MediaRef]:
        """Uniformly shuffle ``items`` and keep at most ``size`` of them."""

        return self._rng.sample(list(items), k=min(len(items), max(size, 0)))

    async def build(
        self,
        items: Sequence[MediaRef],
        *,
        sample_size: int,
        include_credits: bool = True,
        include_related: bool = True,
    ) -> tuple[AffinityProfile, list[SampledSource]]:
        """Fetch metadata for a random sample and fold it into histograms."""

        sampled = self.sample(items, sample_size)
        fetched = await asyncio.gather(
            *(
                self._fetch_source(
                    ref,
                    include_credits=include_credits,
                    include_related=include_related,
                )
                for ref in sampled
            )
        )

        profile = AffinityProfile()
        sources: list[SampledSource] = []
        for ref, details, credits, source in fetched:
            for genre in (details or {}).get("genres") or []:
                if not isinstance(genre, dict) or not is_tmdb_id(genre.get("id")):
                    continue
                genre_id = genre["id"]
                profile.genres[genre_id] += 1
                if genre.get("name"):
                    profile.genre_names.setdefault(genre_id, str(genre["name"]))
            for director in TMDBClient.extract_directors(credits, is_movie=ref.is_movie):
                _bump(profile.directors, director.id, director.name)
            for actor in TMDBClient.extract_lead_cast(credits):
                _bump(profile.actors, actor.id, actor.name)
            sources.append(source)

        logger.debug(
            "Built affinity profile from %s of %s source items (%s genres, %s directors, %s actors)",
            len(sampled),
            len(items),
            len(profile.genres),
            len(profile.directors),
            len(profile.actors),
        )
        return profile, sources

    async def _fetch_source(
        self,
        ref: MediaRef,
        *,
        include_credits: bool,
        include_related: bool,
    ) -> tuple[MediaRef, dict[str, Any] | None, dict[str, Any] | None, SampledSource]:
        details_task = self._tmdb.details(ref)
        credits_task = self._tmdb.credits(ref) if include_credits else _nothing()
        recommendations_task = (
            self._tmdb.recommendations(ref) if include_related else _no_results()
        )
        similar_task = self._tmdb.similar(ref) if include_related else _no_results()
        details, credits, recommendations, similar = await asyncio.gather(
            details_task, credits_task, recommendations_task, similar_task
        )

        title = (details or {}).get("title") or (details or {}).get("name") or str(ref.id)
        source = SampledSource(
            ref=ref,
            label=format_source_label(str(title), is_movie=ref.is_movie),
            recommendations=recommendations,
            similar=similar,
        )
        return ref, details, credits, source


def _bump(people: dict[int, PersonAffinity], person_id: int, name: str) -> None:
    person = people.get(person_id)
    if person is None:
        person = people[person_id] = PersonAffinity(person_id, name)
    person.count += 1


async def _nothing() -> None:
    return None


async def _no_results() -> list[dict[str, Any]]:
    return []
