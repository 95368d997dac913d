"""Candidate aggregation and scoring for recommendation passes."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Collection, Iterator, Mapping

from ..models import Explainability, MediaRef, ScoreBreakdown
from ..utils import as_number, is_tmdb_id

BASE_WEIGHT = 10
GENRE_WEIGHT = 5
SOURCE_WEIGHT = 20
SUPPLEMENTARY_REPEAT_BONUS = 10

PRIMARY_POPULARITY_CAP = 50
SUPPLEMENTARY_POPULARITY_CAP = 20
LISTING_POPULARITY_CAP = 30

REASON_PRIMARY = "tmdb_recommendation_or_similar"
REASON_GENRE = "genre_match"
REASON_CATEGORY = "category_match"
REASON_DIRECTOR = "director_affinity"
REASON_ACTOR = "actor_affinity"
REASON_GENRE_REQUEST = "genre_specific_request"
REASON_DISCOVER = "discover_supplement"
REASON_THEATRICAL = "theatrical_now_playing"
REASON_COLD_START = "cold_start_trending"


@dataclass(slots=True)
class ScoreParts:
    """Scoring terms shared by every discovery path."""

    base: float
    popularity: float
    genre: float
    matched_genres: tuple[int, ...]

    @property
    def combined(self) -> float:
        return self.base + self.popularity + self.genre


def item_genre_ids(item: Mapping[str, Any]) -> list[int]:
    """Integer genre ids of a raw metadata record; anything else is ignored."""

    raw = item.get("genre_ids")
    if not isinstance(raw, list):
        return []
    return [genre_id for genre_id in raw if is_tmdb_id(genre_id)]


def score_item(
    item: Mapping[str, Any],
    genre_counts: Mapping[int, int],
    *,
    popularity_cap: float,
) -> ScoreParts:
    """Score a raw metadata record against the user's genre histogram."""

    genre_ids = item_genre_ids(item)
    genre_hits = sum(genre_counts.get(genre_id, 0) for genre_id in genre_ids)
    return ScoreParts(
        base=as_number(item.get("vote_average")) * BASE_WEIGHT,
        popularity=min(as_number(item.get("popularity")) / 10, popularity_cap),
        genre=float(genre_hits * GENRE_WEIGHT),
        matched_genres=tuple(
            genre_id for genre_id in genre_ids if genre_counts.get(genre_id, 0) > 0
        ),
    )


@dataclass(slots=True)
class Candidate:
    """A scored recommendation before final top-K selection."""

    ref: MediaRef
    item: dict[str, Any]
    explainability: Explainability
    score: float
    sources: int

    def to_payload(self) -> dict[str, Any]:
        return {**self.item, "explainability": self.explainability.model_dump(mode="json")}


class CandidatePool:
    """Deduplicated candidates keyed by media identity.

    Excluded identities are rejected before scoring so they never count toward
    pagination totals.
    """

    def __init__(
        self,
        genre_counts: Mapping[int, int],
        excluded: Collection[MediaRef] = frozenset(),
    ):
        self._genre_counts = genre_counts
        self._excluded = excluded
        self._candidates: dict[MediaRef, Candidate] = {}

    def __contains__(self, ref: object) -> bool:
        return ref in self._candidates

    def __len__(self) -> int:
        return len(self._candidates)

    def __iter__(self) -> Iterator[Candidate]:
        return iter(self._candidates.values())

    def get(self, ref: MediaRef) -> Candidate | None:
        return self._candidates.get(ref)

    def candidates(self) -> list[Candidate]:
        return list(self._candidates.values())

    def is_excluded(self, ref: MediaRef) -> bool:
        return ref in self._excluded

    def add_primary(
        self,
        item: dict[str, Any],
        ref: MediaRef,
        *,
        reason_codes: tuple[str, ...] = (REASON_PRIMARY,),
        trailing_codes: tuple[str, ...] = (),
        source_label: str | None = None,
        primary_boost: float = 0.0,
        always_genre_code: bool = False,
    ) -> Candidate | None:
        """Record a hit from a source item's recommendations or similar titles.

        Repeat hits compound: the score becomes the freshly computed score plus
        ``sources * 20``. With ``always_genre_code`` the genre reason is recorded
        even when the title shares no genre with the profile.
        """

        if self.is_excluded(ref):
            return None
        parts = score_item(item, self._genre_counts, popularity_cap=PRIMARY_POPULARITY_CAP)
        combined = parts.combined + primary_boost

        existing = self._candidates.get(ref)
        if existing is not None:
            existing.sources += 1
            source_boost = float(existing.sources * SOURCE_WEIGHT)
            existing.score = combined + source_boost
            explainability = existing.explainability
            if parts.matched_genres or always_genre_code:
                explainability = explainability.with_reason(REASON_GENRE)
            explainability = explainability.with_liked(source_label).model_copy(
                update={
                    "source_appearances": existing.sources,
                    "matched_genres": parts.matched_genres,
                }
            )
            existing.explainability = explainability.with_breakdown(
                base=parts.base,
                popularity=parts.popularity,
                genre=parts.genre,
                source_boost=source_boost,
                primary_boost=primary_boost,
                total=existing.score,
            )
            return existing

        codes = list(reason_codes)
        if (parts.matched_genres or always_genre_code) and REASON_GENRE not in codes:
            codes.append(REASON_GENRE)
        codes.extend(code for code in trailing_codes if code not in codes)
        candidate = Candidate(
            ref=ref,
            item=item,
            explainability=Explainability(
                reason_codes=tuple(codes),
                source_appearances=1,
                matched_genres=parts.matched_genres,
                because_you_liked=(source_label,) if source_label else (),
                score_breakdown=ScoreBreakdown(
                    base=parts.base,
                    popularity=parts.popularity,
                    genre=parts.genre,
                    primary_boost=primary_boost,
                    total=combined,
                ),
            ),
            score=combined,
            sources=1,
        )
        self._candidates[ref] = candidate
        return candidate

    def add_supplementary(
        self,
        item: dict[str, Any],
        ref: MediaRef,
        *,
        reason: str,
        director_boost: float = 0.0,
        actor_boost: float = 0.0,
    ) -> Candidate | None:
        """Record a work found through a favourite director or actor.

        Works sharing no genre with the profile are ignored. A repeat hit only
        confirms: the score becomes ``max(existing, new) + 10``.
        """

        if self.is_excluded(ref):
            return None
        parts = score_item(
            item, self._genre_counts, popularity_cap=SUPPLEMENTARY_POPULARITY_CAP
        )
        if parts.genre == 0:
            return None
        combined = parts.combined + director_boost + actor_boost

        existing = self._candidates.get(ref)
        if existing is not None:
            existing.sources += 1
            existing.score = max(existing.score, combined) + SUPPLEMENTARY_REPEAT_BONUS
            breakdown = existing.explainability.score_breakdown
            explainability = existing.explainability.with_reason(reason).model_copy(
                update={
                    "source_appearances": existing.sources,
                    "matched_genres": parts.matched_genres,
                }
            )
            existing.explainability = explainability.with_breakdown(
                base=parts.base,
                popularity=parts.popularity,
                genre=parts.genre,
                director_boost=max(breakdown.director_boost, director_boost),
                actor_boost=max(breakdown.actor_boost, actor_boost),
                total=existing.score,
            )
            return existing

        candidate = Candidate(
            ref=ref,
            item=item,
            explainability=Explainability(
                reason_codes=(reason, REASON_GENRE),
                source_appearances=1,
                matched_genres=parts.matched_genres,
                score_breakdown=ScoreBreakdown(
                    base=parts.base,
                    popularity=parts.popularity,
                    genre=parts.genre,
                    director_boost=director_boost,
                    actor_boost=actor_boost,
                    total=combined,
                ),
            ),
            score=combined,
            sources=1,
        )
        self._candidates[ref] = candidate
        return candidate

    def add_listing(
        self,
        item: dict[str, Any],
        ref: MediaRef,
        *,
        reason_codes: tuple[str, ...],
        popularity_cap: float,
        director_boost: float = 0.0,
        actor_boost: float = 0.0,
        bonus: float = 0.0,
    ) -> Candidate | None:
        """Record filler from a list endpoint; never overwrites an existing candidate."""

        if self.is_excluded(ref) or ref in self._candidates:
            return None
        parts = score_item(item, self._genre_counts, popularity_cap=popularity_cap)
        total = parts.combined + director_boost + actor_boost + bonus
        candidate = Candidate(
            ref=ref,
            item=item,
            explainability=Explainability(
                reason_codes=reason_codes,
                source_appearances=0,
                matched_genres=parts.matched_genres,
                score_breakdown=ScoreBreakdown(
                    base=parts.base,
                    popularity=parts.popularity,
                    genre=parts.genre,
                    director_boost=director_boost,
                    actor_boost=actor_boost,
                    total=total,
                ),
            ),
            score=total,
            sources=0,
        )
        self._candidates[ref] = candidate
        return candidate
