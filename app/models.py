"""Pydantic models and value types describing recommendation payloads."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

MediaKind = Literal["movie", "tv"]

TV_KEY_SUFFIX = "tv"
MAX_BECAUSE_YOU_LIKED = 2


@dataclass(frozen=True, slots=True)
class MediaRef:
    """Identity of a movie or series on the metadata provider.

    Stored collection rows and cached exclusion snapshots encode this as a
    string: ``"123"`` for movies and ``"123tv"`` for series.
    """

    kind: MediaKind
    id: int

    @classmethod
    def movie(cls, tmdb_id: int) -> "MediaRef":
        return cls("movie", int(tmdb_id))

    @classmethod
    def tv(cls, tmdb_id: int) -> "MediaRef":
        return cls("tv", int(tmdb_id))

    @classmethod
    def of(cls, tmdb_id: int, *, is_movie: bool) -> "MediaRef":
        return cls("movie" if is_movie else "tv", int(tmdb_id))

    @classmethod
    def from_key(cls, key: str) -> "MediaRef":
        """Parse the suffix-encoded identity used by the store."""

        raw = key.strip()
        kind: MediaKind = "movie"
        if raw.endswith(TV_KEY_SUFFIX):
            raw = raw[: -len(TV_KEY_SUFFIX)]
            kind = "tv"
        if not raw.isdigit():
            raise ValueError(f"Malformed media key: {key!r}")
        return cls(kind, int(raw))

    @property
    def is_movie(self) -> bool:
        return self.kind == "movie"

    @property
    def key(self) -> str:
        if self.is_movie:
            return str(self.id)
        return f"{self.id}{TV_KEY_SUFFIX}"

    def __str__(self) -> str:
        return self.key


class SourceCollection(BaseModel):
    """A collection the user designated as personalization input."""

    id: str
    name: str


class Genre(BaseModel):
    id: int
    name: str


class ScoreBreakdown(BaseModel):
    """Additive components that produced a candidate's score."""

    model_config = ConfigDict(frozen=True)

    base: float = 0.0
    popularity: float = 0.0
    genre: float = 0.0
    source_boost: float = 0.0
    director_boost: float = 0.0
    actor_boost: float = 0.0
    primary_boost: float = 0.0
    total: float = 0.0


class Explainability(BaseModel):
    """Why a title was recommended; replaced wholesale on every merge."""

    model_config = ConfigDict(frozen=True)

    reason_codes: tuple[str, ...] = ()
    source_appearances: int = 0
    matched_genres: tuple[int, ...] = ()
    because_you_liked: tuple[str, ...] = ()
    score_breakdown: ScoreBreakdown = Field(default_factory=ScoreBreakdown)

    def with_reason(self, code: str) -> "Explainability":
        if code in self.reason_codes:
            return self
        return self.model_copy(update={"reason_codes": (*self.reason_codes, code)})

    def with_liked(self, label: str | None) -> "Explainability":
        if not label or label in self.because_you_liked:
            return self
        liked = (*self.because_you_liked, label)[:MAX_BECAUSE_YOU_LIKED]
        return self.model_copy(update={"because_you_liked": liked})

    def with_breakdown(self, **changes: float) -> "Explainability":
        breakdown = self.score_breakdown.model_copy(update=changes)
        return self.model_copy(update={"score_breakdown": breakdown})


class RecommendationPage(BaseModel):
    """Paginated recommendations returned by the general, genre and theatrical endpoints."""

    model_config = ConfigDict(populate_by_name=True)

    results: list[dict[str, Any]] = Field(default_factory=list)
    source_collections: list[SourceCollection] = Field(
        default_factory=list, alias="sourceCollections"
    )
    total_source_items: int = Field(default=0, alias="totalSourceItems")
    page: int = 1
    total_pages: int = 0
    total_results: int = 0

    @classmethod
    def empty(cls) -> "RecommendationPage":
        return cls()


class CategorySection(BaseModel):
    genre: Genre
    results: list[dict[str, Any]] = Field(default_factory=list)
    total_results: int = 0


class CategoryRecommendations(BaseModel):
    """Recommendations grouped by the user's preferred genres."""

    model_config = ConfigDict(populate_by_name=True)

    categories: list[CategorySection] = Field(default_factory=list)
    media_type: MediaKind = Field(default="movie", alias="mediaType")
    source_collections: list[SourceCollection] = Field(
        default_factory=list, alias="sourceCollections"
    )
    total_source_items: int = Field(default=0, alias="totalSourceItems")


class ExclusionPayload(BaseModel):
    """Cached snapshot of suffix-encoded identities never to recommend."""

    model_config = ConfigDict(populate_by_name=True)

    movie_ids: list[str] = Field(default_factory=list, alias="movieIds")


class CacheDebugEntry(BaseModel):
    cache_key: str
    cache_version: str
    expires_at: datetime
    created_at: datetime
    updated_at: datetime
    payload_size: int


class CacheDebugReport(BaseModel):
    total: int = 0
    fresh: int = 0
    expired: int = 0
    entries: list[CacheDebugEntry] = Field(default_factory=list)
