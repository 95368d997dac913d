"""Recommendation strategies and their cached entry points."""

from __future__ import annotations

import asyncio
import logging
import math
import random
from typing import Any, Iterable, Sequence

from ..models import (
    CacheDebugReport,
    CategoryRecommendations,
    CategorySection,
    ExclusionPayload,
    Genre,
    MediaKind,
    MediaRef,
    RecommendationPage,
    SourceCollection,
)
from ..utils import as_number, collection_snapshot_token
from .cache import RecommendationCache
from .library import LibraryStore, UserFlags
from .profile import AffinityProfile, ProfileBuilder
from .ranking import page_count, paginate, select_top_k
from .scoring import (
    LISTING_POPULARITY_CAP,
    PRIMARY_POPULARITY_CAP,
    REASON_ACTOR,
    REASON_CATEGORY,
    REASON_COLD_START,
    REASON_DIRECTOR,
    REASON_DISCOVER,
    REASON_GENRE,
    REASON_GENRE_REQUEST,
    REASON_PRIMARY,
    REASON_THEATRICAL,
    CandidatePool,
    item_genre_ids,
    score_item,
)
from .tmdb import ListingPage, TMDBClient

logger = logging.getLogger(__name__)

GENERAL_SAMPLE_SIZE = 10
CATEGORY_SAMPLE_SIZE = 15
GENRE_SAMPLE_SIZE = 20
THEATRICAL_SAMPLE_SIZE = 10

WORKS_PER_PERSON = 3
PERSON_BOOST = 3
THEATRICAL_DIRECTOR_BOOST = 10
THEATRICAL_ACTOR_BOOST = 5
GENRE_PRIMARY_BOOST = 100.0

COLD_START_MAX_PAGES = 6
DISCOVER_PAGE_SIZE = 20
DISCOVER_MAX_PAGES = 10
NOW_PLAYING_MIN_PAGES = 3
NOW_PLAYING_MAX_PAGES = 10
VOTE_COUNT_SCALE = 200
VOTE_COUNT_CAP = 20


class RecommendationService:
    """Generates personalised recommendations and caches them per user.

    The ``generate_*`` methods always recompute; the entry points named after
    each surface (``for_you``, ``categories``, ``genre``, ``theatrical``) go
    through :class:`RecommendationCache` first.
    """

    def __init__(
        self,
        tmdb: TMDBClient,
        library: LibraryStore,
        cache: RecommendationCache,
        *,
        rng: random.Random | None = None,
    ):
        self._tmdb = tmdb
        self._library = library
        self._cache = cache
        self._profiles = ProfileBuilder(tmdb, rng)

    @property
    def cache(self) -> RecommendationCache:
        return self._cache

    # Cached entry points -------------------------------------------------

    async def for_you(
        self, user_id: str, *, limit: int = 20, page: int = 1
    ) -> RecommendationPage:
        return await self._cache.get_cached(
            user_id,
            "for_you",
            {"limit": limit, "page": page},
            lambda: self.generate_for_you(user_id, limit=limit, page=page),
            RecommendationPage,
        )

    async def categories(
        self, user_id: str, *, media_type: MediaKind = "movie", limit: int = 10
    ) -> CategoryRecommendations:
        return await self._cache.get_cached(
            user_id,
            "categories",
            {"mediaType": media_type, "limit": limit},
            lambda: self.generate_categories(user_id, media_type=media_type, limit=limit),
            CategoryRecommendations,
        )

    async def genre(
        self,
        user_id: str,
        genre_id: int,
        *,
        media_type: MediaKind = "movie",
        limit: int = 20,
        page: int = 1,
    ) -> RecommendationPage:
        return await self._cache.get_cached(
            user_id,
            "genre",
            {"genreId": genre_id, "mediaType": media_type, "limit": limit, "page": page},
            lambda: self.generate_genre(
                user_id, genre_id, media_type=media_type, limit=limit, page=page
            ),
            RecommendationPage,
        )

    async def theatrical(
        self, user_id: str, *, limit: int = 20, page: int = 1
    ) -> RecommendationPage:
        return await self._cache.get_cached(
            user_id,
            "theatrical",
            {"limit": limit, "page": page},
            lambda: self.generate_theatrical(user_id, limit=limit, page=page),
            RecommendationPage,
        )

    # Strategies ----------------------------------------------------------

    async def generate_for_you(
        self, user_id: str, *, limit: int = 20, page: int = 1
    ) -> RecommendationPage:
        """General recommendations from related titles and favourite people."""

        flags = await self._library.get_user_flags(user_id)
        if flags is None or not flags.recommendations_enabled:
            return RecommendationPage.empty()

        collections = await self._library.get_source_collections(user_id)
        if not collections:
            return await self.generate_cold_start(user_id, limit=limit, page=page)

        items = await self._library.get_source_items(user_id)
        if not items:
            return await self.generate_cold_start(
                user_id, limit=limit, page=page, source_collections=collections
            )

        excluded = await self.exclusion_snapshot(
            user_id, [collection.id for collection in collections]
        )
        profile, sources = await self._profiles.build(
            items, sample_size=GENERAL_SAMPLE_SIZE
        )

        pool = CandidatePool(profile.genres, excluded)
        for source in sources:
            for item in source.related:
                pool.add_primary(
                    item,
                    MediaRef.of(item["id"], is_movie=source.ref.is_movie),
                    source_label=source.label,
                )
        await self._add_person_works(pool, profile)

        candidates = pool.candidates()
        logger.info(
            "Generated %s general candidates for user %s from %s sampled of %s source items",
            len(candidates),
            user_id,
            len(sources),
            len(items),
        )
        return RecommendationPage(
            results=[candidate.to_payload() for candidate in paginate(candidates, page, limit)],
            source_collections=collections,
            total_source_items=len(items),
            page=page,
            total_pages=page_count(len(candidates), limit),
            total_results=len(candidates),
        )

    async def generate_cold_start(
        self,
        user_id: str,
        *,
        limit: int = 20,
        page: int = 1,
        source_collections: Sequence[SourceCollection] = (),
    ) -> RecommendationPage:
        """Trending titles ranked by rating, popularity and vote volume."""

        excluded = _parse_keys(await self._library.get_exclusion_keys(user_id, []))
        page_total = min(max(page + 1, 2), COLD_START_MAX_PAGES)
        listings = await asyncio.gather(
            *(self._tmdb.trending(number) for number in range(1, page_total + 1))
        )
        fetched = [item for listing in listings for item in listing.results]

        pool = CandidatePool({}, excluded)
        for item in fetched:
            ref = _trending_ref(item)
            if ref is None:
                continue
            vote_count = as_number(item.get("vote_count"))
            pool.add_listing(
                item,
                ref,
                reason_codes=(REASON_COLD_START,),
                popularity_cap=LISTING_POPULARITY_CAP,
                bonus=min(vote_count / VOTE_COUNT_SCALE, VOTE_COUNT_CAP),
            )

        candidates = pool.candidates()
        total_results, total_pages = _estimate_totals(
            len(candidates), len(fetched), listings[0], limit
        )
        logger.info(
            "Generated %s cold start candidates for user %s", len(candidates), user_id
        )
        return RecommendationPage(
            results=[candidate.to_payload() for candidate in paginate(candidates, page, limit)],
            source_collections=list(source_collections),
            total_source_items=0,
            page=page,
            total_pages=total_pages,
            total_results=total_results,
        )

    async def generate_categories(
        self, user_id: str, *, media_type: MediaKind = "movie", limit: int = 10
    ) -> CategoryRecommendations:
        """Related titles grouped by the user's preferred genres."""

        empty = CategoryRecommendations(media_type=media_type)
        flags = await self._library.get_user_flags(user_id)
        if not _category_features_enabled(flags):
            return empty

        collections = await self._library.get_source_collections(user_id)
        if not collections:
            return empty
        items = await self._library.get_source_items(user_id)
        if not items:
            return empty.model_copy(update={"source_collections": collections})

        excluded = await self.exclusion_snapshot(
            user_id, [collection.id for collection in collections]
        )
        typed = [ref for ref in items if ref.kind == media_type]
        if not typed:
            return empty.model_copy(
                update={"source_collections": collections, "total_source_items": len(items)}
            )

        profile, sources = await self._profiles.build(
            typed, sample_size=CATEGORY_SAMPLE_SIZE, include_credits=False
        )
        pool = CandidatePool(profile.genres, excluded)
        for source in sources:
            for item in source.related:
                pool.add_primary(
                    item,
                    MediaRef.of(item["id"], is_movie=media_type == "movie"),
                    trailing_codes=(REASON_CATEGORY,),
                )

        candidates = pool.candidates()
        sections: list[CategorySection] = []
        for genre_id, name, _ in profile.genres_by_affinity():
            matching = [
                candidate
                for candidate in candidates
                if genre_id in item_genre_ids(candidate.item)
            ]
            top = select_top_k(matching, limit)
            if not top:
                continue
            sections.append(
                CategorySection(
                    genre=Genre(id=genre_id, name=name),
                    results=[candidate.to_payload() for candidate in top],
                    total_results=len(top),
                )
            )

        logger.info(
            "Generated %s %s categories for user %s from %s candidates",
            len(sections),
            media_type,
            user_id,
            len(candidates),
        )
        return CategoryRecommendations(
            categories=sections,
            media_type=media_type,
            source_collections=collections,
            total_source_items=len(items),
        )

    async def generate_genre(
        self,
        user_id: str,
        genre_id: int,
        *,
        media_type: MediaKind = "movie",
        limit: int = 20,
        page: int = 1,
    ) -> RecommendationPage:
        """Related titles in one genre, topped up from the discover listing."""

        flags = await self._library.get_user_flags(user_id)
        if not _category_features_enabled(flags):
            return RecommendationPage.empty()

        collections = await self._library.get_source_collections(user_id)
        if not collections:
            return RecommendationPage.empty()
        items = await self._library.get_source_items(user_id)
        if not items:
            return RecommendationPage(source_collections=collections)

        excluded = await self.exclusion_snapshot(
            user_id, [collection.id for collection in collections]
        )
        typed = [ref for ref in items if ref.kind == media_type]
        if not typed:
            return RecommendationPage(
                source_collections=collections, total_source_items=len(items)
            )

        profile, sources = await self._profiles.build(
            typed, sample_size=GENRE_SAMPLE_SIZE, include_credits=False
        )
        pool = CandidatePool(profile.genres, excluded)
        for source in sources:
            for item in source.related:
                if genre_id not in item_genre_ids(item):
                    continue
                pool.add_primary(
                    item,
                    MediaRef.of(item["id"], is_movie=media_type == "movie"),
                    reason_codes=(REASON_GENRE_REQUEST, REASON_PRIMARY, REASON_GENRE),
                    primary_boost=GENRE_PRIMARY_BOOST,
                    always_genre_code=True,
                )

        primary_count = len(pool)
        needed = page * limit
        discover_pages = min(
            max(1, math.ceil((needed - primary_count + limit) / DISCOVER_PAGE_SIZE)),
            DISCOVER_MAX_PAGES,
        )
        listings = await asyncio.gather(
            *(
                self._tmdb.discover(
                    media_type,
                    {
                        "with_genres": genre_id,
                        "sort_by": "vote_average.desc",
                        "vote_count.gte": 100,
                        "vote_average.gte": "6.0",
                        "page": number,
                    },
                )
                for number in range(1, discover_pages + 1)
            )
        )
        for listing in listings:
            for item in listing.results:
                pool.add_listing(
                    item,
                    MediaRef.of(item["id"], is_movie=media_type == "movie"),
                    reason_codes=(REASON_GENRE_REQUEST, REASON_DISCOVER),
                    popularity_cap=PRIMARY_POPULARITY_CAP,
                )

        candidates = pool.candidates()
        total_results = max(len(candidates), listings[0].total_results)
        logger.info(
            "Generated %s genre %s candidates (%s primary) for user %s",
            len(candidates),
            genre_id,
            primary_count,
            user_id,
        )
        return RecommendationPage(
            results=[candidate.to_payload() for candidate in paginate(candidates, page, limit)],
            source_collections=collections,
            total_source_items=len(items),
            page=page,
            total_pages=page_count(total_results, limit),
            total_results=total_results,
        )

    async def generate_theatrical(
        self, user_id: str, *, limit: int = 20, page: int = 1
    ) -> RecommendationPage:
        """Movies now in theatres ranked against the user's affinities."""

        flags = await self._library.get_user_flags(user_id)
        if not _category_features_enabled(flags):
            return RecommendationPage.empty()

        collections = await self._library.get_source_collections(user_id)
        if not collections:
            return RecommendationPage.empty()
        items = await self._library.get_source_items(user_id)
        if not items:
            return RecommendationPage(source_collections=collections)

        excluded = await self.exclusion_snapshot(
            user_id, [collection.id for collection in collections]
        )
        movies = [ref for ref in items if ref.is_movie]
        profile, _ = await self._profiles.build(
            movies, sample_size=THEATRICAL_SAMPLE_SIZE, include_related=False
        )
        directors = profile.significant_directors()
        actors = profile.significant_actors()

        page_total = min(
            max(NOW_PLAYING_MIN_PAGES, math.ceil(page * limit * 2 / DISCOVER_PAGE_SIZE)),
            NOW_PLAYING_MAX_PAGES,
        )
        listings = await asyncio.gather(
            *(self._tmdb.now_playing(number) for number in range(1, page_total + 1))
        )
        fetched = [item for listing in listings for item in listing.results]

        seen: set[MediaRef] = set()
        playing: list[tuple[MediaRef, dict[str, Any]]] = []
        for item in fetched:
            ref = MediaRef.movie(item["id"])
            if ref in seen:
                continue
            seen.add(ref)
            if ref not in excluded:
                playing.append((ref, item))

        if directors or actors:
            credits = await asyncio.gather(*(self._tmdb.credits(ref) for ref, _ in playing))
        else:
            credits = [None] * len(playing)

        pool = CandidatePool(profile.genres, excluded)
        for (ref, item), item_credits in zip(playing, credits):
            director_boost = float(
                sum(
                    directors[person.id].count * THEATRICAL_DIRECTOR_BOOST
                    for person in TMDBClient.extract_directors(item_credits, is_movie=True)
                    if person.id in directors
                )
            )
            actor_boost = float(
                sum(
                    actors[person.id].count * THEATRICAL_ACTOR_BOOST
                    for person in TMDBClient.extract_lead_cast(item_credits)
                    if person.id in actors
                )
            )
            codes = [REASON_THEATRICAL]
            parts = score_item(item, profile.genres, popularity_cap=LISTING_POPULARITY_CAP)
            if parts.matched_genres:
                codes.append(REASON_GENRE)
            if director_boost > 0:
                codes.append(REASON_DIRECTOR)
            if actor_boost > 0:
                codes.append(REASON_ACTOR)
            pool.add_listing(
                item,
                ref,
                reason_codes=tuple(codes),
                popularity_cap=LISTING_POPULARITY_CAP,
                director_boost=director_boost,
                actor_boost=actor_boost,
            )

        candidates = pool.candidates()
        total_results, total_pages = _estimate_totals(
            len(candidates), len(fetched), listings[0], limit
        )
        logger.info(
            "Generated %s theatrical candidates for user %s (%s directors, %s actors)",
            len(candidates),
            user_id,
            len(directors),
            len(actors),
        )
        return RecommendationPage(
            results=[candidate.to_payload() for candidate in paginate(candidates, page, limit)],
            source_collections=collections,
            total_source_items=len(items),
            page=page,
            total_pages=total_pages,
            total_results=total_results,
        )

    async def exclusion_snapshot(
        self, user_id: str, source_collection_ids: Sequence[str]
    ) -> frozenset[MediaRef]:
        """Titles never to recommend, cached per set of source collections."""

        token = collection_snapshot_token(source_collection_ids)

        async def load() -> ExclusionPayload:
            keys = await self._library.get_exclusion_keys(user_id, source_collection_ids)
            return ExclusionPayload(movie_ids=keys)

        snapshot = await self._cache.get_cached(
            user_id,
            "exclusions",
            {"sourceCollectionsToken": token},
            load,
            ExclusionPayload,
        )
        return _parse_keys(snapshot.movie_ids)

    async def _add_person_works(self, pool: CandidatePool, profile: AffinityProfile) -> None:
        genre_ids = profile.top_genre_ids()
        stages = (
            ("crew", REASON_DIRECTOR, profile.top_directors()),
            ("cast", REASON_ACTOR, profile.top_actors()),
        )
        for role, reason, people in stages:
            if not people:
                continue
            works = await asyncio.gather(
                *(
                    self._tmdb.discover_by_person(
                        person.id, role=role, kind="movie", genre_ids=genre_ids
                    )
                    for person in people
                )
            )
            for person, person_works in zip(people, works):
                boost = float(person.count * PERSON_BOOST)
                for item in person_works[:WORKS_PER_PERSON]:
                    pool.add_supplementary(
                        item,
                        MediaRef.movie(item["id"]),
                        reason=reason,
                        director_boost=boost if role == "crew" else 0.0,
                        actor_boost=boost if role == "cast" else 0.0,
                    )

    # Source collections and invalidation -----------------------------------

    async def source_collections(self, user_id: str) -> list[SourceCollection]:
        return await self._library.get_source_collections(user_id)

    async def add_source_collection(self, user_id: str, collection_id: str) -> bool:
        added = await self._library.add_source_collection(user_id, collection_id)
        if added:
            await self._cache.invalidate_user(user_id)
        return added

    async def remove_source_collection(self, user_id: str, collection_id: str) -> None:
        await self._library.remove_source_collection(user_id, collection_id)
        await self._cache.invalidate_user(user_id)

    async def set_source_collections(
        self, user_id: str, collection_ids: Sequence[str]
    ) -> bool:
        replaced = await self._library.replace_source_collections(user_id, collection_ids)
        if replaced:
            await self._cache.invalidate_user(user_id)
        return replaced

    async def invalidate_user(self, user_id: str) -> int:
        """Hook for preference changes and watched or not-interested toggles."""

        return await self._cache.invalidate_user(user_id)

    async def invalidate_collection(
        self, collection_id: str, actor_id: str | None = None
    ) -> int:
        """Hook for collection deletion and item membership changes."""

        return await self._cache.invalidate_collection(collection_id, actor_id)

    async def debug_report(self, user_id: str) -> CacheDebugReport:
        return await self._cache.debug_report(user_id)


def _category_features_enabled(flags: UserFlags | None) -> bool:
    return (
        flags is not None
        and flags.category_recommendations_enabled
        and flags.recommendations_enabled
    )


def _parse_keys(keys: Iterable[str]) -> frozenset[MediaRef]:
    refs: set[MediaRef] = set()
    for key in keys:
        try:
            refs.add(MediaRef.from_key(key))
        except ValueError:
            logger.warning("Ignoring malformed excluded key %r", key)
    return frozenset(refs)


def _trending_ref(item: dict[str, Any]) -> MediaRef | None:
    media_type = item.get("media_type")
    if media_type == "person":
        return None
    is_tv = media_type == "tv" or (
        bool(item.get("first_air_date")) and not item.get("release_date")
    )
    return MediaRef.of(item["id"], is_movie=not is_tv)


def _estimate_totals(
    kept: int, fetched: int, first_page: ListingPage, limit: int
) -> tuple[int, int]:
    """Scale the provider's totals by the share of fetched titles that survived."""

    ratio = kept / fetched if fetched else 1.0
    total_results = math.floor(first_page.total_results * ratio)
    total_pages = min(page_count(total_results, limit), first_page.total_pages)
    return total_results, total_pages
