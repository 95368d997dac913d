"""Per-user recommendation cache with single-flight regeneration."""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Generic, Mapping, TypeVar

from pydantic import BaseModel, ValidationError
from sqlalchemy import Insert, delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import RecommendationCacheEntry, UserSourceCollection
from ..models import CacheDebugEntry, CacheDebugReport
from ..utils import canonical_json, sha256_hex, utcnow

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

CacheParams = Mapping[str, str | int]


class SingleFlight:
    """Serialises work for the same key within this process.

    Callers hold a key through :meth:`hold`; the key is released on exit even
    when the body raises. Locks are dropped once nobody holds or awaits them.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._waiters: dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: object) -> bool:
        return key in self._locks

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._waiters[key] = self._waiters.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._waiters[key] -= 1
            if self._waiters[key] == 0:
                del self._waiters[key]
                self._locks.pop(key, None)


@dataclass(slots=True)
class _CachedRead(Generic[M]):
    payload: M | None
    fresh: bool


class RecommendationCache:
    """Fixed-TTL cache of recommendation payloads stored in the relational store."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        *,
        ttl_seconds: int,
        version: str,
        single_flight: SingleFlight | None = None,
    ):
        self._session_factory = session_factory
        self._ttl = timedelta(seconds=ttl_seconds)
        self._version = version
        self._single_flight = single_flight or SingleFlight()

    @property
    def version(self) -> str:
        return self._version

    @property
    def ttl(self) -> timedelta:
        return self._ttl

    def build_key(self, endpoint: str, params: CacheParams) -> str:
        """Deterministic key for an endpoint, its parameters and the cache version."""

        return sha256_hex(
            canonical_json(
                {"endpoint": endpoint, "params": dict(params), "version": self._version}
            )
        )

    async def get_cached(
        self,
        user_id: str,
        endpoint: str,
        params: CacheParams,
        generator: Callable[[], Awaitable[M]],
        model: type[M],
    ) -> M:
        """Return a fresh cached payload or regenerate it once per key.

        When regeneration fails any previously stored payload, even an expired
        one, is served instead of the error.
        """

        cache_key = self.build_key(endpoint, params)
        initial = await self._read(user_id, cache_key, model)
        if initial.payload is not None and initial.fresh:
            logger.debug("Cache hit for %s/%s (user %s)", endpoint, cache_key[:12], user_id)
            return initial.payload

        async with self._single_flight.hold(f"{user_id}:{cache_key}"):
            recheck = await self._read(user_id, cache_key, model)
            if recheck.payload is not None and recheck.fresh:
                logger.debug(
                    "Cache refreshed concurrently for %s/%s (user %s)",
                    endpoint,
                    cache_key[:12],
                    user_id,
                )
                return recheck.payload

            logger.debug("Regenerating %s/%s for user %s", endpoint, cache_key[:12], user_id)
            try:
                result = await generator()
            except Exception:
                fallback = recheck.payload or initial.payload
                if fallback is None:
                    raise
                logger.exception(
                    "Regenerating %s for user %s failed; serving stale payload",
                    endpoint,
                    user_id,
                )
                return fallback

            await self._store(user_id, cache_key, result)
            return result

    async def invalidate_user(self, user_id: str) -> int:
        """Drop every cached payload of a user."""

        async with self._session_factory() as session:
            result = await session.execute(
                delete(RecommendationCacheEntry).where(
                    RecommendationCacheEntry.user_id == user_id
                )
            )
            await session.commit()
        logger.info("Invalidated %s cached payloads for user %s", result.rowcount, user_id)
        return result.rowcount or 0

    async def invalidate_collection(
        self, collection_id: str, actor_id: str | None = None
    ) -> int:
        """Drop cached payloads of every user who sources ``collection_id``.

        ``actor_id`` names the user who changed the collection; their rows are
        dropped too even when they do not source it.
        """

        sourcing_users = select(UserSourceCollection.user_id).where(
            UserSourceCollection.collection_id == collection_id
        )
        condition = RecommendationCacheEntry.user_id.in_(sourcing_users)
        if actor_id is not None:
            condition = or_(condition, RecommendationCacheEntry.user_id == actor_id)
        async with self._session_factory() as session:
            result = await session.execute(
                delete(RecommendationCacheEntry).where(condition)
            )
            await session.commit()
        logger.info(
            "Invalidated %s cached payloads sourced from collection %s",
            result.rowcount,
            collection_id,
        )
        return result.rowcount or 0

    async def debug_report(self, user_id: str) -> CacheDebugReport:
        """Summarise a user's cache rows, newest first."""

        async with self._session_factory() as session:
            stmt = (
                select(
                    RecommendationCacheEntry.cache_key,
                    RecommendationCacheEntry.cache_version,
                    RecommendationCacheEntry.expires_at,
                    RecommendationCacheEntry.created_at,
                    RecommendationCacheEntry.updated_at,
                    func.length(RecommendationCacheEntry.payload_json).label("payload_size"),
                )
                .where(RecommendationCacheEntry.user_id == user_id)
                .order_by(RecommendationCacheEntry.updated_at.desc())
            )
            result = await session.execute(stmt)
            rows = result.all()

        now = utcnow()
        entries = [
            CacheDebugEntry(
                cache_key=row.cache_key,
                cache_version=row.cache_version,
                expires_at=row.expires_at,
                created_at=row.created_at,
                updated_at=row.updated_at,
                payload_size=int(row.payload_size or 0),
            )
            for row in rows
        ]
        fresh = sum(1 for entry in entries if entry.expires_at > now)
        return CacheDebugReport(
            total=len(entries),
            fresh=fresh,
            expired=len(entries) - fresh,
            entries=entries,
        )

    async def _read(self, user_id: str, cache_key: str, model: type[M]) -> _CachedRead[M]:
        async with self._session_factory() as session:
            stmt = select(
                RecommendationCacheEntry.payload_json,
                RecommendationCacheEntry.expires_at,
            ).where(
                RecommendationCacheEntry.user_id == user_id,
                RecommendationCacheEntry.cache_key == cache_key,
            )
            result = await session.execute(stmt)
            row = result.first()

        if row is None:
            return _CachedRead(payload=None, fresh=False)
        try:
            payload = model.model_validate_json(row.payload_json)
        except ValidationError as exc:
            logger.warning(
                "Discarding unreadable cached payload %s for user %s: %s",
                cache_key[:12],
                user_id,
                exc,
            )
            return _CachedRead(payload=None, fresh=False)
        return _CachedRead(payload=payload, fresh=row.expires_at > utcnow())

    async def _store(self, user_id: str, cache_key: str, payload: BaseModel) -> None:
        now = utcnow()
        values: dict[str, Any] = {
            "payload_json": payload.model_dump_json(by_alias=True),
            "cache_version": self._version,
            "expires_at": now + self._ttl,
            "updated_at": now,
        }
        async with self._session_factory() as session:
            dialect = session.bind.dialect.name if session.bind is not None else ""
            if dialect in {"sqlite", "postgresql"}:
                await session.execute(
                    self._upsert_statement(dialect, user_id, cache_key, values, now)
                )
            else:
                updated = await session.execute(
                    update(RecommendationCacheEntry)
                    .where(
                        RecommendationCacheEntry.user_id == user_id,
                        RecommendationCacheEntry.cache_key == cache_key,
                    )
                    .values(**values)
                )
                if not updated.rowcount:
                    session.add(
                        RecommendationCacheEntry(
                            user_id=user_id, cache_key=cache_key, created_at=now, **values
                        )
                    )
            await session.commit()

    @staticmethod
    def _upsert_statement(
        dialect: str,
        user_id: str,
        cache_key: str,
        values: dict[str, Any],
        now: datetime,
    ) -> Insert:
        if dialect == "postgresql":
            from sqlalchemy.dialects.postgresql import insert
        else:
            from sqlalchemy.dialects.sqlite import insert

        statement = insert(RecommendationCacheEntry).values(
            user_id=user_id,
            cache_key=cache_key,
            created_at=now,
            **values,
        )
        return statement.on_conflict_do_update(
            index_elements=[
                RecommendationCacheEntry.user_id,
                RecommendationCacheEntry.cache_key,
            ],
            set_=values,
        )
