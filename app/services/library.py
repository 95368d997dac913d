"""Read and write access to users, collections and recommendation sources."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Sequence

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..db_models import (
    Collection,
    CollectionCollaborator,
    CollectionItem,
    User,
    UserSourceCollection,
)
from ..models import MediaRef, SourceCollection
from ..utils import utcnow

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class UserFlags:
    recommendations_enabled: bool
    category_recommendations_enabled: bool


class LibraryStore:
    """Queries over the relational store that feed recommendation passes."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    async def get_user_flags(self, user_id: str) -> UserFlags | None:
        async with self._session_factory() as session:
            user = await session.get(User, user_id)
            if user is None:
                return None
            return UserFlags(
                recommendations_enabled=bool(user.recommendations_enabled),
                category_recommendations_enabled=bool(
                    user.category_recommendations_enabled
                ),
            )

    async def get_source_collections(self, user_id: str) -> list[SourceCollection]:
        """Return the user's source collections, most recently added first."""

        async with self._session_factory() as session:
            stmt = (
                select(Collection.id, Collection.name)
                .join(
                    UserSourceCollection,
                    UserSourceCollection.collection_id == Collection.id,
                )
                .where(UserSourceCollection.user_id == user_id)
                .order_by(UserSourceCollection.added_at.desc())
            )
            result = await session.execute(stmt)
            return [SourceCollection(id=row.id, name=row.name) for row in result.all()]

    async def get_source_items(self, user_id: str) -> list[MediaRef]:
        """Return distinct titles across every source collection of the user."""

        async with self._session_factory() as session:
            stmt = (
                select(CollectionItem.item_key, CollectionItem.is_movie)
                .join(
                    UserSourceCollection,
                    UserSourceCollection.collection_id == CollectionItem.collection_id,
                )
                .where(UserSourceCollection.user_id == user_id)
                .distinct()
            )
            result = await session.execute(stmt)
            rows = result.all()

        refs: list[MediaRef] = []
        seen: set[MediaRef] = set()
        for item_key, is_movie in rows:
            try:
                ref = MediaRef.from_key(item_key)
            except ValueError:
                logger.warning("Skipping malformed collection item key %r", item_key)
                continue
            if is_movie is not None and ref.is_movie != is_movie:
                ref = MediaRef.of(ref.id, is_movie=is_movie)
            if ref not in seen:
                seen.add(ref)
                refs.append(ref)
        return refs

    async def get_exclusion_keys(
        self, user_id: str, source_collection_ids: Sequence[str]
    ) -> list[str]:
        """Keys of titles the user owns in a source or system collection."""

        async with self._session_factory() as session:
            scope = Collection.is_system.is_(True)
            if source_collection_ids:
                scope = or_(Collection.id.in_(list(source_collection_ids)), scope)
            stmt = (
                select(CollectionItem.item_key)
                .join(Collection, Collection.id == CollectionItem.collection_id)
                .where(Collection.owner_id == user_id, scope)
                .distinct()
            )
            result = await session.execute(stmt)
            return sorted(result.scalars().all())

    async def accessible_collection_ids(
        self, user_id: str, collection_ids: Sequence[str]
    ) -> set[str]:
        """Subset of ``collection_ids`` the user owns or collaborates on."""

        if not collection_ids:
            return set()
        async with self._session_factory() as session:
            return await self._accessible(session, user_id, collection_ids)

    async def add_source_collection(self, user_id: str, collection_id: str) -> bool:
        async with self._session_factory() as session:
            accessible = await self._accessible(session, user_id, [collection_id])
            if collection_id not in accessible:
                return False
            existing = await session.execute(
                select(UserSourceCollection.id).where(
                    UserSourceCollection.user_id == user_id,
                    UserSourceCollection.collection_id == collection_id,
                )
            )
            if existing.scalar_one_or_none() is None:
                session.add(
                    UserSourceCollection(
                        user_id=user_id, collection_id=collection_id, added_at=utcnow()
                    )
                )
                await session.commit()
            return True

    async def remove_source_collection(self, user_id: str, collection_id: str) -> None:
        async with self._session_factory() as session:
            await session.execute(
                delete(UserSourceCollection).where(
                    UserSourceCollection.user_id == user_id,
                    UserSourceCollection.collection_id == collection_id,
                )
            )
            await session.commit()

    async def replace_source_collections(
        self, user_id: str, collection_ids: Sequence[str]
    ) -> bool:
        """Replace all source collections; nothing changes unless every id is accessible."""

        unique_ids = list(dict.fromkeys(collection_ids))
        async with self._session_factory() as session:
            accessible = await self._accessible(session, user_id, unique_ids)
            if len(accessible) != len(unique_ids):
                return False
            await session.execute(
                delete(UserSourceCollection).where(UserSourceCollection.user_id == user_id)
            )
            now = utcnow()
            for collection_id in unique_ids:
                session.add(
                    UserSourceCollection(
                        user_id=user_id, collection_id=collection_id, added_at=now
                    )
                )
            await session.commit()
            return True

    @staticmethod
    async def _accessible(
        session: AsyncSession, user_id: str, collection_ids: Sequence[str]
    ) -> set[str]:
        if not collection_ids:
            return set()
        collaborating = select(CollectionCollaborator.collection_id).where(
            CollectionCollaborator.user_id == user_id
        )
        stmt = select(Collection.id).where(
            Collection.id.in_(list(collection_ids)),
            or_(Collection.owner_id == user_id, Collection.id.in_(collaborating)),
        )
        result = await session.execute(stmt)
        return set(result.scalars().all())
