"""Relational store queries feeding recommendation passes."""

from __future__ import annotations

import asyncio

from app.database import Database
from app.db_models import (
    Collection,
    CollectionCollaborator,
    CollectionItem,
    User,
    UserSourceCollection,
)
from app.models import MediaRef
from app.services.library import LibraryStore


async def _setup(tmp_path) -> tuple[Database, LibraryStore]:
    database = Database(f"sqlite+aiosqlite:///{tmp_path / 'library.db'}")
    await database.create_all()
    async with database.session_factory() as session:
        session.add_all(
            [
                User(id="owner", recommendations_enabled=True),
                User(id="friend", recommendations_enabled=False, category_recommendations_enabled=False),
                User(id="stranger"),
                Collection(id="mine", name="Mine", owner_id="owner"),
                Collection(id="also-mine", name="Also mine", owner_id="owner"),
                Collection(id="watched", name="Watched", owner_id="owner", is_system=True),
                Collection(id="shared", name="Shared", owner_id="friend"),
                Collection(id="private", name="Private", owner_id="stranger"),
                CollectionCollaborator(collection_id="shared", user_id="owner"),
                CollectionItem(collection_id="mine", item_key="1", is_movie=True),
                # The explicit column wins over the key encoding.
                CollectionItem(collection_id="mine", item_key="2", is_movie=False),
                CollectionItem(collection_id="mine", item_key="not-a-key"),
                CollectionItem(collection_id="also-mine", item_key="1"),
                CollectionItem(collection_id="also-mine", item_key="3tv"),
                CollectionItem(collection_id="watched", item_key="9"),
                CollectionItem(collection_id="shared", item_key="7"),
                CollectionItem(collection_id="private", item_key="8"),
                UserSourceCollection(user_id="owner", collection_id="mine"),
                UserSourceCollection(user_id="owner", collection_id="also-mine"),
                UserSourceCollection(user_id="owner", collection_id="shared"),
            ]
        )
        await session.commit()
    return database, LibraryStore(database.session_factory)


def test_user_flags(tmp_path) -> None:
    async def runner() -> None:
        database, library = await _setup(tmp_path)
        try:
            owner = await library.get_user_flags("owner")
            friend = await library.get_user_flags("friend")
            stranger = await library.get_user_flags("stranger")
            missing = await library.get_user_flags("ghost")
        finally:
            await database.dispose()

        assert owner is not None and owner.recommendations_enabled
        assert owner.category_recommendations_enabled
        assert friend is not None and not friend.recommendations_enabled
        assert not friend.category_recommendations_enabled
        assert stranger is not None
        assert not stranger.recommendations_enabled
        assert stranger.category_recommendations_enabled
        assert missing is None

    asyncio.run(runner())


def test_source_items_are_distinct_and_skip_malformed_keys(tmp_path) -> None:
    async def runner() -> None:
        database, library = await _setup(tmp_path)
        try:
            items = await library.get_source_items("owner")
        finally:
            await database.dispose()

        assert sorted(items, key=lambda ref: ref.key) == [
            MediaRef.movie(1),
            MediaRef.tv(2),
            MediaRef.tv(3),
            MediaRef.movie(7),
        ]

    asyncio.run(runner())


def test_exclusion_keys_cover_owned_sources_and_system_collections(tmp_path) -> None:
    async def runner() -> None:
        database, library = await _setup(tmp_path)
        try:
            with_sources = await library.get_exclusion_keys(
                "owner", ["mine", "also-mine", "shared"]
            )
            system_only = await library.get_exclusion_keys("owner", [])
        finally:
            await database.dispose()

        # "shared" is sourced but owned by someone else, so its items stay eligible.
        assert with_sources == ["1", "2", "3tv", "9", "not-a-key"]
        assert system_only == ["9"]

    asyncio.run(runner())


def test_accessible_collections_include_collaborations(tmp_path) -> None:
    async def runner() -> None:
        database, library = await _setup(tmp_path)
        try:
            accessible = await library.accessible_collection_ids(
                "owner", ["mine", "shared", "private", "missing"]
            )
            nothing = await library.accessible_collection_ids("owner", [])
        finally:
            await database.dispose()

        assert accessible == {"mine", "shared"}
        assert nothing == set()

    asyncio.run(runner())


def test_add_and_remove_source_collection(tmp_path) -> None:
    async def runner() -> None:
        database, library = await _setup(tmp_path)
        try:
            denied = await library.add_source_collection("owner", "private")
            added = await library.add_source_collection("owner", "watched")
            repeated = await library.add_source_collection("owner", "watched")
            after_add = await library.get_source_collections("owner")
            await library.remove_source_collection("owner", "mine")
            after_remove = await library.get_source_collections("owner")
        finally:
            await database.dispose()

        assert denied is False
        assert added is True
        assert repeated is True
        assert after_add[0].id == "watched"
        assert sorted(collection.id for collection in after_add) == [
            "also-mine",
            "mine",
            "shared",
            "watched",
        ]
        assert "mine" not in {collection.id for collection in after_remove}

    asyncio.run(runner())


def test_replace_source_collections_is_all_or_nothing(tmp_path) -> None:
    async def runner() -> None:
        database, library = await _setup(tmp_path)
        try:
            rejected = await library.replace_source_collections("owner", ["mine", "private"])
            unchanged = await library.get_source_collections("owner")
            replaced = await library.replace_source_collections(
                "owner", ["watched", "watched", "shared"]
            )
            current = await library.get_source_collections("owner")
            cleared = await library.replace_source_collections("owner", [])
            emptied = await library.get_source_collections("owner")
        finally:
            await database.dispose()

        assert rejected is False
        assert {collection.id for collection in unchanged} == {"mine", "also-mine", "shared"}
        assert replaced is True
        assert {collection.id for collection in current} == {"watched", "shared"}
        assert cleared is True
        assert emptied == []

    asyncio.run(runner())
