"""SQLAlchemy ORM models backing the persistent state."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base
from .utils import utcnow


def _new_id() -> str:
    return uuid.uuid4().hex


class User(Base):
    """A user with recommendation preference flags."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    recommendations_enabled: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False
    )
    category_recommendations_enabled: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )


class Collection(Base):
    """A user-curated list of titles; system collections hold watched/not-interested."""

    __tablename__ = "collections"

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    owner_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )

    items: Mapped[list["CollectionItem"]] = relationship(
        back_populates="collection", cascade="all, delete-orphan"
    )


class CollectionCollaborator(Base):
    """Grants a non-owner access to a collection."""

    __tablename__ = "collection_collaborators"
    __table_args__ = (
        UniqueConstraint("collection_id", "user_id", name="uq_collaborator"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    collection_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("collections.id", ondelete="CASCADE"), index=True
    )
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    permission: Mapped[str] = mapped_column(String(16), default="view")
    added_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class CollectionItem(Base):
    """Membership of a title in a collection, keyed by the suffix-encoded identity."""

    __tablename__ = "collection_items"
    __table_args__ = (
        UniqueConstraint("collection_id", "item_key", name="uq_collection_item"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    collection_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("collections.id", ondelete="CASCADE"), index=True
    )
    item_key: Mapped[str] = mapped_column(String(32), index=True)
    is_movie: Mapped[bool | None] = mapped_column(Boolean, nullable=True)
    added_by_user_id: Mapped[str | None] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    added_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    collection: Mapped[Collection] = relationship(back_populates="items")


class UserSourceCollection(Base):
    """Marks a collection as a personalization source for a user."""

    __tablename__ = "user_source_collections"
    __table_args__ = (
        UniqueConstraint("user_id", "collection_id", name="uq_user_source_collection"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    collection_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("collections.id", ondelete="CASCADE"), index=True
    )
    added_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class RecommendationCacheEntry(Base):
    """Serialized recommendation payloads keyed by user and request hash."""

    __tablename__ = "recommendation_cache"
    __table_args__ = (
        UniqueConstraint("user_id", "cache_key", name="uq_recommendation_cache_user_key"),
        Index("ix_recommendation_cache_expires_at", "expires_at"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(
        String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True
    )
    cache_key: Mapped[str] = mapped_column(String(64))
    payload_json: Mapped[str] = mapped_column(Text)
    cache_version: Mapped[str] = mapped_column(String(16), default="v1")
    expires_at: Mapped[datetime] = mapped_column(DateTime)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=utcnow, onupdate=utcnow
    )
