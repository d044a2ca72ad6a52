"""
Knowledge graph storage models: staging tables and canonical graph tables.

Two groups of tables live here:
- Staging (StagedEntity, StagedRelationship): raw extraction output awaiting
  resolution. Relationships reference entities by *name*.
- Canonical (Entity, Connection, ConnectionEpisode, EntityMention, Episode):
  the deduplicated graph read by the query layer.

Uniqueness constraints carry the dedup guarantees; the resolvers rely on them
instead of in-process locks:
- Entity.normalized_name         one canonical entity per dedup key
- Connection.pair_key            one undirected edge per entity pair
- ConnectionEpisode (PK)         one supporting link per edge and episode
- EntityMention (PK)             one mention per entity and episode
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from uuid import uuid4

from sqlalchemy import (
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def _generate_id() -> str:
    """Generate a 12-character hex ID from UUID4."""
    return uuid4().hex[:12]


def _generate_uuid() -> str:
    """Generate a full UUID4 string (staged row IDs)."""
    return str(uuid4())


def _utc_now() -> datetime:
    """Get current UTC datetime (timezone-aware)."""
    return datetime.now(timezone.utc)


def make_pair_key(entity_a_id: str, entity_b_id: str) -> str:
    """Order-independent key for an undirected entity pair."""
    low, high = sorted((entity_a_id, entity_b_id))
    return f"{low}|{high}"


class Base(DeclarativeBase):
    """Declarative base for all tables."""


class ConnectionOrigin(str, Enum):
    """How a canonical connection came to exist."""

    STAGED = "staged"
    INFERRED = "inferred"
    MANUAL = "manual"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Episodes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class Episode(Base):
    """A podcast episode that entities were extracted from."""

    __tablename__ = "episodes"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    url: Mapped[str | None] = mapped_column(Text, nullable=True)
    published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Staging
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class StagedEntity(Base):
    """An extracted entity mention awaiting resolution."""

    __tablename__ = "staged_entities"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=_generate_uuid
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    episode_id: Mapped[str] = mapped_column(String(64), nullable=False)
    episode_title: Mapped[str] = mapped_column(Text, nullable=False)
    extracted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    # Dedup key computed at staging time (see normalization.dedup_key)
    normalized_name: Mapped[str] = mapped_column(Text, nullable=False, default="")

    __table_args__ = (
        Index("ix_staged_entities_processed_extracted", "processed", "extracted_at"),
        Index("ix_staged_entities_normalized_name", "normalized_name"),
        Index("ix_staged_entities_episode", "episode_id"),
    )


class StagedRelationship(Base):
    """An extracted relationship between two entity names."""

    __tablename__ = "staged_relationships"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=_generate_uuid
    )
    source_name: Mapped[str] = mapped_column(Text, nullable=False)
    target_name: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    episode_id: Mapped[str] = mapped_column(String(64), nullable=False)
    episode_title: Mapped[str] = mapped_column(Text, nullable=False)
    extracted_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )
    processed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    __table_args__ = (
        Index(
            "ix_staged_relationships_processed_extracted", "processed", "extracted_at"
        ),
        Index("ix_staged_relationships_episode", "episode_id"),
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Canonical graph
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class Entity(Base):
    """A canonical, deduplicated graph node."""

    __tablename__ = "entities"

    id: Mapped[str] = mapped_column(String(12), primary_key=True, default=_generate_id)
    name: Mapped[str] = mapped_column(Text, nullable=False)
    entity_type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    normalized_name: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )

    __table_args__ = (
        UniqueConstraint("normalized_name", name="uq_entities_normalized_name"),
    )


class EntityMention(Base):
    """Join record: a canonical entity is mentioned in an episode."""

    __tablename__ = "entity_mentions"

    entity_id: Mapped[str] = mapped_column(
        String(12), ForeignKey("entities.id", ondelete="CASCADE"), primary_key=True
    )
    episode_id: Mapped[str] = mapped_column(String(64), primary_key=True)

    __table_args__ = (Index("ix_entity_mentions_episode", "episode_id"),)


class Connection(Base):
    """A canonical undirected edge between two entities."""

    __tablename__ = "connections"

    id: Mapped[str] = mapped_column(String(12), primary_key=True, default=_generate_id)
    source_entity_id: Mapped[str] = mapped_column(
        String(12), ForeignKey("entities.id", ondelete="CASCADE"), nullable=False
    )
    target_entity_id: Mapped[str] = mapped_column(
        String(12), ForeignKey("entities.id", ondelete="CASCADE"), nullable=False
    )
    pair_key: Mapped[str] = mapped_column(String(25), nullable=False)
    weight: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    origin: Mapped[str] = mapped_column(
        String(16), nullable=False, default=ConnectionOrigin.STAGED.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=_utc_now
    )

    __table_args__ = (
        UniqueConstraint("pair_key", name="uq_connections_pair_key"),
        Index("ix_connections_source", "source_entity_id"),
        Index("ix_connections_target", "target_entity_id"),
    )


class ConnectionEpisode(Base):
    """An episode whose staged relationship supports a connection."""

    __tablename__ = "connection_episodes"

    connection_id: Mapped[str] = mapped_column(
        String(12), ForeignKey("connections.id", ondelete="CASCADE"), primary_key=True
    )
    episode_id: Mapped[str] = mapped_column(String(64), primary_key=True)
