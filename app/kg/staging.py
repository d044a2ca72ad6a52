"""
Staging store: unresolved entities and relationships awaiting resolution.

The processed flag on each staged row is the only resumability checkpoint.
Callers flip it with mark_processed after the canonical write for that row
has committed; a crash in between replays the row on the next run.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from datetime import datetime, timezone
from itertools import islice

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, sessionmaker

from app.kg.errors import InvalidInput, storage_errors
from app.kg.models import Episode, StagedEntity, StagedRelationship
from app.kg.normalization import dedup_key
from app.kg.schemas import (
    PurgeResult,
    StagedEntityInput,
    StagedEntityRecord,
    StagedKind,
    StagedRelationshipInput,
    StagedRelationshipRecord,
    StagingStats,
)

logger = logging.getLogger(__name__)

# Rows updated per UPDATE ... WHERE id IN (...) statement
MARK_CHUNK_SIZE = 50

StagedModel = type[StagedEntity] | type[StagedRelationship]


def _model_for(kind: StagedKind) -> StagedModel:
    if kind is StagedKind.ENTITY:
        return StagedEntity
    if kind is StagedKind.RELATIONSHIP:
        return StagedRelationship
    raise InvalidInput(f"Unknown staged kind: {kind!r}")


def _as_utc(value: datetime | None) -> datetime:
    """Normalize a timestamp to aware UTC; naive values are taken as UTC."""
    if value is None:
        return datetime.now(timezone.utc)
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _chunks(ids: Sequence[str], size: int) -> list[list[str]]:
    iterator = iter(ids)
    chunks = []
    while chunk := list(islice(iterator, size)):
        chunks.append(chunk)
    return chunks


def _entity_record(row: StagedEntity) -> StagedEntityRecord:
    return StagedEntityRecord(
        id=row.id,
        name=row.name,
        entity_type=row.entity_type,
        description=row.description,
        episode_id=row.episode_id,
        episode_title=row.episode_title,
        extracted_at=row.extracted_at,
        processed=row.processed,
    )


def _relationship_record(row: StagedRelationship) -> StagedRelationshipRecord:
    return StagedRelationshipRecord(
        id=row.id,
        source_name=row.source_name,
        target_name=row.target_name,
        description=row.description,
        episode_id=row.episode_id,
        episode_title=row.episode_title,
        extracted_at=row.extracted_at,
        processed=row.processed,
    )


class StagingStore:
    """
    Read/write access to staged rows and their processed flags.

    Each public method runs in its own short transaction, so the store can
    be shared by worker threads.
    """

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Write side (extraction)
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def stage_entities(self, entities: Sequence[StagedEntityInput]) -> list[str]:
        """
        Insert staged entity rows.

        Args:
            entities: Extracted entity mentions

        Returns:
            IDs of the new staged rows, in input order
        """
        if not entities:
            return []

        with storage_errors("stage entities"), self._session_factory.begin() as session:
            self._ensure_episodes(
                session, {e.episode_id: e.episode_title for e in entities}
            )
            rows = [
                StagedEntity(
                    name=e.name,
                    entity_type=e.entity_type,
                    description=e.description,
                    episode_id=e.episode_id,
                    episode_title=e.episode_title,
                    extracted_at=_as_utc(e.extracted_at),
                    normalized_name=dedup_key(e.name),
                )
                for e in entities
            ]
            session.add_all(rows)
            session.flush()
            ids = [row.id for row in rows]

        logger.info(f"Staged {len(ids)} entities")
        return ids

    def stage_relationships(
        self, relationships: Sequence[StagedRelationshipInput]
    ) -> list[str]:
        """Insert staged relationship rows and return their IDs."""
        if not relationships:
            return []

        with storage_errors("stage relationships"), self._session_factory.begin() as session:
            self._ensure_episodes(
                session, {r.episode_id: r.episode_title for r in relationships}
            )
            rows = [
                StagedRelationship(
                    source_name=r.source_name,
                    target_name=r.target_name,
                    description=r.description,
                    episode_id=r.episode_id,
                    episode_title=r.episode_title,
                    extracted_at=_as_utc(r.extracted_at),
                )
                for r in relationships
            ]
            session.add_all(rows)
            session.flush()
            ids = [row.id for row in rows]

        logger.info(f"Staged {len(ids)} relationships")
        return ids

    @staticmethod
    def _ensure_episodes(session: Session, titles: dict[str, str]) -> None:
        """Create Episode rows for episode IDs not seen before."""
        known = set(
            session.scalars(select(Episode.id).where(Episode.id.in_(list(titles))))
        )
        for episode_id, title in titles.items():
            if episode_id not in known:
                session.add(Episode(id=episode_id, title=title))

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Read side (resolution)
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def list_unprocessed(
        self, kind: StagedKind, limit: int
    ) -> list[StagedEntityRecord] | list[StagedRelationshipRecord]:
        """
        List unprocessed rows, oldest extraction first.

        Args:
            kind: Entity or relationship rows
            limit: Maximum number of rows to return

        Returns:
            Detached records ordered by extracted_at, then id

        Raises:
            InvalidInput: If limit is not positive
        """
        if limit < 1:
            raise InvalidInput(f"limit must be positive (got {limit})")

        model = _model_for(kind)
        stmt = (
            select(model)
            .where(model.processed.is_(False))
            .order_by(model.extracted_at, model.id)
            .limit(limit)
        )
        with storage_errors("list unprocessed"), self._session_factory() as session:
            rows = session.scalars(stmt).all()
            if kind is StagedKind.ENTITY:
                return [_entity_record(row) for row in rows]
            return [_relationship_record(row) for row in rows]

    def mark_processed(self, kind: StagedKind, ids: Sequence[str]) -> int:
        """
        Flag rows as processed in one committed transaction.

        Only call after the canonical write for every given row committed.

        Args:
            kind: Entity or relationship rows
            ids: Staged row IDs

        Returns:
            Number of rows updated
        """
        if not ids:
            return 0

        model = _model_for(kind)
        updated = 0
        with storage_errors("mark processed"), self._session_factory.begin() as session:
            for chunk in _chunks(ids, MARK_CHUNK_SIZE):
                result = session.execute(
                    update(model).where(model.id.in_(chunk)).values(processed=True)
                )
                updated += result.rowcount or 0
        return updated

    def get_stats(self) -> StagingStats:
        """Count unprocessed and processed rows of both kinds."""
        with storage_errors("staging stats"), self._session_factory() as session:
            counts = {}
            for kind in StagedKind:
                model = _model_for(kind)
                rows = session.execute(
                    select(model.processed, func.count()).group_by(model.processed)
                ).all()
                by_flag = {bool(flag): count for flag, count in rows}
                counts[kind] = (by_flag.get(False, 0), by_flag.get(True, 0))

        return StagingStats(
            staged_entities=counts[StagedKind.ENTITY][0],
            processed_entities=counts[StagedKind.ENTITY][1],
            staged_relationships=counts[StagedKind.RELATIONSHIP][0],
            processed_relationships=counts[StagedKind.RELATIONSHIP][1],
        )

    def find_entity_hint(self, normalized_key: str) -> tuple[str, str | None] | None:
        """
        Look up the type and description staged for a dedup key.

        Args:
            normalized_key: Dedup key from normalization.dedup_key

        Returns:
            (entity_type, description) of the earliest staged mention,
            or None if no staged entity has this key
        """
        stmt = (
            select(StagedEntity.entity_type, StagedEntity.description)
            .where(StagedEntity.normalized_name == normalized_key)
            .order_by(StagedEntity.extracted_at, StagedEntity.id)
            .limit(1)
        )
        with storage_errors("entity hint"), self._session_factory() as session:
            row = session.execute(stmt).first()
        if row is None:
            return None
        return row.entity_type, row.description

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Maintenance (operator-triggered only)
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def reset_processed(self, kind: StagedKind) -> int:
        """
        Set processed back to false for every row of a kind.

        Used for deliberate re-runs, e.g. after canonical data was wiped.

        Returns:
            Number of rows reset
        """
        model = _model_for(kind)
        with storage_errors("reset processed"), self._session_factory.begin() as session:
            result = session.execute(
                update(model).where(model.processed.is_(True)).values(processed=False)
            )
            count = result.rowcount or 0

        logger.warning(f"Reset processed flag on {count} staged {kind.value} rows")
        return count

    def purge_processed(self, older_than: datetime) -> PurgeResult:
        """
        Delete processed rows extracted before a cutoff.

        Args:
            older_than: Rows with extracted_at before this instant are removed

        Returns:
            Number of rows removed per kind
        """
        cutoff = _as_utc(older_than)
        removed = {}
        with storage_errors("purge processed"), self._session_factory.begin() as session:
            for kind in StagedKind:
                model = _model_for(kind)
                result = session.execute(
                    delete(model).where(
                        model.processed.is_(True), model.extracted_at < cutoff
                    )
                )
                removed[kind] = result.rowcount or 0

        purge = PurgeResult(
            entities_removed=removed[StagedKind.ENTITY],
            relationships_removed=removed[StagedKind.RELATIONSHIP],
        )
        logger.info(
            f"Purged {purge.entities_removed} entities and "
            f"{purge.relationships_removed} relationships older than {older_than}"
        )
        return purge
