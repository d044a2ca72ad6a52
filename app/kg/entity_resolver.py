"""
Entity resolution: map a raw name to its canonical entity ID.

Resolution order for a dedup key:
1. In-process cache (no I/O)
2. Canonical storage lookup by Entity.normalized_name
3. Insert; on a uniqueness conflict re-query and adopt the winner

The UNIQUE constraint on Entity.normalized_name is the authority. The cache
only ever holds IDs that were read from or committed to storage. An ID whose
entity was deleted elsewhere is evicted when a write referencing it fails.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterable

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from app.kg.errors import (
    EntityNotFound,
    InvalidInput,
    ResolutionConflict,
    storage_errors,
)
from app.kg.models import Entity, EntityMention
from app.kg.normalization import dedup_key
from app.kg.schemas import (
    CacheStats,
    EntityResolutionResult,
    StagedEntityRecord,
    StagedKind,
)
from app.kg.staging import StagingStore

logger = logging.getLogger(__name__)


class ResolutionCache:
    """
    Thread-safe dedup key -> entity ID cache with hit/miss counters.

    No eviction: the key space is bounded by the number of distinct
    canonical entities. Reset between runs with clear().
    """

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}
        self._hits = 0
        self._misses = 0
        self._lock = threading.Lock()

    def get(self, key: str) -> str | None:
        with self._lock:
            entity_id = self._entries.get(key)
            if entity_id is None:
                self._misses += 1
            else:
                self._hits += 1
            return entity_id

    def put(self, key: str, entity_id: str) -> None:
        with self._lock:
            self._entries[key] = entity_id

    def discard_entity(self, entity_id: str) -> int:
        """Drop every key pointing at an entity; returns keys removed."""
        with self._lock:
            stale = [k for k, v in self._entries.items() if v == entity_id]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._hits = 0
            self._misses = 0

    def stats(self) -> CacheStats:
        with self._lock:
            return CacheStats(
                size=len(self._entries), hits=self._hits, misses=self._misses
            )

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


def _display_name(name: str) -> str:
    return " ".join(name.split())


class EntityResolver:
    """
    Resolve names to canonical entities, creating them when absent.

    Safe to call from many threads at once: concurrent creations of the same
    key are settled by the database constraint, never by a lock here.

    Attributes:
        default_entity_type: Type used when neither the caller nor staging
            supplies one
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        staging: StagingStore,
        default_entity_type: str = "Topic",
        cache: ResolutionCache | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._staging = staging
        self.default_entity_type = default_entity_type
        self._cache = cache or ResolutionCache()

    @property
    def cache(self) -> ResolutionCache:
        return self._cache

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Resolution
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def resolve(
        self,
        name: str,
        entity_type: str | None = None,
        description: str | None = None,
        episode_id: str | None = None,
    ) -> str:
        """
        Return the canonical entity ID for a name.

        Args:
            name: Raw entity name
            entity_type: Type to use if the entity must be created
            description: Description to use if the entity must be created
            episode_id: Episode to record a mention for on creation

        Returns:
            Canonical entity ID

        Raises:
            InvalidInput: If the name is empty after normalization
            ResolutionConflict: If an insert conflicted and the winner
                could not be read back
            StorageUnavailable: If the database cannot be reached
        """
        entity_id, _ = self.resolve_with_status(
            name, entity_type, description, episode_id
        )
        return entity_id

    def resolve_with_status(
        self,
        name: str,
        entity_type: str | None = None,
        description: str | None = None,
        episode_id: str | None = None,
    ) -> tuple[str, bool]:
        """Like resolve(), but also report whether the entity was created."""
        key = dedup_key(name)
        if not key:
            raise InvalidInput(f"Entity name {name!r} is empty after normalization")

        cached = self._cache.get(key)
        if cached is not None:
            return cached, False

        existing = self.find_by_key(key)
        if existing is not None:
            self._cache.put(key, existing)
            return existing, False

        if entity_type is None:
            hint = self._staging.find_entity_hint(key)
            if hint is not None:
                entity_type = hint[0]
                description = description or hint[1]
        return self._insert(
            key,
            _display_name(name),
            entity_type or self.default_entity_type,
            description,
            episode_id,
        )

    def find_by_key(self, key: str) -> str | None:
        """Look up a canonical entity ID by dedup key (storage only)."""
        with storage_errors("entity lookup"), self._session_factory() as session:
            return session.scalar(
                select(Entity.id).where(Entity.normalized_name == key)
            )

    def _insert(
        self,
        key: str,
        name: str,
        entity_type: str,
        description: str | None,
        episode_id: str | None,
    ) -> tuple[str, bool]:
        try:
            with storage_errors("entity insert"), self._session_factory.begin() as session:
                entity = Entity(
                    name=name,
                    entity_type=entity_type,
                    description=description,
                    normalized_name=key,
                )
                session.add(entity)
                session.flush()
                if episode_id:
                    session.add(EntityMention(entity_id=entity.id, episode_id=episode_id))
                entity_id = entity.id
        except IntegrityError:
            conflict = ResolutionConflict(key)
            logger.info(f"{conflict}; adopting existing entity")
            winner = self.find_by_key(key)
            if winner is None:
                raise conflict from None
            self._cache.put(key, winner)
            return winner, False

        logger.debug(f"Created entity {entity_id} ({entity_type}) for key '{key}'")
        self._cache.put(key, entity_id)
        return entity_id, True

    def record_mention(self, entity_id: str, episode_id: str) -> bool:
        """
        Link an entity to an episode (idempotent).

        Returns:
            True if a new mention was recorded, False if it already existed

        Raises:
            EntityNotFound: If the entity no longer exists; its cached key
                is evicted first
        """
        with storage_errors("mention insert"):
            with self._session_factory() as session:
                if session.get(EntityMention, (entity_id, episode_id)) is not None:
                    return False
            try:
                with self._session_factory.begin() as session:
                    session.add(EntityMention(entity_id=entity_id, episode_id=episode_id))
            except IntegrityError:
                if self.evict_missing([entity_id]):
                    raise EntityNotFound(
                        f"Entity {entity_id} no longer exists; mention not recorded"
                    ) from None
                # Inserted concurrently by another worker
                return False
        return True

    def evict_missing(self, entity_ids: Iterable[str]) -> list[str]:
        """
        Drop cached IDs whose canonical entities no longer exist.

        Called after a write referencing the IDs failed, so a deletion made
        by another process stops poisoning later resolutions.

        Returns:
            The IDs that were missing from storage, sorted
        """
        ids = set(entity_ids)
        with storage_errors("entity check"), self._session_factory() as session:
            found = set(session.scalars(select(Entity.id).where(Entity.id.in_(ids))))

        missing = sorted(ids - found)
        for entity_id in missing:
            self._cache.discard_entity(entity_id)
        if missing:
            logger.warning(f"Evicted deleted entities from resolution cache: {missing}")
        return missing

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Staged entity batches
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def resolve_staged_entities(self, batch_size: int) -> EntityResolutionResult:
        """
        Fold one batch of unprocessed staged entities into canonical storage.

        Each row is resolved (creating the entity if needed), its mention is
        recorded, a longer description replaces the canonical one, and only
        then the row is marked processed. Invalid names are counted as
        errors and left unprocessed.

        Args:
            batch_size: Maximum number of staged rows to process

        Returns:
            EntityResolutionResult with per-batch counts
        """
        rows = self._staging.list_unprocessed(StagedKind.ENTITY, batch_size)
        result = EntityResolutionResult()
        if not rows:
            return result

        logger.info(f"Resolving {len(rows)} staged entities")
        for row in rows:
            try:
                self._resolve_staged_row(row, result)
            except (InvalidInput, EntityNotFound) as e:
                result.errors += 1
                logger.warning(f"Staged entity {row.id} left unprocessed: {e}")
                continue
            self._staging.mark_processed(StagedKind.ENTITY, [row.id])
            result.processed += 1

        logger.info(
            f"Entity batch done: processed={result.processed} "
            f"created={result.created} merged={result.merged} errors={result.errors}"
        )
        return result

    def _resolve_staged_row(
        self, row: StagedEntityRecord, result: EntityResolutionResult
    ) -> None:
        entity_id, created = self.resolve_with_status(
            row.name, row.entity_type, row.description, row.episode_id
        )
        if created:
            result.created += 1
            return

        try:
            self.record_mention(entity_id, row.episode_id)
        except EntityNotFound as e:
            # The cached entity was deleted; resolve again from storage once
            logger.info(f"Staged entity {row.id}: {e}; resolving again")
            entity_id, created = self.resolve_with_status(
                row.name, row.entity_type, row.description, row.episode_id
            )
            if created:
                result.created += 1
                return
            self.record_mention(entity_id, row.episode_id)

        result.merged += 1
        detail = f"'{row.name}' merged into {entity_id}"
        if self._enrich_description(entity_id, row.description):
            detail += " (description updated)"
        result.merge_details.append(detail)

    def _enrich_description(self, entity_id: str, description: str | None) -> bool:
        """Replace the canonical description when the new one is longer."""
        if not description:
            return False
        with storage_errors("description update"), self._session_factory.begin() as session:
            entity = session.get(Entity, entity_id)
            if entity is None:
                return False
            if len(description) <= len(entity.description or ""):
                return False
            entity.description = description
            return True

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Curation and cache control
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def delete_entity(self, entity_id: str) -> bool:
        """
        Delete a canonical entity; mentions and connections cascade.

        Returns:
            True if the entity existed
        """
        with storage_errors("entity delete"), self._session_factory.begin() as session:
            result = session.execute(delete(Entity).where(Entity.id == entity_id))
            deleted = (result.rowcount or 0) > 0

        self._cache.discard_entity(entity_id)
        if deleted:
            logger.info(f"Deleted entity {entity_id}")
        return deleted

    def get_cache_stats(self) -> CacheStats:
        return self._cache.stats()

    def clear_cache(self) -> None:
        """Reset the resolution cache and its counters."""
        self._cache.clear()
        logger.info("Resolution cache cleared")
