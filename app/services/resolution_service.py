"""
Resolution Service: orchestrates resolution runs for the API.

Wires the resolution components to one session factory and exposes them
as async operations. The engine is synchronous; every call runs in a worker
thread via asyncio.to_thread so the event loop stays responsive.

Cache invalidation always happens after the engine call has returned, i.e.
after its transactions committed, and also when a run aborts part-way
because earlier rows may already be committed.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session, sessionmaker

from app.core.config import Settings
from app.kg.cache import GRAPH_WRITE_TAGS, CacheInvalidator, CacheTag, ReadCache
from app.kg.entity_resolver import EntityResolver
from app.kg.errors import EntityExists, InvalidInput
from app.kg.read_model import GraphReadModel
from app.kg.relationship_resolver import RelationshipResolver
from app.kg.schemas import (
    CacheStats,
    EntityResolutionResult,
    FixAction,
    FixRelationshipsOutcome,
    FullRunOutcome,
    GraphCounts,
    GraphSnapshot,
    NodeDetail,
    ObviousRelationshipConfig,
    PurgeResult,
    ResolutionResult,
    SearchHit,
    StagedEntityInput,
    StagedKind,
    StagedRelationshipInput,
    StagingStats,
)
from app.kg.staging import StagingStore

logger = logging.getLogger(__name__)


def fix_message(
    action: FixAction,
    staged: ResolutionResult | None,
    obvious: ResolutionResult | None,
) -> str:
    """Build the operator-facing summary for a fix-relationships run."""
    if action is FixAction.FIX_STAGED and staged is not None:
        return f"Fixed {staged.created} relationships, {staged.errors} errors"
    if action is FixAction.CREATE_OBVIOUS and obvious is not None:
        return f"Created {obvious.created} obvious relationships"
    if staged is not None and obvious is not None:
        return (
            f"Fixed {staged.created} staged relationships and created "
            f"{obvious.created} obvious relationships"
        )
    raise InvalidInput(f"Incomplete results for action '{action.value}'")


class ResolutionService:
    """
    Async facade over the staging store, resolvers, cache and read model.

    One instance is shared by all requests; the components it owns are
    thread-safe.
    """

    def __init__(
        self, session_factory: sessionmaker[Session], settings: Settings
    ) -> None:
        self._settings = settings
        self.staging = StagingStore(session_factory)
        self.entities = EntityResolver(
            session_factory,
            self.staging,
            default_entity_type=settings.default_entity_type,
        )
        self.relationships = RelationshipResolver(
            session_factory,
            self.staging,
            self.entities,
            max_workers=settings.resolution_max_workers,
            obvious_config=ObviousRelationshipConfig(
                min_shared_episodes=settings.obvious_min_shared_episodes,
                min_confidence=settings.obvious_min_confidence,
                max_entities_per_episode=settings.obvious_max_entities_per_episode,
                weight=settings.obvious_weight,
            ),
        )
        self.read_cache = ReadCache(default_ttl=settings.cache_ttl_seconds)
        self.invalidator = CacheInvalidator(self.read_cache)
        self.read_model = GraphReadModel(
            session_factory,
            self.read_cache,
            graph_ttl=settings.cache_ttl_seconds,
            node_ttl=settings.node_cache_ttl_seconds,
        )

    def _invalidate_graph(self) -> None:
        self.invalidator.clear_tags(GRAPH_WRITE_TAGS)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Resolution runs
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def resolve_relationships(
        self, batch_size: int | None = None
    ) -> tuple[ResolutionResult, StagingStats]:
        """
        Run one staged-relationship batch.

        Args:
            batch_size: Rows to process (default: resolution_batch_size)

        Returns:
            Tuple of (batch result, staging stats after the run)
        """
        size = batch_size or self._settings.resolution_batch_size
        logger.info(f"Relationship resolution requested (batch_size={size})")
        try:
            result = await asyncio.to_thread(
                self.relationships.fix_missing_relationships, size
            )
        finally:
            self._invalidate_graph()
        stats = await asyncio.to_thread(self.staging.get_stats)
        return result, stats

    async def fix_relationships(
        self, action: FixAction | str, batch_size: int | None = None
    ) -> FixRelationshipsOutcome:
        """
        Run fix-staged, create-obvious, or both in sequence.

        Raises:
            InvalidInput: If action is not a known FixAction
        """
        try:
            action = FixAction(action)
        except ValueError as e:
            raise InvalidInput(f"Invalid action: {action}") from e

        size = batch_size or self._settings.resolution_batch_size
        staged: ResolutionResult | None = None
        obvious: ResolutionResult | None = None
        logger.info(f"Fix relationships requested (action={action.value})")
        try:
            if action in (FixAction.FIX_STAGED, FixAction.BOTH):
                staged = await asyncio.to_thread(
                    self.relationships.fix_missing_relationships, size
                )
            if action in (FixAction.CREATE_OBVIOUS, FixAction.BOTH):
                obvious = await asyncio.to_thread(
                    self.relationships.create_obvious_relationships, size
                )
        finally:
            self._invalidate_graph()

        return FixRelationshipsOutcome(
            action=action,
            message=fix_message(action, staged, obvious),
            staged=staged,
            obvious=obvious,
        )

    async def run_full_resolution(
        self,
        entity_batch_size: int | None = None,
        relationship_batch_size: int | None = None,
        max_batches: int | None = None,
        clear_cache: bool = False,
        clear_older_than_days: int | None = None,
    ) -> FullRunOutcome:
        """
        Resolve staged entities, then staged relationships, in batches.

        Each phase stops early once a batch makes no progress (nothing left,
        or only rows that keep failing).

        Args:
            entity_batch_size: Rows per entity batch
            relationship_batch_size: Rows per relationship batch
            max_batches: Upper bound on batches per phase
            clear_cache: Reset the resolution cache before running
            clear_older_than_days: Purge processed staging rows older than this
        """
        entity_size = entity_batch_size or self._settings.resolution_batch_size
        rel_size = relationship_batch_size or self._settings.resolution_batch_size
        batches = max_batches or self._settings.resolution_max_batches

        if clear_cache:
            self.entities.clear_cache()

        entity_total = EntityResolutionResult()
        rel_total = ResolutionResult()
        entity_batches = 0
        rel_batches = 0
        try:
            for _ in range(batches):
                batch = await asyncio.to_thread(
                    self.entities.resolve_staged_entities, entity_size
                )
                entity_batches += 1
                entity_total = entity_total.merge(batch)
                if batch.processed == 0:
                    break

            for _ in range(batches):
                rel_batch = await asyncio.to_thread(
                    self.relationships.fix_missing_relationships, rel_size
                )
                rel_batches += 1
                rel_total = rel_total.merge(rel_batch)
                if rel_batch.processed == 0:
                    break
        finally:
            self._invalidate_graph()

        purged = None
        if clear_older_than_days is not None:
            purged = await self.purge_staging(clear_older_than_days)

        stats = await asyncio.to_thread(self.staging.get_stats)
        logger.info(
            f"Full resolution done: {entity_batches} entity batches, "
            f"{rel_batches} relationship batches"
        )
        return FullRunOutcome(
            entity_result=entity_total,
            relationship_result=rel_total,
            entity_batches=entity_batches,
            relationship_batches=rel_batches,
            purged=purged,
            stats=stats,
            cache_stats=self.entities.get_cache_stats(),
        )

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Staging
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def get_staging_stats(self) -> tuple[StagingStats, CacheStats]:
        stats = await asyncio.to_thread(self.staging.get_stats)
        return stats, self.entities.get_cache_stats()

    async def stage_entities(self, entities: Sequence[StagedEntityInput]) -> list[str]:
        return await asyncio.to_thread(self.staging.stage_entities, entities)

    async def stage_relationships(
        self, relationships: Sequence[StagedRelationshipInput]
    ) -> list[str]:
        return await asyncio.to_thread(self.staging.stage_relationships, relationships)

    async def reset_staging(self, kind: StagedKind) -> int:
        """Mark every row of a kind unprocessed and drop cached entity IDs."""
        count = await asyncio.to_thread(self.staging.reset_processed, kind)
        # Replayed rows resolve against storage, not IDs cached before the reset
        self.entities.clear_cache()
        return count

    async def purge_staging(self, older_than_days: int) -> PurgeResult:
        if older_than_days < 0:
            raise InvalidInput("older_than_days must not be negative")
        cutoff = datetime.now(timezone.utc) - timedelta(days=older_than_days)
        return await asyncio.to_thread(self.staging.purge_processed, cutoff)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Cache control
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    def clear_cache_key(self, key: str) -> bool:
        return self.invalidator.clear(key)

    def clear_cache_tag(self, tag: CacheTag) -> int:
        return self.invalidator.clear_by_tag(tag)

    def clear_all_caches(self) -> int:
        return self.invalidator.clear_all()

    async def force_refresh(self) -> tuple[int, GraphCounts]:
        """Drop every cached artifact and report canonical table sizes."""
        cleared = self.invalidator.clear_all()
        counts = await asyncio.to_thread(self.read_model.counts)
        return cleared, counts

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Read model
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def get_graph(self) -> GraphSnapshot:
        return await asyncio.to_thread(self.read_model.get_graph)

    async def get_node(self, entity_id: str) -> NodeDetail | None:
        return await asyncio.to_thread(self.read_model.get_node, entity_id)

    async def search(self, query: str, limit: int = 10) -> list[SearchHit]:
        return await asyncio.to_thread(self.read_model.search, query, limit)

    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
    # Manual curation
    # ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def create_entity(
        self, name: str, entity_type: str, description: str | None = None
    ) -> str:
        """
        Create a canonical entity through the resolver.

        Raises:
            EntityExists: If the name resolves to an existing entity
            InvalidInput: If the name is empty after normalization
        """
        entity_id, created = await asyncio.to_thread(
            self.entities.resolve_with_status, name, entity_type, description
        )
        if not created:
            raise EntityExists(entity_id, name)
        self._invalidate_graph()
        return entity_id

    async def delete_entity(self, entity_id: str) -> bool:
        deleted = await asyncio.to_thread(self.entities.delete_entity, entity_id)
        if deleted:
            self._invalidate_graph()
        return deleted

    async def create_connection(
        self, source_id: str, target_id: str, description: str | None = None
    ) -> tuple[str, bool]:
        result = await asyncio.to_thread(
            self.relationships.create_manual_connection,
            source_id,
            target_id,
            description,
        )
        self._invalidate_graph()
        return result

    async def delete_connection(self, connection_id: str) -> bool:
        deleted = await asyncio.to_thread(
            self.relationships.delete_connection, connection_id
        )
        if deleted:
            self._invalidate_graph()
        return deleted
