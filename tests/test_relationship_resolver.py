"""
Tests for RelationshipResolver.

Covers staged relationship batches (including replays and failures),
co-mention inference and manual curation of connections.
"""

from __future__ import annotations

from unittest.mock import patch

import pytest
from conftest import relationship_input
from sqlalchemy import func, select

from app.kg.entity_resolver import EntityResolver
from app.kg.errors import EntityNotFound, InvalidInput, StorageUnavailable
from app.kg.models import Connection, ConnectionEpisode, ConnectionOrigin, Entity
from app.kg.relationship_resolver import RelationshipResolver
from app.kg.schemas import ObviousRelationshipConfig, StagedKind
from app.kg.staging import StagingStore


def _connections(session_factory) -> list[Connection]:
    with session_factory() as session:
        return list(session.scalars(select(Connection)))


def _count(session_factory, model) -> int:
    with session_factory() as session:
        return session.scalar(select(func.count()).select_from(model))


class TestFixMissingRelationships:
    """Tests for staged relationship batches."""

    def test_single_row_creates_connection(
        self,
        relationships: RelationshipResolver,
        staging: StagingStore,
        session_factory,
    ) -> None:
        """A staged pair becomes one connection and two entities."""
        staging.stage_relationships(
            [relationship_input("Sam Altman", "OpenAI", description="CEO of")]
        )
        result = relationships.fix_missing_relationships(10)

        assert (result.processed, result.created, result.skipped, result.errors) == (
            1,
            1,
            0,
            0,
        )
        assert _count(session_factory, Entity) == 2
        [connection] = _connections(session_factory)
        assert connection.weight == 1.0
        assert connection.description == "CEO of"
        assert connection.origin == ConnectionOrigin.STAGED.value
        assert staging.get_stats().staged_relationships == 0

        rerun = relationships.fix_missing_relationships(10)
        assert rerun.processed == 0
        assert rerun.created == 0

    def test_undirected_duplicate_is_skipped(
        self,
        relationships: RelationshipResolver,
        staging: StagingStore,
        session_factory,
    ) -> None:
        """A -> B and B -> A in one episode share a single connection."""
        staging.stage_relationships(
            [relationship_input("Alpha", "Beta"), relationship_input("beta", "ALPHA")]
        )
        result = relationships.fix_missing_relationships(10)

        assert result.processed == 2
        assert result.created == 1
        assert result.skipped == 1
        [connection] = _connections(session_factory)
        assert connection.weight == 1.0

    def test_weight_counts_supporting_episodes(
        self,
        relationships: RelationshipResolver,
        staging: StagingStore,
        session_factory,
    ) -> None:
        staging.stage_relationships(
            [
                relationship_input("Alpha", "Beta", episode_id="ep-1"),
                relationship_input("Alpha", "Beta", episode_id="ep-2"),
                relationship_input("Beta", "Alpha", episode_id="ep-3"),
            ]
        )
        relationships.fix_missing_relationships(10)

        [connection] = _connections(session_factory)
        assert connection.weight == 3.0
        assert _count(session_factory, ConnectionEpisode) == 3

    def test_replay_after_reset_keeps_weight(
        self,
        relationships: RelationshipResolver,
        staging: StagingStore,
        session_factory,
    ) -> None:
        """Re-running already applied rows does not inflate weights."""
        staging.stage_relationships(
            [
                relationship_input("Alpha", "Beta", episode_id="ep-1"),
                relationship_input("Alpha", "Beta", episode_id="ep-2"),
            ]
        )
        relationships.fix_missing_relationships(10)
        assert staging.reset_processed(StagedKind.RELATIONSHIP) == 2

        replay = relationships.fix_missing_relationships(10)

        assert replay.processed == 2
        assert replay.created == 0
        [connection] = _connections(session_factory)
        assert connection.weight == 2.0

    def test_self_loop_is_row_error(
        self,
        relationships: RelationshipResolver,
        staging: StagingStore,
        session_factory,
    ) -> None:
        """Names that normalize to the same entity are rejected per row."""
        staging.stage_relationships(
            [
                relationship_input("OpenAI", "Open AI"),
                relationship_input("Anthropic", "Claude"),
            ]
        )
        result = relationships.fix_missing_relationships(10)

        assert result.processed == 1
        assert result.errors == 1
        assert any("self-loop" in detail for detail in result.details)
        # The self-loop row created no entity
        assert _count(session_factory, Entity) == 2
        assert staging.get_stats().staged_relationships == 1

    def test_invalid_name_is_row_error(
        self, relationships: RelationshipResolver, staging: StagingStore
    ) -> None:
        staging.stage_relationships([relationship_input("...", "Valid")])
        result = relationships.fix_missing_relationships(10)
        assert result.errors == 1
        assert result.processed == 0

    def test_rejects_non_positive_batch(
        self, relationships: RelationshipResolver
    ) -> None:
        with pytest.raises(InvalidInput):
            relationships.fix_missing_relationships(0)

    def test_many_rows_parallel(
        self,
        relationships: RelationshipResolver,
        staging: StagingStore,
        session_factory,
    ) -> None:
        """Rows sharing endpoints resolve to one entity per name in parallel."""
        rows = [
            relationship_input("Hub", f"Spoke {i}", episode_id=f"ep-{i % 3}")
            for i in range(20)
        ]
        staging.stage_relationships(rows)

        result = relationships.fix_missing_relationships(50, max_workers=8)

        assert result.processed == 20
        assert result.created == 20
        assert _count(session_factory, Entity) == 21
        assert _count(session_factory, Connection) == 20

    def test_entity_deleted_elsewhere_is_resolved_again(
        self,
        relationships: RelationshipResolver,
        resolver: EntityResolver,
        staging: StagingStore,
        session_factory,
    ) -> None:
        """A cached ID whose entity another instance deleted is evicted."""
        stale_id = resolver.resolve("OpenAI", "Organization")
        other = EntityResolver(session_factory, staging)
        assert other.delete_entity(stale_id) is True
        staging.stage_relationships([relationship_input("Sam Altman", "OpenAI")])

        result = relationships.fix_missing_relationships(10)

        assert (result.processed, result.created, result.errors) == (1, 1, 0)
        fresh_id = resolver.resolve("OpenAI")
        assert fresh_id != stale_id
        [connection] = _connections(session_factory)
        assert fresh_id in (connection.source_entity_id, connection.target_entity_id)

        rerun = relationships.fix_missing_relationships(10)
        assert (rerun.processed, rerun.errors) == (0, 0)

    def test_missing_endpoint_reported_accurately(
        self,
        relationships: RelationshipResolver,
        resolver: EntityResolver,
        staging: StagingStore,
    ) -> None:
        """A foreign key failure is a row error naming the missing entity."""
        staging.stage_relationships([relationship_input("Ghost", "Real")])
        real_resolve = resolver.resolve

        def resolve(name: str, *args, **kwargs) -> str:
            if name == "Ghost":
                return "000000000000"
            return real_resolve(name, *args, **kwargs)

        with patch.object(resolver, "resolve", side_effect=resolve):
            result = relationships.fix_missing_relationships(10, max_workers=1)

        assert (result.processed, result.errors) == (0, 1)
        [detail] = result.details
        assert "000000000000 no longer exist" in detail
        assert "conflict" not in detail.lower()
        assert staging.get_stats().staged_relationships == 1

    def test_storage_failure_aborts_batch(
        self,
        relationships: RelationshipResolver,
        staging: StagingStore,
        resolver: EntityResolver,
    ) -> None:
        """StorageUnavailable propagates; unfinished rows stay unprocessed."""
        staging.stage_relationships(
            [relationship_input("A", "B"), relationship_input("C", "D")]
        )

        with patch.object(
            resolver, "resolve", side_effect=StorageUnavailable("entity lookup failed")
        ):
            with pytest.raises(StorageUnavailable):
                relationships.fix_missing_relationships(10, max_workers=1)

        assert staging.get_stats().staged_relationships == 2


class TestObviousRelationships:
    """Tests for co-mention inference."""

    def _mention(self, resolver: EntityResolver, name: str, *episodes: str) -> str:
        entity_id = resolver.resolve(name)
        for episode_id in episodes:
            resolver.record_mention(entity_id, episode_id)
        return entity_id

    def test_creates_inferred_connections_once(
        self,
        relationships: RelationshipResolver,
        resolver: EntityResolver,
        session_factory,
    ) -> None:
        """Co-mentioned pairs are connected; a second run creates nothing."""
        self._mention(resolver, "Alpha", "ep-1", "ep-2")
        self._mention(resolver, "Beta", "ep-1", "ep-2")

        first = relationships.create_obvious_relationships(10)
        second = relationships.create_obvious_relationships(10)

        assert first.created == 1
        assert second.created == 0
        assert second.skipped == 1
        [connection] = _connections(session_factory)
        assert connection.origin == ConnectionOrigin.INFERRED.value
        assert connection.weight == relationships.obvious_config.weight

    def test_existing_connection_not_reweighted(
        self,
        relationships: RelationshipResolver,
        staging: StagingStore,
        session_factory,
    ) -> None:
        staging.stage_relationships(
            [
                relationship_input("Alpha", "Beta", episode_id="ep-1"),
                relationship_input("Alpha", "Beta", episode_id="ep-2"),
            ]
        )
        relationships.fix_missing_relationships(10)

        result = relationships.create_obvious_relationships(10)

        assert result.created == 0
        [connection] = _connections(session_factory)
        assert connection.weight == 2.0
        assert connection.origin == ConnectionOrigin.STAGED.value

    def test_confidence_threshold(
        self, relationships: RelationshipResolver, resolver: EntityResolver
    ) -> None:
        """Confidence is shared episodes over the smaller mention count."""
        self._mention(resolver, "Frequent", "ep-1", "ep-2", "ep-3", "ep-4")
        self._mention(resolver, "Rare", "ep-1")
        self._mention(resolver, "Other", "ep-5", "ep-6")
        self._mention(resolver, "Sometimes", "ep-4", "ep-5", "ep-6", "ep-7")

        candidates = relationships.find_co_mention_candidates()
        scores = {
            frozenset((c.source_entity_id, c.target_entity_id)): c.confidence
            for c in candidates
        }
        frequent = resolver.resolve("Frequent")
        rare = resolver.resolve("Rare")
        sometimes = resolver.resolve("Sometimes")
        other = resolver.resolve("Other")

        assert scores[frozenset((frequent, rare))] == 1.0
        assert scores[frozenset((other, sometimes))] == 1.0
        # 1 shared / min(4, 4) is below the default 0.5 threshold
        assert frozenset((frequent, sometimes)) not in scores

    def test_broad_episodes_ignored(
        self, session_factory, staging: StagingStore, resolver: EntityResolver
    ) -> None:
        """Episodes mentioning too many entities produce no candidates."""
        inference = RelationshipResolver(
            session_factory,
            staging,
            resolver,
            obvious_config=ObviousRelationshipConfig(max_entities_per_episode=3),
        )
        for i in range(4):
            self._mention(resolver, f"Guest {i}", "ep-crowded")

        assert inference.find_co_mention_candidates() == []

    def test_batch_size_caps_creations(
        self, relationships: RelationshipResolver, resolver: EntityResolver
    ) -> None:
        for name in ("A1", "A2", "A3", "A4"):
            self._mention(resolver, name, "ep-1")

        result = relationships.create_obvious_relationships(2)
        assert result.created == 2


class TestManualConnections:
    """Tests for create_manual_connection and delete_connection."""

    def test_create_and_reuse(
        self, relationships: RelationshipResolver, resolver: EntityResolver
    ) -> None:
        a = resolver.resolve("Alpha")
        b = resolver.resolve("Beta")

        connection_id, created = relationships.create_manual_connection(a, b, "curated")
        again_id, created_again = relationships.create_manual_connection(b, a)

        assert created is True
        assert created_again is False
        assert again_id == connection_id

    def test_self_loop_rejected(
        self, relationships: RelationshipResolver, resolver: EntityResolver
    ) -> None:
        a = resolver.resolve("Alpha")
        with pytest.raises(InvalidInput):
            relationships.create_manual_connection(a, a)

    def test_missing_entity(
        self, relationships: RelationshipResolver, resolver: EntityResolver
    ) -> None:
        a = resolver.resolve("Alpha")
        with pytest.raises(EntityNotFound):
            relationships.create_manual_connection(a, "0123456789ab")

    def test_staged_rows_keep_manual_weight(
        self,
        relationships: RelationshipResolver,
        resolver: EntityResolver,
        staging: StagingStore,
        session_factory,
    ) -> None:
        """Staged support for a curated pair does not overwrite its weight."""
        a = resolver.resolve("Alpha")
        b = resolver.resolve("Beta")
        relationships.create_manual_connection(a, b)

        staging.stage_relationships(
            [
                relationship_input("Alpha", "Beta", episode_id="ep-1"),
                relationship_input("Alpha", "Beta", episode_id="ep-2"),
            ]
        )
        relationships.fix_missing_relationships(10)

        [connection] = _connections(session_factory)
        assert connection.origin == ConnectionOrigin.MANUAL.value
        assert connection.weight == 1.0

    def test_delete_connection(
        self,
        relationships: RelationshipResolver,
        resolver: EntityResolver,
        session_factory,
    ) -> None:
        a = resolver.resolve("Alpha")
        b = resolver.resolve("Beta")
        connection_id, _ = relationships.create_manual_connection(a, b)

        assert relationships.delete_connection(connection_id) is True
        assert relationships.delete_connection(connection_id) is False
        assert _count(session_factory, Connection) == 0
