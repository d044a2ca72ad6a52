"""
Read-only graph views served to the rendering client.

Snapshots and node details are computed from canonical tables and stored in
the ReadCache; write paths invalidate them by tag.
"""

from __future__ import annotations

import logging
from datetime import datetime

import networkx as nx  # type: ignore[import-untyped]
from rapidfuzz import fuzz, process
from rapidfuzz.utils import default_process
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, sessionmaker

from app.kg.cache import CacheTag, ReadCache
from app.kg.errors import storage_errors
from app.kg.models import Connection, Entity, EntityMention, Episode
from app.kg.schemas import (
    EpisodeSummary,
    GraphCounts,
    GraphLink,
    GraphNode,
    GraphSnapshot,
    NodeDetail,
    RelatedNode,
    SearchHit,
)

logger = logging.getLogger(__name__)

GRAPH_CACHE_KEY = "graph"

# Minimum WRatio score (0-100) for a search hit
SEARCH_SCORE_CUTOFF = 50.0


def node_cache_key(entity_id: str) -> str:
    return f"node:{entity_id}"


class GraphReadModel:
    """Graph snapshot, node detail and name search over canonical data."""

    def __init__(
        self,
        session_factory: sessionmaker[Session],
        cache: ReadCache,
        graph_ttl: float | None = None,
        node_ttl: float | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._cache = cache
        self._graph_ttl = graph_ttl
        self._node_ttl = node_ttl

    def get_graph(self) -> GraphSnapshot:
        """Return the full graph (cached under "graph")."""
        return self._cache.get_or_set(
            GRAPH_CACHE_KEY,
            self._build_graph,
            tags=(CacheTag.GRAPH_DATA,),
            ttl=self._graph_ttl,
        )

    def _build_graph(self) -> GraphSnapshot:
        with storage_errors("graph snapshot"), self._session_factory() as session:
            entities = session.scalars(select(Entity).order_by(Entity.name)).all()
            connections = session.scalars(select(Connection)).all()
            mention_counts = dict(
                session.execute(
                    select(EntityMention.entity_id, func.count()).group_by(
                        EntityMention.entity_id
                    )
                ).all()
            )

        graph = nx.Graph()
        graph.add_nodes_from(entity.id for entity in entities)
        graph.add_edges_from(
            (c.source_entity_id, c.target_entity_id) for c in connections
        )

        nodes = [
            GraphNode(
                id=entity.id,
                name=entity.name,
                type=entity.entity_type,
                connections=graph.degree(entity.id),
                description=entity.description,
                episodes=mention_counts.get(entity.id, 0),
            )
            for entity in entities
        ]
        links = [
            GraphLink(
                source=c.source_entity_id,
                target=c.target_entity_id,
                value=c.weight,
                description=c.description,
            )
            for c in connections
        ]
        logger.debug(f"Built graph snapshot: {len(nodes)} nodes, {len(links)} links")
        return GraphSnapshot(nodes=nodes, links=links)

    def get_node(self, entity_id: str) -> NodeDetail | None:
        """
        Return detail for one entity (cached under "node:<id>").

        Episodes are ordered newest first; episodes without a publish date
        come last.

        Returns:
            NodeDetail, or None if the entity does not exist
        """
        return self._cache.get_or_set(
            node_cache_key(entity_id),
            lambda: self._build_node(entity_id),
            tags=(CacheTag.NODE_DETAIL, CacheTag.ENTITIES),
            ttl=self._node_ttl,
        )

    def _build_node(self, entity_id: str) -> NodeDetail | None:
        with storage_errors("node detail"), self._session_factory() as session:
            entity = session.get(Entity, entity_id)
            if entity is None:
                return None

            episodes = session.scalars(
                select(Episode)
                .join(EntityMention, EntityMention.episode_id == Episode.id)
                .where(EntityMention.entity_id == entity_id)
            ).all()

            connections = session.scalars(
                select(Connection).where(
                    or_(
                        Connection.source_entity_id == entity_id,
                        Connection.target_entity_id == entity_id,
                    )
                )
            ).all()
            neighbour_ids = {
                c.target_entity_id if c.source_entity_id == entity_id else c.source_entity_id
                for c in connections
            }
            neighbours = {
                e.id: e
                for e in session.scalars(
                    select(Entity).where(Entity.id.in_(list(neighbour_ids)))
                )
            }

        ordered = sorted(
            episodes,
            key=lambda ep: (
                ep.published_at is not None,
                ep.published_at or datetime.min,
                ep.id,
            ),
            reverse=True,
        )
        related = []
        for c in sorted(connections, key=lambda c: c.weight, reverse=True):
            other_id = (
                c.target_entity_id if c.source_entity_id == entity_id else c.source_entity_id
            )
            other = neighbours.get(other_id)
            if other is None:
                continue
            related.append(
                RelatedNode(
                    id=other.id,
                    name=other.name,
                    type=other.entity_type,
                    connection_id=c.id,
                    weight=c.weight,
                    description=c.description,
                )
            )

        return NodeDetail(
            id=entity.id,
            name=entity.name,
            type=entity.entity_type,
            description=entity.description,
            episodes=[
                EpisodeSummary(
                    id=ep.id, title=ep.title, url=ep.url, published_at=ep.published_at
                )
                for ep in ordered
            ],
            related_nodes=related,
        )

    def search(self, query: str, limit: int = 10) -> list[SearchHit]:
        """
        Rank entity names against a query with rapidfuzz WRatio.

        Not cached: results depend on the free-text query.
        """
        if not query.strip():
            return []

        with storage_errors("entity search"), self._session_factory() as session:
            rows = session.execute(
                select(Entity.id, Entity.name, Entity.entity_type)
            ).all()

        choices = {row.id: row.name for row in rows}
        types = {row.id: row.entity_type for row in rows}
        matches = process.extract(
            query,
            choices,
            scorer=fuzz.WRatio,
            processor=default_process,
            limit=limit,
            score_cutoff=SEARCH_SCORE_CUTOFF,
        )
        return [
            SearchHit(id=key, name=name, type=types[key], score=round(score / 100.0, 4))
            for name, score, key in matches
        ]

    def counts(self) -> GraphCounts:
        """Count canonical entities and connections (uncached)."""
        with storage_errors("graph counts"), self._session_factory() as session:
            entities = session.scalar(select(func.count()).select_from(Entity)) or 0
            connections = (
                session.scalar(select(func.count()).select_from(Connection)) or 0
            )
        return GraphCounts(entities=entities, connections=connections)
