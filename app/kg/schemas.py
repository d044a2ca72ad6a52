"""
Value models for the resolution engine.

Key distinction from models.py:
- models.py: SQLAlchemy tables (rows owned by the database)
- schemas.py: Pydantic values passed between components and returned by
  the API (detached from any session, safe to hand across threads)

Field names are snake_case in Python and camelCase on the wire.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model serialized with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, from_attributes=True
    )


class StagedKind(str, Enum):
    """Kind of staged row."""

    ENTITY = "entity"
    RELATIONSHIP = "relationship"


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Staging
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class StagedEntityInput(CamelModel):
    """
    An entity mention produced by the extraction step.

    Attributes:
        name: Surface form as extracted (e.g., "Sam Altman")
        entity_type: Extracted type (e.g., "Person"); "type" on the wire
        description: Optional description from the transcript context
        episode_id: Episode the mention came from
        episode_title: Episode title, used to create the Episode row
        extracted_at: Extraction time; defaults to now when omitted
    """

    name: str = Field(..., min_length=1, max_length=500)
    entity_type: str = Field(..., alias="type", min_length=1, max_length=64)
    description: str | None = None
    episode_id: str = Field(..., min_length=1, max_length=64)
    episode_title: str = Field(..., min_length=1)
    extracted_at: datetime | None = None


class StagedRelationshipInput(CamelModel):
    """A relationship between two entity names produced by extraction."""

    source_name: str = Field(..., min_length=1, max_length=500)
    target_name: str = Field(..., min_length=1, max_length=500)
    description: str | None = None
    episode_id: str = Field(..., min_length=1, max_length=64)
    episode_title: str = Field(..., min_length=1)
    extracted_at: datetime | None = None


class StagedEntityRecord(CamelModel):
    """A stored staged entity row."""

    id: str
    name: str
    entity_type: str = Field(..., alias="type")
    description: str | None = None
    episode_id: str
    episode_title: str
    extracted_at: datetime
    processed: bool


class StagedRelationshipRecord(CamelModel):
    """A stored staged relationship row."""

    id: str
    source_name: str
    target_name: str
    description: str | None = None
    episode_id: str
    episode_title: str
    extracted_at: datetime
    processed: bool


class StagingStats(CamelModel):
    """Staging counts; "staged" means not yet processed."""

    staged_entities: int = 0
    staged_relationships: int = 0
    processed_entities: int = 0
    processed_relationships: int = 0


class PurgeResult(CamelModel):
    """Rows removed by a purge of processed staging data."""

    entities_removed: int = 0
    relationships_removed: int = 0


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Resolution
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CacheStats(CamelModel):
    """Resolution cache counters."""

    size: int = 0
    hits: int = 0
    misses: int = 0


class ResolutionResult(CamelModel):
    """
    Outcome of one relationship resolution batch.

    Attributes:
        processed: Rows marked processed (or candidate pairs evaluated)
        created: New connections written
        skipped: Processed rows whose connection already existed
        errors: Rows left unprocessed for a later run
        details: One line per row describing what happened
    """

    processed: int = 0
    created: int = 0
    skipped: int = 0
    errors: int = 0
    details: list[str] = Field(default_factory=list)

    def merge(self, other: ResolutionResult) -> ResolutionResult:
        """Return the sum of two results (used by multi-batch runs)."""
        return ResolutionResult(
            processed=self.processed + other.processed,
            created=self.created + other.created,
            skipped=self.skipped + other.skipped,
            errors=self.errors + other.errors,
            details=[*self.details, *other.details],
        )


class EntityResolutionResult(CamelModel):
    """Outcome of one staged-entity resolution batch."""

    processed: int = 0
    created: int = 0
    merged: int = 0
    errors: int = 0
    merge_details: list[str] = Field(default_factory=list)

    def merge(self, other: EntityResolutionResult) -> EntityResolutionResult:
        """Return the sum of two results."""
        return EntityResolutionResult(
            processed=self.processed + other.processed,
            created=self.created + other.created,
            merged=self.merged + other.merged,
            errors=self.errors + other.errors,
            merge_details=[*self.merge_details, *other.merge_details],
        )


class ObviousRelationshipConfig(BaseModel):
    """
    Thresholds for inferring relationships from co-mentions.

    Two entities are a candidate pair when they are mentioned in at least
    min_shared_episodes common episodes. Confidence is the overlap
    coefficient: shared episodes / min(episodes of A, episodes of B).

    Attributes:
        min_shared_episodes: Minimum number of common episodes
        min_confidence: Minimum overlap coefficient (0.0-1.0)
        max_entities_per_episode: Episodes mentioning more entities are ignored
        weight: Weight given to each inferred connection
    """

    min_shared_episodes: int = Field(default=1, ge=1)
    min_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    max_entities_per_episode: int = Field(default=50, ge=2)
    weight: float = Field(default=0.5, gt=0.0)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Read model
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class GraphNode(CamelModel):
    """A node in the graph snapshot."""

    id: str
    name: str
    type: str
    connections: int = 0
    description: str | None = None
    episodes: int = 0


class GraphLink(CamelModel):
    """An undirected link in the graph snapshot."""

    source: str
    target: str
    value: float
    description: str | None = None


class GraphSnapshot(CamelModel):
    """Full graph as consumed by the rendering client."""

    nodes: list[GraphNode] = Field(default_factory=list)
    links: list[GraphLink] = Field(default_factory=list)


class EpisodeSummary(CamelModel):
    """An episode that mentions a node."""

    id: str
    title: str
    url: str | None = None
    published_at: datetime | None = None


class RelatedNode(CamelModel):
    """A neighbour of a node, with the connecting edge."""

    id: str
    name: str
    type: str
    connection_id: str
    weight: float
    description: str | None = None


class NodeDetail(CamelModel):
    """Detail view of one canonical entity."""

    id: str
    name: str
    type: str
    description: str | None = None
    episodes: list[EpisodeSummary] = Field(default_factory=list)
    related_nodes: list[RelatedNode] = Field(default_factory=list)


class SearchHit(CamelModel):
    """A ranked name-search match."""

    id: str
    name: str
    type: str
    score: float


class GraphCounts(CamelModel):
    """Canonical table sizes."""

    entities: int = 0
    connections: int = 0


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Run outcomes
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class FixAction(str, Enum):
    """Relationship repair modes."""

    FIX_STAGED = "fix-staged"
    CREATE_OBVIOUS = "create-obvious"
    BOTH = "both"


class FixRelationshipsOutcome(CamelModel):
    """Result of a fix-relationships run; unused phases are None."""

    action: FixAction
    message: str
    staged: ResolutionResult | None = None
    obvious: ResolutionResult | None = None


class FullRunOutcome(CamelModel):
    """Result of a multi-batch entity + relationship resolution run."""

    entity_result: EntityResolutionResult
    relationship_result: ResolutionResult
    entity_batches: int = 0
    relationship_batches: int = 0
    purged: PurgeResult | None = None
    stats: StagingStats
    cache_stats: CacheStats
