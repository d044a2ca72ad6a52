"""
Pydantic models for API responses.

These models define the response schemas for the resolution API. All are
serialized with camelCase field names.
"""

from __future__ import annotations

from datetime import datetime

from app.kg.cache import CacheTag
from app.kg.schemas import (
    CacheStats,
    CamelModel,
    FixAction,
    FullRunOutcome,
    PurgeResult,
    ResolutionResult,
    SearchHit,
    StagedKind,
    StagingStats,
)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Resolution Response Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ResolveRelationshipsResponse(CamelModel):
    """Response for /resolve-relationships."""

    success: bool = True
    result: ResolutionResult
    stats: StagingStats


class FixRelationshipsResponse(CamelModel):
    """Response for /fix-relationships.

    Single-phase actions fill ``result``; "both" fills ``staged_result`` and
    ``obvious_result``.
    """

    success: bool = True
    action: FixAction
    message: str
    result: ResolutionResult | None = None
    staged_result: ResolutionResult | None = None
    obvious_result: ResolutionResult | None = None


class ResolveEntitiesResponse(FullRunOutcome):
    """Response for /resolve-entities (full run)."""

    success: bool = True


class StagingStatsResponse(StagingStats):
    """Response for /staging-stats."""

    cache_stats: CacheStats


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Staging Response Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class StagedIdsResponse(CamelModel):
    """IDs of newly staged rows."""

    ids: list[str]
    count: int


class ResetStagingResponse(CamelModel):
    """Response for /staging/reset."""

    kind: StagedKind
    reset: int


class PurgeStagingResponse(PurgeResult):
    """Response for /staging/purge."""

    success: bool = True


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Cache Response Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CacheClearResponse(CamelModel):
    """Response for /cache/clear."""

    success: bool = True
    key: str | None = None
    tag: CacheTag | None = None
    cleared: int
    message: str


class ClearAllResponse(CamelModel):
    """Response for /cache/clear-all."""

    success: bool = True
    cleared: int
    message: str


class ForceRefreshResponse(CamelModel):
    """Response for /force-refresh."""

    success: bool = True
    cleared: int
    entities: int
    connections: int
    timestamp: datetime


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Graph and Curation Response Models
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class SearchResponse(CamelModel):
    """Response for /search."""

    query: str
    results: list[SearchHit]


class CreateEntityResponse(CamelModel):
    """Response for POST /entity."""

    success: bool = True
    entity_id: str


class CreateConnectionResponse(CamelModel):
    """Response for POST /connection."""

    success: bool = True
    connection_id: str
    created: bool
    message: str | None = None


class DeleteResponse(CamelModel):
    """Response for DELETE endpoints."""

    success: bool = True
    id: str
