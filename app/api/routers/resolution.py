"""
Resolution trigger endpoints.

Provides endpoints for running the resolution engine on demand:
- One staged-relationship batch
- Relationship repair modes (fix-staged, create-obvious, both)
- Full multi-batch entity + relationship runs
- Staging and resolution-cache statistics

All endpoints require the internal bearer token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import get_resolution_service, require_bearer_token
from app.api.errors import handle_endpoint_error
from app.kg.schemas import FixAction
from app.models.api import (
    FixRelationshipsResponse,
    ResolveEntitiesResponse,
    ResolveRelationshipsResponse,
    StagingStatsResponse,
)
from app.models.requests import (
    FixRelationshipsRequest,
    ResolveEntitiesRequest,
    ResolveRelationshipsRequest,
)
from app.services import ResolutionService

router = APIRouter(
    prefix="/api",
    tags=["resolution"],
    dependencies=[Depends(require_bearer_token)],
)


@router.post("/resolve-relationships", response_model=ResolveRelationshipsResponse)
async def resolve_relationships(
    request: ResolveRelationshipsRequest,
    service: ResolutionService = Depends(get_resolution_service),
) -> ResolveRelationshipsResponse:
    """
    Resolve one batch of staged relationships into canonical connections.

    Row-level failures are reported in the result counts; only storage
    failures make the request fail (503).

    Args:
        request: Batch size (defaults to the configured batch size)
        service: Injected resolution service

    Returns:
        ResolveRelationshipsResponse with batch counts and staging stats
    """
    try:
        result, stats = await service.resolve_relationships(request.batch_size)
    except Exception as e:
        raise handle_endpoint_error(e, "resolve_relationships")
    return ResolveRelationshipsResponse(result=result, stats=stats)


@router.post("/fix-relationships", response_model=FixRelationshipsResponse)
async def fix_relationships(
    request: FixRelationshipsRequest,
    service: ResolutionService = Depends(get_resolution_service),
) -> FixRelationshipsResponse:
    """
    Run a relationship repair action.

    Args:
        request: Action ("fix-staged", "create-obvious" or "both") and batch size
        service: Injected resolution service

    Returns:
        FixRelationshipsResponse with per-phase results and a summary message
    """
    try:
        outcome = await service.fix_relationships(request.action, request.batch_size)
    except Exception as e:
        raise handle_endpoint_error(
            e, f"fix_relationships action={request.action.value}"
        )

    if outcome.action is FixAction.BOTH:
        return FixRelationshipsResponse(
            action=outcome.action,
            message=outcome.message,
            staged_result=outcome.staged,
            obvious_result=outcome.obvious,
        )
    return FixRelationshipsResponse(
        action=outcome.action,
        message=outcome.message,
        result=outcome.staged or outcome.obvious,
    )


@router.post("/resolve-entities", response_model=ResolveEntitiesResponse)
async def resolve_entities(
    request: ResolveEntitiesRequest,
    service: ResolutionService = Depends(get_resolution_service),
) -> ResolveEntitiesResponse:
    """
    Run staged entities, then staged relationships, in multiple batches.

    Args:
        request: Batch sizes, batch limit, cache reset and purge options
        service: Injected resolution service

    Returns:
        ResolveEntitiesResponse with totals for both phases
    """
    try:
        outcome = await service.run_full_resolution(
            entity_batch_size=request.entity_batch_size,
            relationship_batch_size=request.relationship_batch_size,
            max_batches=request.max_batches,
            clear_cache=request.clear_cache,
            clear_older_than_days=request.clear_older_than,
        )
    except Exception as e:
        raise handle_endpoint_error(e, "resolve_entities")
    return ResolveEntitiesResponse(**outcome.model_dump())


@router.get("/staging-stats", response_model=StagingStatsResponse)
async def staging_stats(
    service: ResolutionService = Depends(get_resolution_service),
) -> StagingStatsResponse:
    """
    Get staged/processed counts and resolution cache statistics.

    Args:
        service: Injected resolution service

    Returns:
        StagingStatsResponse
    """
    try:
        stats, cache_stats = await service.get_staging_stats()
    except Exception as e:
        raise handle_endpoint_error(e, "staging_stats")
    return StagingStatsResponse(**stats.model_dump(), cache_stats=cache_stats)
