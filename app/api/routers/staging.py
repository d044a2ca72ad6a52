"""
Staging endpoints.

Write side used by the extraction process, plus operator maintenance
(reset processed flags, purge old processed rows). All endpoints require
the internal bearer token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from app.api.deps import get_resolution_service, require_bearer_token
from app.api.errors import handle_endpoint_error
from app.models.api import PurgeStagingResponse, ResetStagingResponse, StagedIdsResponse
from app.models.requests import (
    PurgeStagingRequest,
    ResetStagingRequest,
    StageEntitiesRequest,
    StageRelationshipsRequest,
)
from app.services import ResolutionService

router = APIRouter(
    prefix="/api/staging",
    tags=["staging"],
    dependencies=[Depends(require_bearer_token)],
)


@router.post("/entities", response_model=StagedIdsResponse)
async def stage_entities(
    request: StageEntitiesRequest,
    service: ResolutionService = Depends(get_resolution_service),
) -> StagedIdsResponse:
    """Stage extracted entities for resolution."""
    try:
        ids = await service.stage_entities(request.entities)
    except Exception as e:
        raise handle_endpoint_error(e, "stage_entities")
    return StagedIdsResponse(ids=ids, count=len(ids))


@router.post("/relationships", response_model=StagedIdsResponse)
async def stage_relationships(
    request: StageRelationshipsRequest,
    service: ResolutionService = Depends(get_resolution_service),
) -> StagedIdsResponse:
    """Stage extracted relationships for resolution."""
    try:
        ids = await service.stage_relationships(request.relationships)
    except Exception as e:
        raise handle_endpoint_error(e, "stage_relationships")
    return StagedIdsResponse(ids=ids, count=len(ids))


@router.post("/reset", response_model=ResetStagingResponse)
async def reset_staging(
    request: ResetStagingRequest,
    service: ResolutionService = Depends(get_resolution_service),
) -> ResetStagingResponse:
    """
    Mark every staged row of a kind unprocessed again.

    Intended for deliberate re-runs, e.g. after canonical data was wiped.
    Replaying rows does not duplicate connections or inflate weights.

    Args:
        request: Kind of staged rows to reset
        service: Injected resolution service

    Returns:
        ResetStagingResponse with the number of rows reset
    """
    try:
        count = await service.reset_staging(request.kind)
    except Exception as e:
        raise handle_endpoint_error(e, f"reset_staging kind={request.kind.value}")
    return ResetStagingResponse(kind=request.kind, reset=count)


@router.post("/purge", response_model=PurgeStagingResponse)
async def purge_staging(
    request: PurgeStagingRequest,
    service: ResolutionService = Depends(get_resolution_service),
) -> PurgeStagingResponse:
    """Delete processed staging rows older than the given number of days."""
    try:
        purged = await service.purge_staging(request.older_than_days)
    except Exception as e:
        raise handle_endpoint_error(e, "purge_staging")
    return PurgeStagingResponse(**purged.model_dump())
