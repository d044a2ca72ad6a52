"""
Graph read endpoints.

Serves the cached graph snapshot, node details and name search to the
rendering client. Read-only and unauthenticated.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query

from app.api.deps import ValidatedEntityId, get_resolution_service
from app.api.errors import handle_endpoint_error
from app.kg.schemas import GraphSnapshot, NodeDetail
from app.models.api import SearchResponse
from app.models.errors import entity_not_found_error
from app.services import ResolutionService

router = APIRouter(prefix="/api", tags=["graph"])


@router.get("/graph", response_model=GraphSnapshot)
async def get_graph(
    service: ResolutionService = Depends(get_resolution_service),
) -> GraphSnapshot:
    """
    Get every canonical node and link.

    Args:
        service: Injected resolution service

    Returns:
        GraphSnapshot with nodes (degree and episode counts) and links
    """
    try:
        return await service.get_graph()
    except Exception as e:
        raise handle_endpoint_error(e, "get_graph")


@router.get("/node/{entity_id}", response_model=NodeDetail)
async def get_node(
    entity_id: str = Depends(ValidatedEntityId()),
    service: ResolutionService = Depends(get_resolution_service),
) -> NodeDetail:
    """
    Get one entity with its episodes (newest first) and related nodes.

    Raises:
        HTTPException: 404 if the entity does not exist
    """
    try:
        node = await service.get_node(entity_id)
    except Exception as e:
        raise handle_endpoint_error(e, f"get_node id={entity_id}")

    if node is None:
        raise HTTPException(
            status_code=404, detail=entity_not_found_error(entity_id).to_dict()
        )
    return node


@router.get("/search", response_model=SearchResponse)
async def search(
    q: str = Query(..., min_length=1, max_length=200),
    limit: int = Query(default=10, ge=1, le=50),
    service: ResolutionService = Depends(get_resolution_service),
) -> SearchResponse:
    """Rank entity names against a free-text query."""
    try:
        results = await service.search(q, limit)
    except Exception as e:
        raise handle_endpoint_error(e, "search")
    return SearchResponse(query=q, results=results)
