"""
Cache invalidation endpoints.

Provides key, tag and global invalidation of the read cache so resolution
results become visible without a restart. All endpoints require the
internal bearer token.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Response

from app.api.deps import get_resolution_service, require_bearer_token
from app.api.errors import handle_endpoint_error
from app.models.api import CacheClearResponse, ClearAllResponse, ForceRefreshResponse
from app.models.errors import cache_key_not_found_error
from app.models.requests import CacheClearRequest
from app.services import ResolutionService

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api",
    tags=["cache"],
    dependencies=[Depends(require_bearer_token)],
)

NO_STORE_HEADERS = {
    "Cache-Control": "no-store, no-cache, must-revalidate, max-age=0",
    "Pragma": "no-cache",
    "Expires": "0",
}


@router.post("/cache/clear", response_model=CacheClearResponse)
async def clear_cache(
    request: CacheClearRequest,
    service: ResolutionService = Depends(get_resolution_service),
) -> CacheClearResponse:
    """
    Clear one cache key or every entry carrying a tag.

    Args:
        request: Exactly one of key or tag
        service: Injected resolution service

    Returns:
        CacheClearResponse with the number of entries removed

    Raises:
        HTTPException: 404 if the key is not cached
    """
    if request.tag is not None:
        removed = service.clear_cache_tag(request.tag)
        return CacheClearResponse(
            tag=request.tag,
            cleared=removed,
            message=f"Cleared {removed} entries tagged '{request.tag.value}'",
        )

    key = str(request.key)
    if not service.clear_cache_key(key):
        raise HTTPException(
            status_code=404,
            detail=cache_key_not_found_error(key).to_dict(),
        )
    return CacheClearResponse(
        key=key, cleared=1, message=f"Cache cleared for key: {key}"
    )


@router.post("/cache/clear-all", response_model=ClearAllResponse)
async def clear_all_caches(
    response: Response,
    service: ResolutionService = Depends(get_resolution_service),
) -> ClearAllResponse:
    """Drop every cached artifact; the response itself must not be cached."""
    removed = service.clear_all_caches()
    response.headers.update(NO_STORE_HEADERS)
    return ClearAllResponse(cleared=removed, message=f"Cleared {removed} cache entries")


@router.post("/force-refresh", response_model=ForceRefreshResponse)
async def force_refresh(
    response: Response,
    service: ResolutionService = Depends(get_resolution_service),
) -> ForceRefreshResponse:
    """
    Clear all caches and report current canonical table sizes.

    Args:
        response: Outgoing response (no-store headers are added)
        service: Injected resolution service

    Returns:
        ForceRefreshResponse with entity and connection counts
    """
    try:
        cleared, counts = await service.force_refresh()
    except Exception as e:
        raise handle_endpoint_error(e, "force_refresh")

    response.headers.update(NO_STORE_HEADERS)
    logger.info(
        f"Force refresh: {counts.entities} entities, {counts.connections} connections"
    )
    return ForceRefreshResponse(
        cleared=cleared,
        entities=counts.entities,
        connections=counts.connections,
        timestamp=datetime.now(timezone.utc),
    )
