"""
Manual curation endpoints.

Lets operators create or delete canonical entities and connections by hand.
Entity creation goes through the resolver, so a name that normalizes to an
existing entity is rejected with 409. All endpoints require the internal
bearer token.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from app.api.deps import (
    ValidatedConnectionId,
    ValidatedEntityId,
    get_resolution_service,
    require_bearer_token,
)
from app.api.errors import handle_endpoint_error
from app.models.api import CreateConnectionResponse, CreateEntityResponse, DeleteResponse
from app.models.errors import connection_not_found_error, entity_not_found_error
from app.models.requests import CreateConnectionRequest, CreateEntityRequest
from app.services import ResolutionService

router = APIRouter(
    prefix="/api",
    tags=["curation"],
    dependencies=[Depends(require_bearer_token)],
)


@router.post("/entity", response_model=CreateEntityResponse)
async def create_entity(
    request: CreateEntityRequest,
    service: ResolutionService = Depends(get_resolution_service),
) -> CreateEntityResponse:
    """
    Create a canonical entity.

    Args:
        request: Name, type and optional description
        service: Injected resolution service

    Returns:
        CreateEntityResponse with the new entity ID

    Raises:
        HTTPException: 409 if the name resolves to an existing entity
    """
    try:
        entity_id = await service.create_entity(
            request.name, request.entity_type, request.description
        )
    except Exception as e:
        raise handle_endpoint_error(e, "create_entity")
    return CreateEntityResponse(entity_id=entity_id)


@router.delete("/entity/{entity_id}", response_model=DeleteResponse)
async def delete_entity(
    entity_id: str = Depends(ValidatedEntityId()),
    service: ResolutionService = Depends(get_resolution_service),
) -> DeleteResponse:
    """Delete an entity together with its mentions and connections."""
    try:
        deleted = await service.delete_entity(entity_id)
    except Exception as e:
        raise handle_endpoint_error(e, f"delete_entity id={entity_id}")

    if not deleted:
        raise HTTPException(
            status_code=404, detail=entity_not_found_error(entity_id).to_dict()
        )
    return DeleteResponse(id=entity_id)


@router.post("/connection", response_model=CreateConnectionResponse)
async def create_connection(
    request: CreateConnectionRequest,
    service: ResolutionService = Depends(get_resolution_service),
) -> CreateConnectionResponse:
    """
    Create a curated connection between two existing entities.

    An existing pair is returned unchanged (created=false).

    Raises:
        HTTPException: 400 on a self-loop, 404 if an entity is missing
    """
    try:
        connection_id, created = await service.create_connection(
            request.source_entity_id,
            request.target_entity_id,
            request.description,
        )
    except Exception as e:
        raise handle_endpoint_error(e, "create_connection")

    return CreateConnectionResponse(
        connection_id=connection_id,
        created=created,
        message=None if created else "Connection already exists",
    )


@router.delete("/connection/{connection_id}", response_model=DeleteResponse)
async def delete_connection(
    connection_id: str = Depends(ValidatedConnectionId()),
    service: ResolutionService = Depends(get_resolution_service),
) -> DeleteResponse:
    """Delete one connection."""
    try:
        deleted = await service.delete_connection(connection_id)
    except Exception as e:
        raise handle_endpoint_error(e, f"delete_connection id={connection_id}")

    if not deleted:
        raise HTTPException(
            status_code=404,
            detail=connection_not_found_error(connection_id).to_dict(),
        )
    return DeleteResponse(id=connection_id)
