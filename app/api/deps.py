"""
Dependency injection providers for API endpoints.

Provides FastAPI dependencies that inject service instances into route
handlers, enabling loose coupling and testability, plus the bearer-token
check guarding every trigger endpoint.
"""

from __future__ import annotations

import logging
import secrets

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from app.core.config import Settings
from app.core.validators import is_valid_graph_id
from app.models.errors import unauthorized_error
from app.services import ResolutionService, get_services

logger = logging.getLogger(__name__)

_bearer_scheme = HTTPBearer(auto_error=False)


def get_resolution_service() -> ResolutionService:
    """
    Dependency provider for ResolutionService.

    Returns:
        ResolutionService instance from the global container
    """
    return get_services().resolution


def get_app_settings() -> Settings:
    """
    Dependency provider for the settings the container was started with.

    Returns:
        Settings instance from the global container
    """
    return get_services().settings


def require_bearer_token(
    credentials: HTTPAuthorizationCredentials | None = Depends(_bearer_scheme),
    settings: Settings = Depends(get_app_settings),
) -> None:
    """
    Reject the request unless it carries the internal API key.

    Fails closed: when no key is configured every protected call is
    rejected.

    Raises:
        HTTPException: 401 with an APIError body
    """
    expected = settings.internal_api_key
    if not expected:
        logger.warning("Protected endpoint called but no internal API key is configured")
        raise _unauthorized()

    if credentials is None or not secrets.compare_digest(
        credentials.credentials.encode(), expected.encode()
    ):
        logger.info("Rejected request with missing or incorrect bearer token")
        raise _unauthorized()


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=401,
        detail=unauthorized_error().to_dict(),
        headers={"WWW-Authenticate": "Bearer"},
    )


def validate_graph_id(value: str, field_name: str = "ID") -> str:
    """
    Validate that a string is a valid entity or connection ID.

    Args:
        value: The string to validate
        field_name: Name of the field for error messages

    Returns:
        The validated value

    Raises:
        HTTPException: If the value is not 12 lowercase hex characters
    """
    if not is_valid_graph_id(value):
        raise HTTPException(
            status_code=400,
            detail=f"Invalid {field_name} format (must be 12 hex characters)",
        )
    return value


class ValidatedEntityId:
    """
    Dependency class for validated entity ID path parameters.

    Usage:
        @router.get("/node/{entity_id}")
        async def endpoint(entity_id: str = Depends(ValidatedEntityId())):
            ...
    """

    def __call__(self, entity_id: str) -> str:
        """Validate and return the entity ID."""
        return validate_graph_id(entity_id, "entity ID")


class ValidatedConnectionId:
    """Dependency class for validated connection ID path parameters."""

    def __call__(self, connection_id: str) -> str:
        """Validate and return the connection ID."""
        return validate_graph_id(connection_id, "connection ID")
