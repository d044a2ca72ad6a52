"""
Unified error schema for the resolution API.

Provides consistent error codes, messages, and hints for all API responses.
All errors include retryability information and optional debugging details.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Authentication
    UNAUTHORIZED = "UNAUTHORIZED"

    # Resolution errors
    RESOLUTION_CONFLICT = "RESOLUTION_CONFLICT"
    ENTITY_EXISTS = "ENTITY_EXISTS"

    # Resource errors (RESOURCE_*)
    RESOURCE_NOT_FOUND = "RESOURCE_NOT_FOUND"
    CACHE_KEY_NOT_FOUND = "CACHE_KEY_NOT_FOUND"

    # Validation errors (VALIDATION_*)
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_FORMAT = "INVALID_FORMAT"

    # Capacity errors
    SERVICE_UNAVAILABLE = "SERVICE_UNAVAILABLE"
    REQUEST_TIMEOUT = "REQUEST_TIMEOUT"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


@dataclass
class APIError:
    """
    Structured error response for API endpoints.

    Attributes:
        code: Standardized error code from ErrorCode enum
        message: Human-readable error message
        detail: Optional technical details for debugging
        hint: Optional suggestion for resolving the error
        retryable: Whether the client should retry the request
    """

    code: ErrorCode
    message: str
    detail: str | None = None
    hint: str | None = None
    retryable: bool = False

    def to_dict(self) -> dict[str, dict[str, str | bool]]:
        """
        Convert error to dictionary format for JSON responses.

        Returns:
            Dictionary with 'error' key containing error details
        """
        error_dict: dict[str, str | bool] = {
            "code": self.code.value,
            "message": self.message,
            "retryable": self.retryable,
        }

        if self.detail is not None:
            error_dict["detail"] = self.detail

        if self.hint is not None:
            error_dict["hint"] = self.hint

        return {"error": error_dict}


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Predefined Error Factories
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


def unauthorized_error() -> APIError:
    """Create error for a missing or incorrect bearer token."""
    return APIError(
        code=ErrorCode.UNAUTHORIZED,
        message="Unauthorized",
        hint="Send 'Authorization: Bearer <internal API key>'",
        retryable=False,
    )


def entity_not_found_error(entity_id: str) -> APIError:
    """Create error for a missing canonical entity."""
    return APIError(
        code=ErrorCode.RESOURCE_NOT_FOUND,
        message="Entity not found",
        detail=f"Entity ID: {entity_id}",
        hint="Check the entity ID or search by name",
        retryable=False,
    )


def connection_not_found_error(connection_id: str) -> APIError:
    """Create error for a missing connection."""
    return APIError(
        code=ErrorCode.RESOURCE_NOT_FOUND,
        message="Connection not found",
        detail=f"Connection ID: {connection_id}",
        retryable=False,
    )


def cache_key_not_found_error(key: str) -> APIError:
    """Create error for clearing a cache key that is not cached."""
    return APIError(
        code=ErrorCode.CACHE_KEY_NOT_FOUND,
        message="Cache key not found",
        detail=f"Key: {key}",
        hint="The entry may have expired or been cleared already",
        retryable=False,
    )


def entity_exists_error(entity_id: str, message: str) -> APIError:
    """Create error for creating an entity whose name already resolves."""
    return APIError(
        code=ErrorCode.ENTITY_EXISTS,
        message=message,
        detail=f"Entity ID: {entity_id}",
        hint="Use the existing entity or choose a different name",
        retryable=False,
    )


def resolution_conflict_error(detail: str | None = None) -> APIError:
    """Create error for an unrecovered concurrent creation race."""
    return APIError(
        code=ErrorCode.RESOLUTION_CONFLICT,
        message="Concurrent update conflict",
        detail=detail,
        hint="Retry the request",
        retryable=True,
    )


def validation_error(field: str, reason: str) -> APIError:
    """Create error for validation failures."""
    return APIError(
        code=ErrorCode.VALIDATION_ERROR,
        message=f"Validation failed for field: {field}",
        detail=reason,
        hint="Check the input format and try again",
        retryable=False,
    )


def service_unavailable_error(detail: str | None = None) -> APIError:
    """Create error for service unavailability."""
    return APIError(
        code=ErrorCode.SERVICE_UNAVAILABLE,
        message="Service temporarily unavailable",
        detail=detail,
        hint="Please try again in a moment",
        retryable=True,
    )


def request_timeout_error(detail: str | None = None) -> APIError:
    """Create error for request timeout."""
    return APIError(
        code=ErrorCode.REQUEST_TIMEOUT,
        message="Request timed out",
        detail=detail,
        hint="Please try again",
        retryable=True,
    )


def internal_error(detail: str | None = None) -> APIError:
    """Create generic internal error."""
    return APIError(
        code=ErrorCode.INTERNAL_ERROR,
        message="An internal error occurred",
        detail=detail,
        hint="Please try again. If the problem persists, contact support.",
        retryable=True,
    )
