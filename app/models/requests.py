"""
Request models for API endpoints.

Defines Pydantic models for validating incoming HTTP requests. Field names
are camelCase on the wire (e.g. "batchSize"), snake_case in Python.
"""

from __future__ import annotations

import re

from pydantic import Field, field_validator, model_validator

from app.core.validators import is_valid_graph_id
from app.kg.cache import CacheTag
from app.kg.schemas import (
    CamelModel,
    FixAction,
    StagedEntityInput,
    StagedKind,
    StagedRelationshipInput,
)

# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Entity Name Validation Constants
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

# Maximum length for entity names
MAX_ENTITY_NAME_LENGTH = 500

# Upper bound for any batch size accepted over HTTP
MAX_BATCH_SIZE = 1000

# Maximum staged rows accepted per staging request
MAX_STAGED_ROWS = 5000

# Control character pattern (C0 and C1 control chars)
# C0: \x00-\x1f (except common whitespace like \t \n \r which we'll preserve)
# C1: \x7f-\x9f (DEL and extended control chars)
CONTROL_CHAR_PATTERN = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f]")


def sanitize_entity_name(value: str) -> str:
    """Sanitize an entity name by stripping control characters.

    Args:
        value: The entity name to sanitize.

    Returns:
        Sanitized string with control characters removed and whitespace stripped.

    Raises:
        ValueError: If the resulting name exceeds MAX_ENTITY_NAME_LENGTH.
    """
    if not value:
        return value

    sanitized = CONTROL_CHAR_PATTERN.sub("", value).strip()

    if len(sanitized) > MAX_ENTITY_NAME_LENGTH:
        raise ValueError(
            f"Entity name exceeds {MAX_ENTITY_NAME_LENGTH} characters "
            f"(got {len(sanitized)})"
        )

    return sanitized


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Resolution Triggers
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class ResolveRelationshipsRequest(CamelModel):
    """Request model for one staged-relationship batch."""

    batch_size: int | None = Field(
        default=None, ge=1, le=MAX_BATCH_SIZE, description="Rows to process"
    )


class FixRelationshipsRequest(CamelModel):
    """Request model for fix-relationships; unknown actions fail validation."""

    action: FixAction = Field(..., description="fix-staged, create-obvious or both")
    batch_size: int | None = Field(default=None, ge=1, le=MAX_BATCH_SIZE)


class ResolveEntitiesRequest(CamelModel):
    """Request model for a full multi-batch resolution run."""

    entity_batch_size: int | None = Field(default=None, ge=1, le=MAX_BATCH_SIZE)
    relationship_batch_size: int | None = Field(
        default=None, ge=1, le=MAX_BATCH_SIZE
    )
    max_batches: int | None = Field(default=None, ge=1, le=100)
    clear_cache: bool = Field(
        default=False, description="Reset the resolution cache before running"
    )
    clear_older_than: int | None = Field(
        default=None,
        ge=0,
        description="Purge processed staging rows older than this many days",
    )


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Staging
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class StageEntitiesRequest(CamelModel):
    """Request model for staging extracted entities."""

    entities: list[StagedEntityInput] = Field(
        ..., min_length=1, max_length=MAX_STAGED_ROWS
    )


class StageRelationshipsRequest(CamelModel):
    """Request model for staging extracted relationships."""

    relationships: list[StagedRelationshipInput] = Field(
        ..., min_length=1, max_length=MAX_STAGED_ROWS
    )


class ResetStagingRequest(CamelModel):
    """Request model for resetting processed flags of one kind."""

    kind: StagedKind


class PurgeStagingRequest(CamelModel):
    """Request model for deleting old processed staging rows."""

    older_than_days: int = Field(..., ge=0)


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Cache
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CacheClearRequest(CamelModel):
    """Request model for clearing one key or one tag (exactly one)."""

    key: str | None = Field(default=None, min_length=1, max_length=200)
    tag: CacheTag | None = None

    @model_validator(mode="after")
    def validate_one_target(self) -> CacheClearRequest:
        """Require exactly one of key or tag."""
        if (self.key is None) == (self.tag is None):
            raise ValueError("Provide exactly one of 'key' or 'tag'")
        return self


# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━
# Manual Curation
# ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━


class CreateEntityRequest(CamelModel):
    """Request model for creating a canonical entity by hand."""

    name: str = Field(..., min_length=1)
    entity_type: str = Field(..., alias="type", min_length=1, max_length=64)
    description: str | None = Field(default=None, max_length=5000)

    @field_validator("name", mode="before")
    @classmethod
    def validate_entity_name(cls, v: str) -> str:
        """Strip control characters and enforce max length on entity names."""
        return sanitize_entity_name(v) if isinstance(v, str) else v


class CreateConnectionRequest(CamelModel):
    """Request model for a curated connection between two entities.

    Entity IDs must be exactly 12 lowercase hex characters.
    """

    source_entity_id: str
    target_entity_id: str
    description: str | None = Field(default=None, max_length=5000)

    @field_validator("source_entity_id", "target_entity_id")
    @classmethod
    def validate_entity_id(cls, v: str) -> str:
        """Validate entity ID format (12 lowercase hex characters)."""
        if not is_valid_graph_id(v):
            raise ValueError("Entity ID must be 12 lowercase hexadecimal characters")
        return v
