"""
Knowledge graph resolution engine.

This module provides the staging store, entity and relationship resolvers,
the tagged read cache and the read-only graph model that together fold
extracted podcast entities and relationships into a deduplicated graph.
"""

from app.kg.cache import CacheInvalidator, CacheTag, ReadCache
from app.kg.entity_resolver import EntityResolver, ResolutionCache
from app.kg.errors import (
    EntityExists,
    EntityNotFound,
    InvalidInput,
    ResolutionConflict,
    ResolutionError,
    RowProcessingError,
    StorageUnavailable,
)
from app.kg.read_model import GraphReadModel
from app.kg.relationship_resolver import RelationshipResolver
from app.kg.schemas import (
    CacheStats,
    EntityResolutionResult,
    ObviousRelationshipConfig,
    ResolutionResult,
    StagedEntityInput,
    StagedKind,
    StagedRelationshipInput,
    StagingStats,
)
from app.kg.staging import StagingStore

__all__ = [
    # Components
    "StagingStore",
    "EntityResolver",
    "ResolutionCache",
    "RelationshipResolver",
    "ReadCache",
    "CacheInvalidator",
    "CacheTag",
    "GraphReadModel",
    # Errors
    "ResolutionError",
    "InvalidInput",
    "ResolutionConflict",
    "RowProcessingError",
    "StorageUnavailable",
    "EntityNotFound",
    "EntityExists",
    # Values
    "StagedKind",
    "StagedEntityInput",
    "StagedRelationshipInput",
    "StagingStats",
    "CacheStats",
    "ResolutionResult",
    "EntityResolutionResult",
    "ObviousRelationshipConfig",
]
