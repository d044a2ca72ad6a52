"""
Service Container and Lifecycle Management.

Provides a centralized container for the database engine and the
resolution service with startup/shutdown lifecycle management for FastAPI
integration.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from fastapi import FastAPI
from sqlalchemy import Engine

from app.core.config import Settings, get_settings
from app.core.database import create_db_engine, create_session_factory, init_schema
from app.services.resolution_service import ResolutionService

logger = logging.getLogger(__name__)


class ServiceContainer:
    """
    Dependency injection container for all services.

    Manages service lifecycle with startup/shutdown hooks for proper
    resource management in FastAPI applications.
    """

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize container with empty service references."""
        self._settings = settings or get_settings()
        self._engine: Engine | None = None
        self._resolution: ResolutionService | None = None

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def resolution(self) -> ResolutionService:
        """Get resolution service instance."""
        if self._resolution is None:
            raise RuntimeError(
                "ServiceContainer not initialized - call startup() first"
            )
        return self._resolution

    async def startup(self) -> None:
        """
        Create the database engine, ensure the schema and build services.
        """
        logger.info("Starting service container")

        self._engine = create_db_engine(
            self._settings.database_url,
            busy_timeout=self._settings.sqlite_busy_timeout,
        )
        await asyncio.to_thread(init_schema, self._engine)
        self._resolution = ResolutionService(
            create_session_factory(self._engine), self._settings
        )

        logger.info("Service container started")

    async def shutdown(self) -> None:
        """Dispose of pooled connections and clear service references."""
        logger.info("Shutting down service container")

        if self._engine is not None:
            await asyncio.to_thread(self._engine.dispose)

        self._engine = None
        self._resolution = None

        logger.info("Service container shutdown complete")


# Global service container instance
_services: ServiceContainer | None = None


def get_services() -> ServiceContainer:
    """
    Get the global service container instance.

    Returns:
        Global ServiceContainer singleton

    Raises:
        RuntimeError: If container hasn't been initialized
    """
    if _services is None:
        raise RuntimeError(
            "Services not initialized - ensure services_lifespan() is used"
        )
    return _services


@asynccontextmanager
async def services_lifespan(app: FastAPI) -> AsyncIterator[None]:
    """
    FastAPI lifespan context manager for service initialization.

    Example:
        app = FastAPI(lifespan=services_lifespan)

    Args:
        app: FastAPI application instance

    Yields:
        None (context manager pattern)
    """
    global _services

    # Startup
    _services = ServiceContainer()
    await _services.startup()
    logger.info("FastAPI services initialized")

    try:
        yield
    finally:
        # Shutdown
        if _services:
            await _services.shutdown()
        _services = None
        logger.info("FastAPI services cleaned up")


__all__ = [
    "ServiceContainer",
    "get_services",
    "services_lifespan",
    "ResolutionService",
]
