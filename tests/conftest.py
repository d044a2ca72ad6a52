"""
Pytest configuration and fixtures for backend tests.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Generator
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import Engine
from sqlalchemy.orm import Session, sessionmaker

from app.core.config import get_settings
from app.core.database import create_db_engine, create_session_factory, init_schema
from app.kg.entity_resolver import EntityResolver
from app.kg.relationship_resolver import RelationshipResolver
from app.kg.schemas import StagedEntityInput, StagedRelationshipInput
from app.kg.staging import StagingStore

# Configure pytest-asyncio to use function-scoped event loops
pytest_plugins = ("pytest_asyncio",)

TEST_API_KEY = "test-internal-key-0123456789"


# =============================================================================
# Storage Fixtures
# =============================================================================


@pytest.fixture
def engine(tmp_path: Path) -> Generator[Engine, None, None]:
    """File-backed SQLite engine with the schema created."""
    db_engine = create_db_engine(f"sqlite:///{tmp_path / 'graph.db'}")
    init_schema(db_engine)
    yield db_engine
    db_engine.dispose()


@pytest.fixture
def session_factory(engine: Engine) -> sessionmaker[Session]:
    return create_session_factory(engine)


@pytest.fixture
def staging(session_factory: sessionmaker[Session]) -> StagingStore:
    return StagingStore(session_factory)


@pytest.fixture
def resolver(
    session_factory: sessionmaker[Session], staging: StagingStore
) -> EntityResolver:
    return EntityResolver(session_factory, staging)


@pytest.fixture
def relationships(
    session_factory: sessionmaker[Session],
    staging: StagingStore,
    resolver: EntityResolver,
) -> RelationshipResolver:
    return RelationshipResolver(session_factory, staging, resolver, max_workers=4)


# =============================================================================
# Sample Data
# =============================================================================


def entity_input(
    name: str,
    entity_type: str = "Person",
    episode_id: str = "ep-1",
    description: str | None = None,
    extracted_at: datetime | None = None,
) -> StagedEntityInput:
    """Build a staged entity as produced by extraction."""
    return StagedEntityInput(
        name=name,
        entity_type=entity_type,
        description=description,
        episode_id=episode_id,
        episode_title=f"Episode {episode_id}",
        extracted_at=extracted_at,
    )


def relationship_input(
    source: str,
    target: str,
    episode_id: str = "ep-1",
    description: str | None = None,
    extracted_at: datetime | None = None,
) -> StagedRelationshipInput:
    """Build a staged relationship as produced by extraction."""
    return StagedRelationshipInput(
        source_name=source,
        target_name=target,
        description=description,
        episode_id=episode_id,
        episode_title=f"Episode {episode_id}",
        extracted_at=extracted_at,
    )


@pytest.fixture
def old_timestamp() -> datetime:
    return datetime(2020, 1, 1, tzinfo=timezone.utc)


# =============================================================================
# API Fixtures
# =============================================================================


@pytest.fixture
def app_env(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> Generator[None, None, None]:
    """Point settings at a temporary database and a known API key."""
    monkeypatch.setenv("APP_DATABASE_URL", f"sqlite:///{tmp_path / 'api.db'}")
    monkeypatch.setenv("APP_INTERNAL_API_KEY", TEST_API_KEY)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest_asyncio.fixture
async def async_client(app_env: None) -> AsyncGenerator[AsyncClient, None]:
    """Create an async HTTP client with services started for the test."""
    # Import here so settings are read after the environment is patched
    from app.main import app
    from app.services import services_lifespan

    async with services_lifespan(MagicMock()):
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            yield client


@pytest.fixture
def auth_headers() -> dict[str, str]:
    return {"Authorization": f"Bearer {TEST_API_KEY}"}
