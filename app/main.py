"""
FastAPI application entry point.

Configures and creates the FastAPI application with:
- Service lifecycle management
- Exception handlers
- Router mounting
"""

from dotenv import load_dotenv
from fastapi import FastAPI

# Load environment variables first
load_dotenv()

from app.core.config import get_settings  # noqa: E402
from app.core.logging import configure_logging  # noqa: E402

_settings = get_settings()
configure_logging(_settings.log_level, secret=_settings.internal_api_key)

# Import application components
from app.api.errors import register_exception_handlers  # noqa: E402
from app.api.routers import (  # noqa: E402
    cache_router,
    curation_router,
    graph_router,
    health_router,
    resolution_router,
    staging_router,
)
from app.services import services_lifespan  # noqa: E402

# Create FastAPI application with service lifecycle management
app = FastAPI(
    title="Podcast Knowledge Graph",
    description="Resolves staged podcast extractions into a deduplicated knowledge graph",
    version="1.0.0",
    lifespan=services_lifespan,
)

# Register exception handlers
register_exception_handlers(app)

# Mount API routers
app.include_router(health_router)
app.include_router(resolution_router)
app.include_router(staging_router)
app.include_router(cache_router)
app.include_router(graph_router)
app.include_router(curation_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("app.main:app", host="127.0.0.1", port=8000, reload=True)
