"""
API router modules.

This package contains FastAPI routers organized by feature area:
- resolution: Resolution runs and staging statistics
- staging: Staged row intake and maintenance
- cache: Read cache invalidation
- graph: Graph snapshot, node detail and search (public)
- curation: Manual entity and connection management
- health: Health check for monitoring
"""

from app.api.routers.cache import router as cache_router
from app.api.routers.curation import router as curation_router
from app.api.routers.graph import router as graph_router
from app.api.routers.health import router as health_router
from app.api.routers.resolution import router as resolution_router
from app.api.routers.staging import router as staging_router

__all__ = [
    "cache_router",
    "curation_router",
    "graph_router",
    "health_router",
    "resolution_router",
    "staging_router",
]
