"""
Health check endpoint for monitoring and orchestration.
"""

from fastapi import APIRouter

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check() -> dict[str, str]:
    """
    Health check endpoint for monitoring and orchestration.

    Returns:
        Simple status response indicating service is running
    """
    return {"status": "ok"}
