"""
Health check endpoints.
"""
from typing import Any, Dict

from fastapi import APIRouter

from authflow.core.config import settings
from authflow.infrastructure.cache import get_redis_client

router = APIRouter()


@router.get("/health")
async def health_check() -> Dict[str, Any]:
    """
    Basic health check endpoint.

    Returns:
        Health status
    """
    return {
        "status": "healthy",
        "service": "authflow",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
    }


@router.get("/health/ready")
async def readiness_check() -> Dict[str, Any]:
    """
    Readiness check including the flow state backend.

    Returns:
        Readiness status with component health
    """
    components = {
        "api": "healthy",
        "flow_state": "healthy",
    }

    if settings.FLOW_STATE_BACKEND == "redis":
        try:
            redis_client = await get_redis_client()
            await redis_client.ping()
        except Exception:
            components["flow_state"] = "unhealthy"

    all_healthy = all(status == "healthy" for status in components.values())

    return {
        "status": "ready" if all_healthy else "not ready",
        "components": components,
    }
