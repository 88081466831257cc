# =============================================================================
# app/routers/health.py - Health Check Endpoints
# =============================================================================
# Provides health check endpoints for monitoring and load balancers.
# =============================================================================

import logging

from fastapi import APIRouter
from pydantic import BaseModel

from app.config import settings
from lib.redis_client import get_redis_client
from lib.supabase_client import SupabaseClient
from lib.utils import utc_now_iso
from workers.queue import is_queue_configured

logger = logging.getLogger(__name__)

router = APIRouter()

API_VERSION = "1.0.0"


# =============================================================================
# Response Models
# =============================================================================

class HealthResponse(BaseModel):
    """Basic health check response."""
    status: str
    timestamp: str
    environment: str
    version: str


class ChecksResponse(BaseModel):
    """Individual dependency checks."""
    database: str
    storage: str
    redis: str
    queue: str


class ReadinessResponse(BaseModel):
    """Readiness check response."""
    status: str
    checks: ChecksResponse
    timestamp: str


class LivenessResponse(BaseModel):
    """Liveness check response."""
    status: str
    timestamp: str


def _unhealthy(name: str, error: Exception) -> str:
    logger.warning(f"Readiness check {name} failed: {error}")
    return f"unhealthy: {str(error)[:50]}"


# =============================================================================
# Endpoints
# =============================================================================

@router.get("/health", response_model=HealthResponse)
async def health_check():
    """Basic health status for load balancers and monitoring."""
    return HealthResponse(
        status="healthy",
        timestamp=utc_now_iso(),
        environment=settings.ENVIRONMENT,
        version=API_VERSION,
    )


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check():
    """
    Readiness check endpoint.

    Checks the database, storage and Redis, and whether the selected queue
    backend has credentials. Reports `degraded` instead of failing so the
    body always says which dependency is down.
    """
    checks = ChecksResponse(database="unknown", storage="unknown", redis="unknown", queue="unknown")

    try:
        SupabaseClient.get_client().table("profiles").select("id").limit(1).execute()
        checks.database = "healthy"
    except Exception as e:
        checks.database = _unhealthy("database", e)

    try:
        SupabaseClient.get_client().storage.list_buckets()
        checks.storage = "healthy"
    except Exception as e:
        checks.storage = _unhealthy("storage", e)

    try:
        get_redis_client().ping()
        checks.redis = "healthy"
    except Exception as e:
        checks.redis = _unhealthy("redis", e)

    checks.queue = "healthy" if is_queue_configured() else f"not configured: {settings.QUEUE_BACKEND}"

    all_healthy = all(value == "healthy" for value in checks.model_dump().values())

    return ReadinessResponse(
        status="ready" if all_healthy else "degraded",
        checks=checks,
        timestamp=utc_now_iso(),
    )


@router.get("/health/live", response_model=LivenessResponse)
async def liveness_check():
    """
    Liveness check endpoint.

    Returns whether the service process is alive.
    Used by Kubernetes/Docker for restart decisions.
    """
    return LivenessResponse(
        status="alive",
        timestamp=utc_now_iso(),
    )
