"""Health check endpoints."""

import time

from fastapi import APIRouter, Request

from hiring_backend.api.v1.schemas import HealthStatus
from hiring_backend.config import settings

router = APIRouter(prefix="/api/v1", tags=["health"])

STARTED_AT = time.monotonic()


@router.get("/health", response_model=HealthStatus)
async def health_check(request: Request) -> HealthStatus:
    """Health check endpoint for load balancers and monitoring."""
    dependencies: dict[str, str] = {}
    pool_stats: dict = {}

    pool = getattr(request.app.state, "worker_pool", None)
    if pool is None:
        dependencies["worker_pool"] = "stopped"
    else:
        pool_stats = pool.get_queue_stats()
        dependencies["worker_pool"] = "healthy" if pool_stats["is_running"] else "stopped"
        try:
            store_health = await pool.store.health_check()
            dependencies["task_store"] = store_health.get("store", "unknown")
        except Exception as e:
            dependencies["task_store"] = f"error: {e}"

    overall_status = (
        "healthy" if all(value == "healthy" for value in dependencies.values()) else "degraded"
    )

    return HealthStatus(
        status=overall_status,
        service="interview-analysis-api",
        version=settings.api_version,
        uptime_seconds=round(time.monotonic() - STARTED_AT, 1),
        dependencies=dependencies,
        worker_pool=pool_stats,
    )
