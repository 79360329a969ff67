"""Request-scoped access to objects owned by the application lifespan."""

from fastapi import HTTPException, Request, status

from hiring_backend.tasks.worker_pool import AnalysisWorkerPool


def get_worker_pool(request: Request) -> AnalysisWorkerPool:
    pool = getattr(request.app.state, "worker_pool", None)
    if pool is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Analysis worker pool is not running",
        )
    return pool
