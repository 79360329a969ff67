"""Analysis task endpoints backed by the worker pool."""

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
import structlog

from hiring_backend.api.v1.dependencies import get_worker_pool
from hiring_backend.api.v1.schemas import (
    ActionResponse,
    AnalysisTaskRequest,
    CleanupResponse,
    QueuedTaskResponse,
    QueueStatsResponse,
    TaskListResponse,
    TaskStatusResponse,
)
from hiring_backend.config import settings as default_settings
from hiring_backend.tasks.maintenance import run_cleanup
from hiring_backend.tasks.models import RejectReason, TaskStatus
from hiring_backend.tasks.worker_pool import AnalysisWorkerPool

logger = structlog.get_logger(__name__)
router = APIRouter(prefix="/api/v1/analysis", tags=["analysis"])

REJECTION_STATUS = {
    RejectReason.INVALID_REQUEST: status.HTTP_400_BAD_REQUEST,
    RejectReason.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    RejectReason.DUPLICATE: status.HTTP_409_CONFLICT,
    RejectReason.INVALID_STATE: status.HTTP_409_CONFLICT,
    RejectReason.QUEUE_FULL: status.HTTP_503_SERVICE_UNAVAILABLE,
    RejectReason.SHUTTING_DOWN: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def raise_for_rejection(outcome: dict[str, Any]) -> None:
    """Translate a pool rejection into an HTTP error."""
    if outcome.get("success"):
        return
    detail = {"message": outcome.get("message", "Request rejected")}
    if outcome.get("task_id"):
        detail["task_id"] = outcome["task_id"]
    raise HTTPException(
        status_code=REJECTION_STATUS.get(
            outcome.get("reason"), status.HTTP_500_INTERNAL_SERVER_ERROR
        ),
        detail=detail,
    )


async def get_task_or_404(task_id: str, pool: AnalysisWorkerPool) -> dict[str, Any]:
    snapshot = await pool.get_task_status(task_id)
    if snapshot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")
    return snapshot


@router.post("/tasks", response_model=QueuedTaskResponse, status_code=status.HTTP_202_ACCEPTED)
async def queue_analysis(
    request: AnalysisTaskRequest,
    pool: AnalysisWorkerPool = Depends(get_worker_pool),
) -> QueuedTaskResponse:
    """Queue analysis for an interview application.

    Expected behavior:
    - 202 with the new task id and its queue position
    - 409 with the existing task id when one is already pending or processing
    - 503 when the queue is full
    """
    outcome = await pool.queue_analysis_task(
        request.application_id, request.workspace_id, request.priority
    )
    raise_for_rejection(outcome)
    return QueuedTaskResponse(
        task_id=outcome["task_id"],
        message=outcome["message"],
        position=outcome.get("position"),
    )


@router.get("/tasks", response_model=TaskListResponse)
async def list_tasks(
    status_filter: TaskStatus | None = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=500),
    pool: AnalysisWorkerPool = Depends(get_worker_pool),
) -> TaskListResponse:
    tasks = await pool.list_tasks(status=status_filter, limit=limit)
    return TaskListResponse(
        tasks=[TaskStatusResponse.model_validate(t) for t in tasks],
        count=len(tasks),
    )


@router.get("/tasks/{task_id}", response_model=TaskStatusResponse)
async def get_task_status(
    task_id: str, pool: AnalysisWorkerPool = Depends(get_worker_pool)
) -> TaskStatusResponse:
    return TaskStatusResponse.model_validate(await get_task_or_404(task_id, pool))


@router.delete("/tasks/{task_id}", response_model=ActionResponse)
async def cancel_task(
    task_id: str, pool: AnalysisWorkerPool = Depends(get_worker_pool)
) -> ActionResponse:
    """Cancel a queued or running task; repeated calls succeed."""
    outcome = await pool.cancel_task(task_id)
    raise_for_rejection(outcome)
    logger.info("Task cancelled via API", task_id=task_id)
    return ActionResponse(success=True, message=outcome["message"])


@router.post(
    "/tasks/{task_id}/retry",
    response_model=QueuedTaskResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def retry_task(
    task_id: str, pool: AnalysisWorkerPool = Depends(get_worker_pool)
) -> QueuedTaskResponse:
    outcome = await pool.retry_task(task_id)
    raise_for_rejection(outcome)
    return QueuedTaskResponse(
        task_id=outcome["task_id"],
        message=outcome["message"],
        position=outcome.get("position"),
    )


@router.get("/stats", response_model=QueueStatsResponse)
async def queue_stats(pool: AnalysisWorkerPool = Depends(get_worker_pool)) -> QueueStatsResponse:
    return QueueStatsResponse(
        **pool.get_queue_stats(),
        status_breakdown=await pool.store.count_by_status(),
    )


@router.post("/maintenance/cleanup", response_model=CleanupResponse)
async def cleanup_tasks(
    request: Request, pool: AnalysisWorkerPool = Depends(get_worker_pool)
) -> CleanupResponse:
    """Repair corrupted tasks, reset stuck ones and purge old failures.

    Tasks the pool is currently tracking are never reset. Tasks moved back
    to pending are queued again right away.
    """
    stats = pool.get_queue_stats()
    summary = await run_cleanup(
        pool.store,
        pool.interviews,
        settings=getattr(request.app.state, "settings", default_settings),
        exclude=set(stats["active_task_ids"]) | set(stats["queued_task_ids"]),
    )
    recovered = await pool.recover_pending_tasks()
    return CleanupResponse(**summary.model_dump(), recovered=recovered)
