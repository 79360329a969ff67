"""
In-memory repositories.

Used in development and tests. Records are copied on the way in and out so
callers never share a mutable instance with the store, matching what a
document store round-trip would give them.
"""

import asyncio
from datetime import datetime
from typing import Any

import structlog

from hiring_backend.interviews.models import Application, InterviewResponse
from hiring_backend.repositories.base import InterviewRepository, TaskNotFoundError, TaskStore
from hiring_backend.tasks.models import AnalysisTask, TaskStatus

logger = structlog.get_logger(__name__)


def _apply(task: AnalysisTask, fields: dict[str, Any]) -> AnalysisTask:
    data = task.model_dump()
    data.update(fields)
    data["updated_at"] = datetime.now()
    return AnalysisTask.model_validate(data)


class InMemoryTaskStore(TaskStore):
    """Lock-guarded dict of task records."""

    def __init__(self) -> None:
        self._tasks: dict[str, AnalysisTask] = {}
        self._lock = asyncio.Lock()

    async def create(self, task: AnalysisTask) -> AnalysisTask:
        async with self._lock:
            if task.task_id in self._tasks:
                raise ValueError(f"Task {task.task_id} already exists")
            self._tasks[task.task_id] = task.model_copy(deep=True)
            logger.debug("Task stored", task_id=task.task_id, application_id=task.application_id)
            return task.model_copy(deep=True)

    async def get(self, task_id: str) -> AnalysisTask | None:
        async with self._lock:
            task = self._tasks.get(task_id)
            return task.model_copy(deep=True) if task else None

    async def find_active(self, application_id: str) -> AnalysisTask | None:
        async with self._lock:
            for task in self._tasks.values():
                if (
                    task.application_id == application_id
                    and task.status.is_active
                    and not task.is_deleted
                ):
                    return task.model_copy(deep=True)
            return None

    async def update(self, task_id: str, **fields: Any) -> AnalysisTask:
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            updated = _apply(task, fields)
            self._tasks[task_id] = updated
            logger.debug("Task updated", task_id=task_id, status=updated.status.value)
            return updated.model_copy(deep=True)

    async def increment_retry(self, task_id: str, **fields: Any) -> AnalysisTask:
        async with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            updated = _apply(task, {**fields, "retry_count": task.retry_count + 1})
            self._tasks[task_id] = updated
            return updated.model_copy(deep=True)

    async def list(
        self,
        status: TaskStatus | None = None,
        limit: int = 100,
        include_deleted: bool = False,
    ) -> list[AnalysisTask]:
        async with self._lock:
            tasks = [
                t
                for t in self._tasks.values()
                if (include_deleted or not t.is_deleted) and (status is None or t.status == status)
            ]
        tasks.sort(key=lambda t: t.created_at, reverse=True)
        return [t.model_copy(deep=True) for t in tasks[:limit]]

    async def count_by_status(self) -> dict[str, int]:
        async with self._lock:
            counts: dict[str, int] = {}
            for task in self._tasks.values():
                if task.is_deleted:
                    continue
                counts[task.status.value] = counts.get(task.status.value, 0) + 1
            return counts


class InMemoryInterviewRepository(InterviewRepository):
    """Applications and responses held in dicts; seeded with `add_*` helpers."""

    def __init__(self) -> None:
        self._applications: dict[str, Application] = {}
        self._responses: dict[str, InterviewResponse] = {}
        self._lock = asyncio.Lock()

    def add_application(self, application: Application) -> None:
        self._applications[application.application_id] = application.model_copy(deep=True)

    def add_response(self, response: InterviewResponse) -> None:
        self._responses[response.response_id] = response.model_copy(deep=True)

    async def get_application(self, application_id: str) -> Application | None:
        async with self._lock:
            application = self._applications.get(application_id)
            return application.model_copy(deep=True) if application else None

    async def list_responses(self, application_id: str) -> list[InterviewResponse]:
        async with self._lock:
            responses = [r for r in self._responses.values() if r.application_id == application_id]
        responses.sort(key=lambda r: r.position)
        return [r.model_copy(deep=True) for r in responses]

    async def update_response(self, response_id: str, **fields: Any) -> InterviewResponse | None:
        async with self._lock:
            response = self._responses.get(response_id)
            if response is None:
                return None
            updated = InterviewResponse.model_validate({**response.model_dump(), **fields})
            self._responses[response_id] = updated
            return updated.model_copy(deep=True)

    async def record_overall_analysis(
        self, application_id: str, analysis: dict[str, Any], status: str
    ) -> Application | None:
        async with self._lock:
            application = self._applications.get(application_id)
            if application is None:
                return None
            updated = application.model_copy(
                update={
                    "overall_analysis": analysis,
                    "status": status,
                    "updated_at": datetime.now(),
                }
            )
            self._applications[application_id] = updated
            return updated.model_copy(deep=True)
