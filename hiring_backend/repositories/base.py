"""
Abstract repository interfaces.

The worker pool treats both stores as opaque persistence services; concrete
backends live in `memory.py` and `duckdb_repository.py`.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any

from hiring_backend.interviews.models import Application, InterviewResponse
from hiring_backend.tasks.models import AnalysisTask, TaskStatus


class TaskNotFoundError(LookupError):
    """Raised when an update targets a task id the store does not hold."""


class TaskStore(ABC):
    """Persistence for analysis task records, keyed by `task_id`."""

    @abstractmethod
    async def create(self, task: AnalysisTask) -> AnalysisTask:
        """Insert a new task. Raises ValueError if the id already exists."""

    @abstractmethod
    async def get(self, task_id: str) -> AnalysisTask | None:
        """Fetch a task by id (soft-deleted tasks included)."""

    @abstractmethod
    async def find_active(self, application_id: str) -> AnalysisTask | None:
        """Return the pending or processing task for an application, if any."""

    @abstractmethod
    async def update(self, task_id: str, **fields: Any) -> AnalysisTask:
        """Apply field updates and return the stored task."""

    @abstractmethod
    async def increment_retry(self, task_id: str, **fields: Any) -> AnalysisTask:
        """Increment `retry_count` and apply field updates in one write."""

    @abstractmethod
    async def list(
        self,
        status: TaskStatus | None = None,
        limit: int = 100,
        include_deleted: bool = False,
    ) -> list[AnalysisTask]:
        """List tasks, newest first."""

    @abstractmethod
    async def count_by_status(self) -> dict[str, int]:
        """Count live tasks per status."""

    async def health_check(self) -> dict[str, Any]:
        counts = await self.count_by_status()
        return {
            "store": "healthy",
            "backend": type(self).__name__,
            "total_tasks": sum(counts.values()),
            "status_breakdown": counts,
            "checked_at": datetime.now().isoformat(),
        }


class InterviewRepository(ABC):
    """Read access to applications and responses, plus the writes the pool makes."""

    @abstractmethod
    async def get_application(self, application_id: str) -> Application | None:
        pass

    @abstractmethod
    async def list_responses(self, application_id: str) -> list[InterviewResponse]:
        """Active responses for an application, in question order."""

    @abstractmethod
    async def update_response(self, response_id: str, **fields: Any) -> InterviewResponse | None:
        pass

    @abstractmethod
    async def record_overall_analysis(
        self, application_id: str, analysis: dict[str, Any], status: str
    ) -> Application | None:
        pass
