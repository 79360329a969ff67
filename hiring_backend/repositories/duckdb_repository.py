"""
DuckDB implementation of the repositories.

Each record is stored as a JSON document next to the columns we filter on.
Every call opens a short-lived connection in the default executor under one
asyncio lock per repository, so read-modify-write updates are atomic with
respect to other callers in this process.
"""

import asyncio
from collections.abc import Callable
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

import duckdb
import structlog

from hiring_backend.interviews.models import Application, InterviewResponse
from hiring_backend.repositories.base import InterviewRepository, TaskNotFoundError, TaskStore
from hiring_backend.tasks.models import AnalysisTask, TaskStatus

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class DuckDBRepository:
    """Shared connection handling."""

    schema: tuple[str, ...] = ()

    def __init__(self, db_path: str):
        self.db_path = Path(db_path)
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self._db_lock = asyncio.Lock()
        self._initialized = False

    async def _run(self, work: Callable[[duckdb.DuckDBPyConnection], T]) -> T:
        async with self._db_lock:

            def _call() -> T:
                with duckdb.connect(str(self.db_path)) as conn:
                    if not self._initialized:
                        for statement in self.schema:
                            conn.execute(statement)
                        self._initialized = True
                    return work(conn)

            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(None, _call)


class DuckDBTaskStore(DuckDBRepository, TaskStore):
    """Task records in an `analysis_tasks` table."""

    schema = (
        """
        CREATE TABLE IF NOT EXISTS analysis_tasks (
            task_id VARCHAR PRIMARY KEY,
            application_id VARCHAR NOT NULL,
            status VARCHAR NOT NULL,
            is_deleted BOOLEAN DEFAULT FALSE,
            created_at TIMESTAMP NOT NULL,
            document JSON NOT NULL
        )
        """,
    )

    def __init__(self, db_path: str = "data/hiring.duckdb"):
        super().__init__(db_path)
        logger.info("DuckDB task store initialized", db_path=str(self.db_path))

    @staticmethod
    def _row_to_task(row: tuple | None) -> AnalysisTask | None:
        if row is None:
            return None
        return AnalysisTask.model_validate_json(row[0])

    @staticmethod
    def _write(conn: duckdb.DuckDBPyConnection, task: AnalysisTask) -> None:
        conn.execute(
            """
            UPDATE analysis_tasks
            SET application_id = ?, status = ?, is_deleted = ?, document = ?
            WHERE task_id = ?
            """,
            (
                task.application_id,
                task.status.value,
                task.is_deleted,
                task.model_dump_json(),
                task.task_id,
            ),
        )

    async def create(self, task: AnalysisTask) -> AnalysisTask:
        def _insert(conn: duckdb.DuckDBPyConnection) -> None:
            exists = conn.execute(
                "SELECT 1 FROM analysis_tasks WHERE task_id = ?", (task.task_id,)
            ).fetchone()
            if exists:
                raise ValueError(f"Task {task.task_id} already exists")
            conn.execute(
                """
                INSERT INTO analysis_tasks (task_id, application_id, status, is_deleted, created_at, document)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    task.task_id,
                    task.application_id,
                    task.status.value,
                    task.is_deleted,
                    task.created_at,
                    task.model_dump_json(),
                ),
            )

        await self._run(_insert)
        logger.info("Task created", task_id=task.task_id, application_id=task.application_id)
        return task

    async def get(self, task_id: str) -> AnalysisTask | None:
        row = await self._run(
            lambda conn: conn.execute(
                "SELECT document FROM analysis_tasks WHERE task_id = ?", (task_id,)
            ).fetchone()
        )
        return self._row_to_task(row)

    async def find_active(self, application_id: str) -> AnalysisTask | None:
        row = await self._run(
            lambda conn: conn.execute(
                """
                SELECT document FROM analysis_tasks
                WHERE application_id = ? AND status IN ('pending', 'processing') AND NOT is_deleted
                ORDER BY created_at DESC
                LIMIT 1
                """,
                (application_id,),
            ).fetchone()
        )
        return self._row_to_task(row)

    async def _modify(self, task_id: str, change: Callable[[AnalysisTask], dict[str, Any]]) -> AnalysisTask:
        def _update(conn: duckdb.DuckDBPyConnection) -> AnalysisTask:
            row = conn.execute(
                "SELECT document FROM analysis_tasks WHERE task_id = ?", (task_id,)
            ).fetchone()
            current = self._row_to_task(row)
            if current is None:
                raise TaskNotFoundError(task_id)
            data = current.model_dump()
            data.update(change(current))
            data["updated_at"] = datetime.now()
            updated = AnalysisTask.model_validate(data)
            self._write(conn, updated)
            return updated

        updated = await self._run(_update)
        logger.debug("Task updated", task_id=task_id, status=updated.status.value)
        return updated

    async def update(self, task_id: str, **fields: Any) -> AnalysisTask:
        return await self._modify(task_id, lambda _task: fields)

    async def increment_retry(self, task_id: str, **fields: Any) -> AnalysisTask:
        return await self._modify(
            task_id, lambda task: {**fields, "retry_count": task.retry_count + 1}
        )

    async def list(
        self,
        status: TaskStatus | None = None,
        limit: int = 100,
        include_deleted: bool = False,
    ) -> list[AnalysisTask]:
        query = "SELECT document FROM analysis_tasks WHERE 1 = 1"
        params: list[Any] = []
        if status is not None:
            query += " AND status = ?"
            params.append(status.value)
        if not include_deleted:
            query += " AND NOT is_deleted"
        query += " ORDER BY created_at DESC LIMIT ?"
        params.append(limit)

        rows = await self._run(lambda conn: conn.execute(query, params).fetchall())
        return [AnalysisTask.model_validate_json(row[0]) for row in rows]

    async def count_by_status(self) -> dict[str, int]:
        rows = await self._run(
            lambda conn: conn.execute(
                "SELECT status, COUNT(*) FROM analysis_tasks WHERE NOT is_deleted GROUP BY status"
            ).fetchall()
        )
        return {status: count for status, count in rows}


class DuckDBInterviewRepository(DuckDBRepository, InterviewRepository):
    """Applications and responses as JSON documents."""

    schema = (
        """
        CREATE TABLE IF NOT EXISTS applications (
            application_id VARCHAR PRIMARY KEY,
            document JSON NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS interview_responses (
            response_id VARCHAR PRIMARY KEY,
            application_id VARCHAR NOT NULL,
            position INTEGER DEFAULT 0,
            document JSON NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_responses_app ON interview_responses(application_id)",
    )

    def __init__(self, db_path: str = "data/hiring.duckdb"):
        super().__init__(db_path)

    async def save_application(self, application: Application) -> None:
        await self._run(
            lambda conn: conn.execute(
                "INSERT OR REPLACE INTO applications (application_id, document) VALUES (?, ?)",
                (application.application_id, application.model_dump_json()),
            )
        )

    async def save_response(self, response: InterviewResponse) -> None:
        await self._run(
            lambda conn: conn.execute(
                """
                INSERT OR REPLACE INTO interview_responses (response_id, application_id, position, document)
                VALUES (?, ?, ?, ?)
                """,
                (
                    response.response_id,
                    response.application_id,
                    response.position,
                    response.model_dump_json(),
                ),
            )
        )

    async def get_application(self, application_id: str) -> Application | None:
        row = await self._run(
            lambda conn: conn.execute(
                "SELECT document FROM applications WHERE application_id = ?", (application_id,)
            ).fetchone()
        )
        return Application.model_validate_json(row[0]) if row else None

    async def list_responses(self, application_id: str) -> list[InterviewResponse]:
        rows = await self._run(
            lambda conn: conn.execute(
                """
                SELECT document FROM interview_responses
                WHERE application_id = ?
                ORDER BY position
                """,
                (application_id,),
            ).fetchall()
        )
        return [InterviewResponse.model_validate_json(row[0]) for row in rows]

    async def update_response(self, response_id: str, **fields: Any) -> InterviewResponse | None:
        def _update(conn: duckdb.DuckDBPyConnection) -> InterviewResponse | None:
            row = conn.execute(
                "SELECT document FROM interview_responses WHERE response_id = ?", (response_id,)
            ).fetchone()
            if row is None:
                return None
            current = InterviewResponse.model_validate_json(row[0])
            updated = InterviewResponse.model_validate({**current.model_dump(), **fields})
            conn.execute(
                "UPDATE interview_responses SET document = ? WHERE response_id = ?",
                (updated.model_dump_json(), response_id),
            )
            return updated

        return await self._run(_update)

    async def record_overall_analysis(
        self, application_id: str, analysis: dict[str, Any], status: str
    ) -> Application | None:
        def _update(conn: duckdb.DuckDBPyConnection) -> Application | None:
            row = conn.execute(
                "SELECT document FROM applications WHERE application_id = ?", (application_id,)
            ).fetchone()
            if row is None:
                return None
            updated = Application.model_validate_json(row[0]).model_copy(
                update={"overall_analysis": analysis, "status": status, "updated_at": datetime.now()}
            )
            conn.execute(
                "UPDATE applications SET document = ? WHERE application_id = ?",
                (updated.model_dump_json(), application_id),
            )
            return updated

        return await self._run(_update)
