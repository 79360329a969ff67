"""Test the FastAPI analysis and health endpoints."""

from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timedelta
import time

from conftest import APP_ID, WORKSPACE_ID, make_settings, object_id
from fastapi import FastAPI
from fastapi.testclient import TestClient
import pytest

from hiring_backend.api.v1.endpoints import router as api_v1_router
from hiring_backend.tasks.identifiers import generate_task_id
from hiring_backend.tasks.models import AnalysisTask, ErrorCode, TaskStatus
from hiring_backend.tasks.worker_pool import AnalysisWorkerPool

TASKS_URL = "/api/v1/analysis/tasks"


def wait_for_status(client: TestClient, task_id: str, expected: str, timeout: float = 3.0) -> dict:
    deadline = time.monotonic() + timeout
    while True:
        body = client.get(f"{TASKS_URL}/{task_id}").json()
        if body.get("status") == expected:
            return body
        if time.monotonic() > deadline:
            raise AssertionError(f"task {task_id} stuck in {body.get('status')}")
        time.sleep(0.01)


@pytest.fixture
def make_client(task_store, interviews, workers):
    """Run the routers against a pool built on the test fixtures."""

    @contextmanager
    def _make(seed=(), **overrides):
        settings = make_settings(**overrides)

        @asynccontextmanager
        async def lifespan(app: FastAPI):
            for task in seed:
                await task_store.create(task)
            pool = AnalysisWorkerPool(task_store, interviews, workers, settings=settings)
            app.state.settings = settings
            app.state.worker_pool = pool
            await pool.start()
            yield
            await pool.shutdown()

        app = FastAPI(lifespan=lifespan)
        app.include_router(api_v1_router)
        with TestClient(app) as client:
            yield client

    return _make


@pytest.fixture
def client(make_client):
    with make_client() as client:
        yield client


class TestQueueAnalysis:
    """POST /api/v1/analysis/tasks"""

    def test_queue_and_complete(self, client):
        """A queued task is accepted and runs to completion."""
        response = client.post(TASKS_URL, json={"application_id": APP_ID, "workspace_id": WORKSPACE_ID})

        assert response.status_code == 202
        data = response.json()
        assert data["task_id"].startswith(f"task_{APP_ID}_")
        assert data["message"] == "Analysis task queued successfully"

        body = wait_for_status(client, data["task_id"], "completed")
        assert body["progress"]["percentage"] == 100
        assert body["is_active"] is False

    def test_duplicate_returns_conflict(self, client, workers):
        """A second request for an active application returns the existing task."""
        workers.default = "hang"
        first = client.post(TASKS_URL, json={"application_id": APP_ID, "workspace_id": WORKSPACE_ID}).json()

        response = client.post(
            TASKS_URL, json={"application_id": APP_ID, "workspace_id": WORKSPACE_ID, "priority": "high"}
        )

        assert response.status_code == 409
        assert response.json()["detail"]["task_id"] == first["task_id"]

    def test_full_queue_returns_unavailable(self, make_client, workers):
        workers.default = "hang"
        with make_client(max_analysis_workers=1, max_analysis_queue=2) as client:
            for n in (1, 2):
                assert client.post(
                    TASKS_URL, json={"application_id": object_id(n), "workspace_id": WORKSPACE_ID}
                ).status_code == 202

            response = client.post(TASKS_URL, json={"application_id": object_id(3), "workspace_id": WORKSPACE_ID})

        assert response.status_code == 503
        assert "full" in response.json()["detail"]["message"]

    @pytest.mark.parametrize(
        "payload",
        [
            {"application_id": APP_ID},
            {"application_id": "", "workspace_id": WORKSPACE_ID},
            {"application_id": APP_ID, "workspace_id": WORKSPACE_ID, "priority": "urgent"},
        ],
    )
    def test_invalid_request(self, client, payload):
        assert client.post(TASKS_URL, json=payload).status_code == 422


class TestTaskEndpoints:
    """Status, listing, cancellation and retry."""

    def test_unknown_task(self, client):
        assert client.get(f"{TASKS_URL}/task_missing").status_code == 404
        assert client.delete(f"{TASKS_URL}/task_missing").status_code == 404
        assert client.post(f"{TASKS_URL}/task_missing/retry").status_code == 404

    def test_cancel_running_task(self, client, workers):
        workers.default = "hang"
        task_id = client.post(TASKS_URL, json={"application_id": APP_ID, "workspace_id": WORKSPACE_ID}).json()[
            "task_id"
        ]
        wait_for_status(client, task_id, "processing")

        response = client.delete(f"{TASKS_URL}/{task_id}")

        assert response.status_code == 200
        assert response.json() == {"success": True, "message": "Task cancelled successfully"}
        body = client.get(f"{TASKS_URL}/{task_id}").json()
        assert body["status"] == "cancelled"
        assert body["error"]["code"] == ErrorCode.CANCELLED
        assert client.delete(f"{TASKS_URL}/{task_id}").json()["message"] == "Task already cancelled"

    def test_cancel_completed_task_conflicts(self, client):
        task_id = client.post(TASKS_URL, json={"application_id": APP_ID, "workspace_id": WORKSPACE_ID}).json()[
            "task_id"
        ]
        wait_for_status(client, task_id, "completed")

        assert client.delete(f"{TASKS_URL}/{task_id}").status_code == 409

    def test_retry_failed_task(self, client, workers):
        workers.script(APP_ID, f"error:{ErrorCode.INVALID_APPLICATION}", "complete")
        task_id = client.post(TASKS_URL, json={"application_id": APP_ID, "workspace_id": WORKSPACE_ID}).json()[
            "task_id"
        ]
        failed = wait_for_status(client, task_id, "failed")
        assert failed["error"]["code"] == ErrorCode.INVALID_APPLICATION

        response = client.post(f"{TASKS_URL}/{task_id}/retry")

        assert response.status_code == 202
        retried = response.json()["task_id"]
        assert retried != task_id
        assert wait_for_status(client, retried, "completed")["priority"] == "high"

    def test_retry_requires_failed_task(self, client, workers):
        workers.default = "hang"
        task_id = client.post(TASKS_URL, json={"application_id": APP_ID, "workspace_id": WORKSPACE_ID}).json()[
            "task_id"
        ]

        assert client.post(f"{TASKS_URL}/{task_id}/retry").status_code == 409

    def test_list_tasks(self, client, workers):
        workers.default = "hang"
        kept = client.post(TASKS_URL, json={"application_id": object_id(1), "workspace_id": WORKSPACE_ID}).json()
        dropped = client.post(TASKS_URL, json={"application_id": object_id(2), "workspace_id": WORKSPACE_ID}).json()
        client.delete(f"{TASKS_URL}/{dropped['task_id']}")

        everything = client.get(TASKS_URL).json()
        cancelled = client.get(TASKS_URL, params={"status": "cancelled"}).json()

        assert everything["count"] == 2
        assert [t["task_id"] for t in cancelled["tasks"]] == [dropped["task_id"]]
        assert kept["task_id"] in {t["task_id"] for t in everything["tasks"]}
        assert client.get(TASKS_URL, params={"status": "unknown"}).status_code == 422

    def test_queue_stats(self, client):
        client.post(TASKS_URL, json={"application_id": APP_ID, "workspace_id": WORKSPACE_ID})

        stats = client.get("/api/v1/analysis/stats").json()

        assert stats["max_workers"] == 2
        assert stats["max_queue_size"] == 100
        assert stats["is_running"] is True
        assert sum(stats["status_breakdown"].values()) == 1


class TestMaintenance:
    def test_cleanup_resets_and_requeues(self, make_client):
        stuck = AnalysisTask(
            task_id=generate_task_id(object_id(5)),
            application_id=object_id(5),
            workspace_id=WORKSPACE_ID,
            status=TaskStatus.PROCESSING,
            started_at=datetime.now() - timedelta(hours=2),
        )
        legacy = AnalysisTask(
            task_id="legacy-1",
            application_id="[object Object]",
            workspace_id=WORKSPACE_ID,
            status=TaskStatus.PROCESSING,
        )

        with make_client(seed=[stuck, legacy]) as client:
            response = client.post("/api/v1/analysis/maintenance/cleanup")

            assert response.status_code == 200
            summary = response.json()
            assert summary["unrecoverable"] == 1
            assert summary["reset"] == 1
            assert summary["recovered"] == 1
            wait_for_status(client, stuck.task_id, "completed")
            assert client.get(f"{TASKS_URL}/legacy-1").json()["error"]["code"] == ErrorCode.INVALID_TASK_FORMAT


class TestHealthEndpoint:
    """Test the health check endpoint."""

    def test_health_check_success(self, client):
        response = client.get("/api/v1/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "interview-analysis-api"
        assert data["dependencies"] == {"worker_pool": "healthy", "task_store": "healthy"}
        assert data["worker_pool"]["max_workers"] == 2
        assert "timestamp" in data

    def test_health_without_pool_is_degraded(self):
        app = FastAPI()
        app.include_router(api_v1_router)
        client = TestClient(app)

        data = client.get("/api/v1/health").json()

        assert data["status"] == "degraded"
        assert data["dependencies"]["worker_pool"] == "stopped"

    def test_analysis_without_pool_is_unavailable(self):
        app = FastAPI()
        app.include_router(api_v1_router)
        client = TestClient(app)

        assert client.get("/api/v1/analysis/stats").status_code == 503
