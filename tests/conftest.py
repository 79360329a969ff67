"""Shared test configuration and fixtures for all tests."""

import asyncio
from collections.abc import Callable
import os
from typing import Any

import pytest

# Keep tests independent of any local .env
os.environ["STORAGE_BACKEND"] = "memory"
os.environ["LOG_JSON"] = "false"

from hiring_backend.config import Settings  # noqa: E402
from hiring_backend.interviews.models import (  # noqa: E402
    Application,
    Candidate,
    InterviewResponse,
    JobProfile,
)
from hiring_backend.repositories.memory import (  # noqa: E402
    InMemoryInterviewRepository,
    InMemoryTaskStore,
)
from hiring_backend.tasks.worker_pool import AnalysisWorkerPool  # noqa: E402


def object_id(n: int) -> str:
    """A valid 24-hex document id."""
    return f"{n:024x}"


APP_ID = object_id(1)
WORKSPACE_ID = object_id(1000)


def make_settings(**overrides: Any) -> Settings:
    """Settings with timings shrunk for tests."""
    values: dict[str, Any] = {
        "max_analysis_workers": 2,
        "max_analysis_queue": 100,
        "analysis_timeout_seconds": 5.0,
        "analysis_retry_attempts": 3,
        "analysis_retry_delay_seconds": 0.0,
        "queue_drain_delay_seconds": 0.0,
        "shutdown_grace_seconds": 0.0,
        "store_retry_wait_seconds": 0.0,
    }
    values.update(overrides)
    return Settings(**values)


async def wait_for(predicate: Callable[[], Any], timeout: float = 3.0, interval: float = 0.01) -> None:
    """Poll `predicate` (sync or async) until it is truthy."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while True:
        outcome = predicate()
        if asyncio.iscoroutine(outcome):
            outcome = await outcome
        if outcome:
            return
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


class ScriptedWorkers:
    """
    Worker factory whose bodies follow a script per application id.

    Behaviours: "complete", "block" (complete once `gate` is set), "hang",
    "raise", "exit", or "error:<CODE>" to report an error message with that
    code. A list of behaviours is consumed one attempt at a time; the last
    entry repeats.
    """

    def __init__(self, default: str = "complete"):
        self.default = default
        self.scripts: dict[str, list[str]] = {}
        self.started: list[str] = []
        self.started_apps: list[str] = []
        self.start_messages: list[dict[str, Any]] = []
        self.active = 0
        self.max_active = 0
        self.gate = asyncio.Event()

    def script(self, application_id: str, *behaviours: str) -> None:
        self.scripts[application_id] = list(behaviours)

    def _next(self, application_id: str) -> str:
        script = self.scripts.get(application_id)
        if not script:
            return self.default
        return script.pop(0) if len(script) > 1 else script[0]

    def __call__(self):
        return self.run

    async def run(self, task_data: dict[str, Any], post_message) -> None:
        self.started.append(task_data["task_id"])
        self.started_apps.append(task_data["application_id"])
        self.start_messages.append(task_data)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            behaviour = self._next(task_data["application_id"])
            post_message({"type": "progress", "step": "fetching_responses", "message": "Fetching"})
            if behaviour == "block":
                await self.gate.wait()
                behaviour = "complete"
            if behaviour == "complete":
                await asyncio.sleep(0)
                post_message(
                    {
                        "type": "completed",
                        "result": {"total_responses": 0, "individual_scores": [], "average_score": 0},
                    }
                )
            elif behaviour == "hang":
                await asyncio.Event().wait()
            elif behaviour == "raise":
                raise RuntimeError("worker crashed")
            elif behaviour == "exit":
                return
            elif behaviour.startswith("error:"):
                code = behaviour.split(":", 1)[1]
                post_message({"type": "error", "error": {"message": f"failed with {code}", "code": code}})
        finally:
            self.active -= 1


@pytest.fixture
def task_store() -> InMemoryTaskStore:
    return InMemoryTaskStore()


@pytest.fixture
def interviews() -> InMemoryInterviewRepository:
    return InMemoryInterviewRepository()


@pytest.fixture
def workers() -> ScriptedWorkers:
    return ScriptedWorkers()


@pytest.fixture
async def make_pool(task_store, interviews, workers):
    """Build pools against the shared fixtures; all are shut down afterwards."""
    pools: list[AnalysisWorkerPool] = []

    def _make(worker_factory=None, prepass=None, **overrides: Any) -> AnalysisWorkerPool:
        pool = AnalysisWorkerPool(
            task_store,
            interviews,
            worker_factory or workers,
            settings=make_settings(**overrides),
            prepass=prepass,
        )
        pools.append(pool)
        return pool

    yield _make

    for pool in pools:
        await pool.shutdown()


@pytest.fixture
def sample_application() -> Application:
    return Application(
        application_id=APP_ID,
        workspace_id=WORKSPACE_ID,
        candidate=Candidate(
            name="Priya Raman",
            email="priya@example.com",
            experience="6 years backend",
            skills=["python", "postgres"],
            location="Pune",
        ),
        job=JobProfile(
            title="Senior Backend Engineer",
            description="Own the hiring platform APIs",
            requirements=["python", "distributed systems"],
            location="Remote",
        ),
    )


@pytest.fixture
def sample_responses() -> list[InterviewResponse]:
    return [
        InterviewResponse(
            response_id="resp-1",
            application_id=APP_ID,
            question_text="Tell us about a system you scaled.",
            transcription_text=(
                "I moved our order service to a queue based design. We cut p99 latency in half, "
                "and the team could deploy independently."
            ),
            position=1,
        ),
        InterviewResponse(
            response_id="resp-2",
            application_id=APP_ID,
            question_text="How do you handle incidents?",
            browser_transcription="I start with the runbook and keep a timeline.",
            position=2,
        ),
    ]
