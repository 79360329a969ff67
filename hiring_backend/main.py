"""
FastAPI backend for interview analysis.

The lifespan below is the composition root: it builds the repositories, the
external clients and the analysis worker pool, starts the pool, and shuts it
down when the application stops.
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import structlog

from hiring_backend.api.v1.endpoints import router as api_v1_router
from hiring_backend.config import Settings, configure_structlog, settings
from hiring_backend.repositories.factory import create_repositories
from hiring_backend.scoring.client import ScoringClient
from hiring_backend.tasks.worker import AnalysisWorker
from hiring_backend.tasks.worker_pool import AnalysisWorkerPool
from hiring_backend.transcription.client import TranscriptionClient
from hiring_backend.transcription.prepass import TranscriptionPrepass

configure_structlog()
logger = structlog.get_logger(__name__)


def build_worker_pool(app_settings: Settings) -> AnalysisWorkerPool:
    store, interviews = create_repositories(app_settings)
    scoring = ScoringClient(settings=app_settings)
    prepass = TranscriptionPrepass(
        interviews,
        TranscriptionClient(
            url=app_settings.transcription_url,
            timeout=app_settings.transcription_timeout_seconds,
            download_timeout=app_settings.audio_download_timeout_seconds,
        ),
    )
    return AnalysisWorkerPool(
        store,
        interviews,
        worker_factory=lambda: AnalysisWorker(interviews, scoring).run,
        settings=app_settings,
        prepass=prepass,
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan event handler for startup and shutdown."""
    logger.info(
        "Interview Analysis API starting up",
        version=settings.api_version,
        storage_backend=settings.storage_backend.value,
        llm_model=settings.llm_model,
    )

    pool = build_worker_pool(settings)
    app.state.settings = settings
    app.state.worker_pool = pool
    await pool.start()
    logger.info("API routes registered", endpoints=len(app.routes))

    yield

    logger.info("Interview Analysis API shutting down")
    await pool.shutdown()
    app.state.worker_pool = None


app = FastAPI(
    title=settings.api_title,
    description="""
    **Interview Analysis Service**

    * **Analysis tasks**: queue, poll, cancel and retry interview analysis
    * **Bounded worker pool**: priority queue with retries and timeouts
    * **Maintenance**: repair, reset and purge stored tasks
    """,
    version=settings.api_version,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_v1_router)


@app.get("/", tags=["Root"])
async def root():
    """
    Root endpoint providing basic API information.

    Use `/api/v1/health` for detailed health checks.
    """
    return {
        "service": settings.api_title,
        "version": settings.api_version,
        "status": "operational",
        "docs": "/docs",
        "health": "/api/v1/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "hiring_backend.main:app",
        host=settings.host,
        port=settings.port,
        log_config=None,
    )
