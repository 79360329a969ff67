"""API v1 router aggregation."""

from fastapi import APIRouter

from hiring_backend.api.v1.routers import analysis, health

router = APIRouter()
router.include_router(health.router)
router.include_router(analysis.router)
