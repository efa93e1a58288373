"""API v1 router aggregating all sub-routers."""

from fastapi import APIRouter

from solar_tracker.api.v1.closure import router as closure_router
from solar_tracker.api.v1.panels import router as panels_router
from solar_tracker.api.v1.progress import router as progress_router

api_v1_router = APIRouter()


@api_v1_router.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint returning 200 OK."""
    return {"status": "ok"}


api_v1_router.include_router(panels_router)
api_v1_router.include_router(progress_router)
api_v1_router.include_router(closure_router)
