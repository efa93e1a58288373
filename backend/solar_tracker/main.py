"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from solar_tracker.api.v1.router import api_v1_router
from solar_tracker.core.config import settings
from solar_tracker.core.database import async_session_factory, close_db, init_db
from solar_tracker.core.errors import WorkflowError
from solar_tracker.core.logging import configure_logging
from solar_tracker.core.redis import close_redis, init_redis
from solar_tracker.db.seed import seed_if_empty

logger = logging.getLogger(__name__)

ERROR_STATUS_CODES: dict[str, int] = {
    "validation_error": 422,
    "sequence_violation": 409,
    "not_found": 404,
    "not_ready": 409,
    "already_closed": 409,
    "not_completed": 409,
    "concurrent_modification": 409,
}


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    configure_logging()
    logger.info("Starting %s ...", settings.PROJECT_NAME)

    # Startup
    await init_db()
    logger.info("Database initialized")

    async with async_session_factory() as session:
        result = await seed_if_empty(session)
        if result:
            await session.commit()
            logger.info("Reference data seeded: %s", result)
        else:
            logger.info("Stations already present, skipping seed")

    if settings.PROGRESS_CACHE_BACKEND == "redis":
        await init_redis(app.state)
        logger.info("Redis connected")

    yield

    # Shutdown
    await close_redis(app.state)
    await close_db()
    logger.info("Database disconnected")


app = FastAPI(
    title=settings.PROJECT_NAME,
    version="0.1.0",
    lifespan=lifespan,
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS.split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", "Accept"],
)


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError) -> JSONResponse:
    """Render business errors as {"error": {kind, message, details}}."""
    status_code = ERROR_STATUS_CODES.get(exc.kind, 400)
    # Blockers are part of the NotReady contract, not debug detail.
    include_details = settings.DEBUG or exc.kind == "not_ready"
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.to_dict(include_details=include_details)},
    )


# Register API v1 router
app.include_router(api_v1_router, prefix="/api/v1")
