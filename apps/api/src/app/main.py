"""
e-Visit Permit API - Main Application Entry Point

This module initializes and configures the FastAPI application including:
- Logging
- Database connection
- Background job scheduler (compliance sweeps)
- CORS middleware
- API routing and request validation errors
- Health check and job debug endpoints
"""

import logging
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from app.api import api_router
from app.core.auth import get_current_supervisor
from app.core.config import settings
from app.core.database import async_session_maker, close_db, init_db
from app.core.scheduler import (
    list_registered_jobs,
    pause_job,
    resume_job,
    start_scheduler,
    stop_scheduler,
    trigger_job_manually,
)
from app.modules.permits import register_permit_jobs

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """
    Application lifespan manager.

    Handles startup and shutdown of the database connection and the
    background job scheduler.
    """
    logger.info(f"Starting e-Visit API in {settings.python_env} mode...")

    try:
        await init_db()
        logger.info("[OK] Database connected")
    except Exception as e:
        logger.error(f"[FAIL] Database connection failed: {e}")
        if settings.is_production:
            raise

    if settings.scheduler_enabled:
        try:
            register_permit_jobs()
            await start_scheduler()
            logger.info("[OK] Background scheduler started")
        except Exception as e:
            logger.error(f"[FAIL] Background scheduler failed to start: {e}")
            if settings.is_production:
                raise
    else:
        logger.info("Background scheduler disabled by configuration")

    yield

    logger.info("Shutting down e-Visit API...")
    await stop_scheduler()
    await close_db()
    logger.info("[OK] Cleanup complete")


app = FastAPI(
    title="e-Visit Permit API",
    description="Permit lifecycle, checkpoint crossings and compliance sweeps for the KRG e-Visit system",
    version="0.1.0",
    docs_url="/docs" if settings.is_development else None,
    redoc_url="/redoc" if settings.is_development else None,
    lifespan=lifespan,
)

app.include_router(api_router, prefix="/api/v1")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(_request: Request, exc: RequestValidationError):
    """Report malformed requests with the VALIDATION error code."""
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content={
            "detail": {
                "error": "VALIDATION",
                "message": "Request validation failed",
                "errors": [
                    {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
                    for error in exc.errors()
                ],
            }
        },
    )


@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """Root endpoint - API welcome message."""
    return {
        "message": "Welcome to the e-Visit Permit API",
        "status": "running",
        "environment": settings.python_env,
    }


@app.get("/health", tags=["Health"])
async def health_check() -> dict[str, str]:
    """Health check endpoint for container orchestration."""
    return {"status": "healthy"}


@app.get("/ready", tags=["Health"])
async def readiness_check() -> dict[str, str]:
    """Readiness check endpoint."""
    return {"status": "ready"}


@app.get("/debug/db", tags=["Debug"], dependencies=[Depends(get_current_supervisor)])
async def debug_db():
    """Test database connection. The failure detail goes to the log only."""
    try:
        async with async_session_maker() as session:
            result = await session.execute(text("SELECT 1"))
            return {"database": "connected", "result": result.scalar()}
    except Exception as e:
        logger.error(f"Database check failed: {e}", exc_info=True)
        return {"database": "error", "message": "Database check failed"}


# ============================================
# Background Job Debug Endpoints
# ============================================


@app.get("/debug/jobs", tags=["Debug"], dependencies=[Depends(get_current_supervisor)])
async def list_jobs():
    """List registered background jobs with next run time and pause status."""
    return {"jobs": list_registered_jobs()}


@app.post(
    "/debug/jobs/{job_id}/trigger",
    tags=["Debug"],
    dependencies=[Depends(get_current_supervisor)],
)
async def trigger_job(job_id: str):
    """
    Run a background job now, bypassing the schedule.

    Args:
        job_id: permits_sweep_expired or permits_sweep_overstays

    Raises:
        HTTPException 400: If job_id is not registered.
    """
    try:
        return await trigger_job_manually(job_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e


@app.post(
    "/debug/jobs/{job_id}/pause",
    tags=["Debug"],
    dependencies=[Depends(get_current_supervisor)],
)
async def pause_job_endpoint(job_id: str):
    """Pause a scheduled background job."""
    return {"job_id": job_id, "paused": pause_job(job_id)}


@app.post(
    "/debug/jobs/{job_id}/resume",
    tags=["Debug"],
    dependencies=[Depends(get_current_supervisor)],
)
async def resume_job_endpoint(job_id: str):
    """Resume a paused background job."""
    return {"job_id": job_id, "resumed": resume_job(job_id)}
