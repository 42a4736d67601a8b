"""
SkyIntel Predictive API v1.0.0

A FastAPI application serving short-horizon trajectory predictions,
proximity analysis and position context for ADS-B tracked aircraft.
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from skyintel.core import get_settings, init_db, close_db, clear_cache
from skyintel.core.database import AsyncSessionLocal
from skyintel.core.errors import SkyIntelError
from skyintel.routers import context, predictions, cron
from skyintel.services.cycle import run_prediction_cycle
from skyintel.services.engines import build_proximity_analyzer
from skyintel.services.context import ContextIntelligence
from skyintel.services.storage import SqlStorage

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)
settings = get_settings()

VERSION = "1.0.0"

# Background task handle
_background_task: Optional[asyncio.Task] = None


async def background_polling_task():
    """Run the prediction cycle on a fixed interval."""
    logger.info(f"Background polling started (interval: {settings.polling_interval}s)")
    storage = SqlStorage(AsyncSessionLocal)
    context_intel = ContextIntelligence(AsyncSessionLocal)

    while True:
        try:
            await run_prediction_cycle(
                storage, analyzer=build_proximity_analyzer(storage, context_intel)
            )
        except Exception as e:
            logger.error(f"Error in background polling: {e}")

        await asyncio.sleep(settings.polling_interval)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global _background_task

    logger.info(f"Starting SkyIntel Predictive API v{VERSION}")

    await init_db()
    logger.info("Database initialized")

    clear_cache()

    if settings.polling_enabled:
        _background_task = asyncio.create_task(background_polling_task())

    yield

    logger.info("Shutting down...")

    if _background_task:
        _background_task.cancel()
        try:
            await _background_task
        except asyncio.CancelledError:
            pass

    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI application
app = FastAPI(
    title="SkyIntel Predictive API",
    version=VERSION,
    description="""
## Overview
REST API for predictive analysis of ADS-B aircraft tracks.

## Features
- **Trajectory Prediction**: Positions at fixed horizons (60s, 5min, 15min by default)
  using straight great-circle or coordinated-turn extrapolation
- **Accuracy Tracking**: Each prediction is reconciled against the observation
  that arrives near its target time
- **Proximity Analysis**: Pairwise separation and closure rate with
  CRITICAL / WARNING / ADVISORY classification
- **Position Context**: Nearby infrastructure and strike reports

## Responses
Every endpoint answers `{success, data?, error?}`.

## Authentication
Only the periodic trigger under `/api/v1/cron` is authenticated.
    """,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_tags=[
        {
            "name": "Predictions",
            "description": "Trajectory predictions, proximity events and statistics"
        },
        {
            "name": "Context",
            "description": "Infrastructure and strike context for positions"
        },
        {
            "name": "Cron",
            "description": "Periodic prediction cycle trigger"
        },
        {
            "name": "System",
            "description": "Health checks"
        },
    ]
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SkyIntelError)
async def skyintel_error_handler(request: Request, exc: SkyIntelError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message},
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query"))
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": f"{location}: {message}" if location else message},
    )


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


# Include routers
app.include_router(predictions.router)
app.include_router(context.router)
app.include_router(cron.router)


@app.get("/health", tags=["System"], summary="Health Check")
async def health():
    """Report API and database status."""
    database = "ok"
    try:
        async with AsyncSessionLocal() as db:
            await db.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.warning(f"Health check database error: {e}")
        database = "unavailable"

    return {
        "success": True,
        "data": {
            "status": "healthy" if database == "ok" else "degraded",
            "version": VERSION,
            "database": database,
        },
    }


@app.get("/")
async def root():
    return JSONResponse({"message": f"SkyIntel Predictive API v{VERSION}", "docs": "/docs"})


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "skyintel.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=True
    )
