"""
ProShot Processing Pipeline - Main Application

FastAPI application with:
- API versioning (/api/v1/)
- Storage event intake feeding the Celery pipeline
- Structured logging with structlog
- Prometheus metrics
- Global exception handling
"""

import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
import redis.asyncio as redis
from sqlalchemy import text

from proshot.core.config import settings
from proshot.core.database import create_db_and_tables, engine
from proshot.core.logging import setup_logging, get_logger
from proshot.core.exceptions import register_exception_handlers
from proshot.core.metrics import set_app_info, http_requests_total, http_request_duration_seconds
from proshot.api.v1 import api_v1_router


# =============================================================================
# Initialize Logging
# =============================================================================
setup_logging(
    log_level=settings.LOG_LEVEL,
    json_format=settings.LOG_FORMAT_JSON
)
logger = get_logger(__name__)


# =============================================================================
# Lifespan Handler
# =============================================================================
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler - startup and shutdown."""
    logger.info(
        "application_starting",
        app_name=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )

    await create_db_and_tables()
    logger.info("database_initialized")

    app.state.redis = redis.from_url(
        settings.REDIS_URL,
        encoding="utf-8",
        decode_responses=True
    )

    set_app_info(
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT
    )
    logger.info("application_ready")

    yield

    logger.info("application_shutting_down")
    await app.state.redis.aclose()
    await engine.dispose()
    logger.info("application_shutdown_complete")


# =============================================================================
# Create FastAPI Application
# =============================================================================
app = FastAPI(
    title=settings.APP_NAME,
    description="""
    Event-triggered product photo pipeline.

    Storage-finalize notifications posted to `/api/v1/events/storage` are
    queued and processed by Celery workers: the upload's Project Record is
    resolved, a synthesis strategy produces the studio image, the result is
    published and the record moves to `completed` or `error`.
    """,
    version=settings.APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)


# =============================================================================
# Middleware
# =============================================================================

@app.middleware("http")
async def add_request_timing(request: Request, call_next):
    """Track request timing for metrics."""
    start_time = time.time()
    response = await call_next(request)
    duration = time.time() - start_time

    http_request_duration_seconds.labels(
        method=request.method,
        endpoint=request.url.path
    ).observe(duration)

    http_requests_total.labels(
        method=request.method,
        endpoint=request.url.path,
        status=response.status_code
    ).inc()

    response.headers["X-Process-Time"] = str(duration)
    return response


# =============================================================================
# Register Exception Handlers
# =============================================================================
register_exception_handlers(app)


# =============================================================================
# Include API Routers
# =============================================================================
app.include_router(api_v1_router)


# =============================================================================
# Static Files
# =============================================================================

# Serves LocalStorage objects at PUBLIC_BASE_URL
if settings.STORAGE_BACKEND.lower() == "local":
    app.mount("/static/storage", StaticFiles(directory=settings.LOCAL_STORAGE_PATH), name="storage")


# =============================================================================
# Root Endpoints
# =============================================================================

@app.get("/", tags=["root"])
async def root():
    """Root endpoint with API information."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "docs": "/api/docs",
        "api_v1": "/api/v1",
        "metrics": "/api/v1/metrics"
    }


@app.get("/health", tags=["health"])
async def health():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "version": settings.APP_VERSION
    }


@app.get("/ready", tags=["health"])
async def ready(request: Request):
    """Readiness check - verifies the broker and database are reachable."""
    checks = {
        "redis": False,
        "database": False
    }

    try:
        await request.app.state.redis.ping()
        checks["redis"] = True
    except Exception as e:
        logger.warning("readiness_check_failed", dependency="redis", error=str(e))

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.warning("readiness_check_failed", dependency="database", error=str(e))

    all_ready = all(checks.values())

    return JSONResponse(
        status_code=200 if all_ready else 503,
        content={
            "ready": all_ready,
            "checks": checks
        }
    )


# =============================================================================
# Development Server
# =============================================================================
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "proshot.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
        log_level="info"
    )
