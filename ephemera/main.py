"""
Ephemera API - Main Application
FastAPI application for ephemeral object uploads with TTL-driven cleanup.
"""
from fastapi import FastAPI, Request, status
from fastapi.responses import JSONResponse, Response
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
import logging
import time
from contextlib import asynccontextmanager
from datetime import datetime, timezone

import redis
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from ephemera.core.config import settings
from ephemera.core.errors import EphemeraError
from ephemera.core.logging import setup_logging
from ephemera.api.v1 import api_router
from ephemera.db import check_db_connection
from ephemera.metrics import app_info, app_uptime_seconds
from ephemera.middleware import MetricsMiddleware
from ephemera.services.notifier import build_notifier
from ephemera.storage.client import build_storage_client

setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)

logger = logging.getLogger(__name__)

# Track application start time for uptime metric
_app_start_time = time.time()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Lifespan context manager for startup and shutdown events.

    Builds the process-wide storage client and notifier shared by all requests.
    """
    logger.info("Starting Ephemera API...")
    logger.info(f"Version: {settings.APP_VERSION}")
    logger.info(f"Environment: {settings.API_HOST}:{settings.API_PORT}")

    app_info.labels(version=settings.APP_VERSION, environment="production").set(1)

    app.state.storage = build_storage_client(settings)
    app.state.notifier = build_notifier(settings)

    try:
        app.state.storage.ensure_bucket()
    except EphemeraError as e:
        logger.error(f"Bucket check failed: {e.message}")

    if check_db_connection():
        logger.info("Database connection: OK")
    else:
        logger.error("Database connection: FAILED")

    logger.info("Application startup complete")

    yield

    logger.info("Shutting down Ephemera API...")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Direct-to-storage uploads via presigned URLs, with expiry-driven "
                "soft delete, retention, and audited hard delete.",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
)

app.add_middleware(MetricsMiddleware)


# Exception handlers
@app.exception_handler(EphemeraError)
async def ephemera_exception_handler(request: Request, exc: EphemeraError):
    """Map engine errors onto their HTTP status and stable error kind."""
    if exc.status_code >= 500:
        logger.error(f"{exc.kind} on {request.method} {request.url.path}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": exc.detail,
            "status_code": exc.status_code,
        },
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "error": "Validation error",
            "details": jsonable_errors(exc),
        },
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions."""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={
            "error": "Internal server error",
            "message": str(exc) if settings.LOG_LEVEL == "DEBUG" else "An unexpected error occurred",
        },
    )


def jsonable_errors(exc: RequestValidationError):
    """Validation error list with non-JSON values (e.g. raised ValueErrors) stringified."""
    errors = []
    for error in exc.errors():
        error = dict(error)
        if "ctx" in error:
            error["ctx"] = {k: str(v) for k, v in error["ctx"].items()}
        errors.append(error)
    return errors


# Health check endpoints
@app.get("/health", tags=["health"])
async def health_check():
    """
    Basic health check endpoint.
    Returns the API status and version.
    """
    db_status = "healthy" if check_db_connection() else "unhealthy"

    return {
        "status": "healthy",
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "database": db_status,
    }


@app.get("/health/detailed", tags=["health"])
def detailed_health_check(request: Request):
    """
    Detailed health check of all services.

    Checks connectivity of:
    - Metadata database
    - Redis (event notifications)
    - MinIO object storage

    Returns overall status (healthy/degraded) and individual service status.
    """
    health = {
        "overall": "healthy",
        "services": {},
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

    if check_db_connection():
        health["services"]["database"] = {"status": "healthy"}
    else:
        health["services"]["database"] = {"status": "unhealthy", "error": "Connection failed"}
        health["overall"] = "degraded"

    if settings.NOTIFICATIONS_ENABLED:
        try:
            r = redis.Redis.from_url(settings.REDIS_URL, socket_connect_timeout=2)
            r.ping()
            health["services"]["redis"] = {"status": "healthy"}
        except redis.RedisError as e:
            health["services"]["redis"] = {"status": "unhealthy", "error": str(e)}
            health["overall"] = "degraded"
    else:
        health["services"]["redis"] = {"status": "disabled"}

    storage = getattr(request.app.state, "storage", None)
    if storage is None:
        health["services"]["minio"] = {"status": "unavailable", "error": "Storage client not initialized"}
        health["overall"] = "degraded"
    else:
        try:
            storage.ensure_bucket()
            health["services"]["minio"] = {"status": "healthy", "bucket": storage.bucket_name}
        except EphemeraError as e:
            health["services"]["minio"] = {"status": "unhealthy", "error": e.message}
            health["overall"] = "degraded"

    return health


# Include API router
app.include_router(api_router, prefix=settings.API_V1_PREFIX)


# Prometheus metrics endpoint
@app.get("/metrics", tags=["monitoring"])
async def metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    This endpoint is excluded from metrics collection to avoid feedback loops.
    """
    app_uptime_seconds.set(time.time() - _app_start_time)

    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# Root endpoint
@app.get("/", tags=["root"])
async def root():
    """
    Root endpoint.
    Provides basic API information.
    """
    return {
        "message": "Welcome to Ephemera API",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "health": "/health",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "ephemera.main:app",
        host=settings.API_HOST,
        port=settings.API_PORT,
        reload=True,
        log_level=settings.LOG_LEVEL.lower(),
    )
