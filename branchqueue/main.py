"""Main FastAPI application."""

import time
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, status
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from branchqueue.api.v1 import api_router
from branchqueue.core.config import settings
from branchqueue.core.exceptions import APIException, api_exception_handler
from branchqueue.core.logging import configure_logging, get_logger
from branchqueue.db.base import SessionLocal
from branchqueue.db.models import create_tables
from branchqueue.observability.metrics import PrometheusMiddleware, get_metrics, get_metrics_content_type
from branchqueue.services.no_show_scheduler import NoShowScheduler

# Configure logging
configure_logging()
logger = get_logger(__name__)

# Track application start time
app_start_time = time.time()


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Middleware to add request ID to requests."""

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: owns the database schema and the no-show scheduler."""
    logger.info("Starting Branch Queue Service", env=settings.env)
    create_tables()

    scheduler = NoShowScheduler.from_settings(session_scope=SessionLocal)
    app.state.no_show_scheduler = scheduler
    if settings.should_start_no_show_scheduler:
        scheduler.start()
    else:
        logger.info("No-show scheduler not started; set ENABLE_NO_SHOW_SCHEDULER to enable it")

    yield

    scheduler.stop()
    logger.info("Shutting down Branch Queue Service")


# Create FastAPI application
app = FastAPI(
    title=settings.app_name,
    version="0.1.0",
    description="Appointment lifecycle, walk-in queues, no-show detection and wait-time reports",
    lifespan=lifespan,
)

app.add_middleware(RequestIDMiddleware)

# Add Prometheus metrics middleware if enabled
if settings.prometheus_enabled:
    app.add_middleware(PrometheusMiddleware)

app.add_exception_handler(APIException, api_exception_handler)

# Include API router
app.include_router(api_router, prefix="/api/v1")


@app.get("/health")
async def health_check():
    """Health check endpoint with uptime."""
    return {
        "status": "ok",
        "uptime_seconds": round(time.time() - app_start_time, 2),
        "environment": settings.env,
    }


@app.get("/metrics")
async def metrics():
    """Prometheus metrics endpoint."""
    if not settings.prometheus_enabled:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Metrics not enabled"
        )

    return Response(content=get_metrics(), media_type=get_metrics_content_type())
