"""API v1 router configuration."""

from fastapi import APIRouter

from .appointments import router as appointments_router
from .queue import router as queue_router
from .reports import router as reports_router
from .scheduler import router as scheduler_router

# Create the main API router
api_router = APIRouter()


# Health check endpoint
@api_router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {"status": "ok", "message": "Branch Queue Service is running"}


# Include routers
api_router.include_router(appointments_router, tags=["appointments"])
api_router.include_router(queue_router, tags=["queue"])
api_router.include_router(reports_router, tags=["reports"])
api_router.include_router(scheduler_router, tags=["scheduler"])
