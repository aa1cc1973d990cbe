"""Celery tasks for background processing."""

from branchqueue.core.logging import get_logger
from branchqueue.db.base import SessionLocal
from branchqueue.services.no_show_scheduler import NoShowScheduler
from branchqueue.workers.celery_app import celery_app

logger = get_logger(__name__)


@celery_app.task
def mark_no_shows() -> dict:
    """
    Run one no-show tick outside the API process.

    Returns:
        dict: Task result with the run counters
    """
    scheduler = NoShowScheduler.from_settings(session_scope=SessionLocal)
    result = scheduler.execute_manually()

    logger.info(
        "No-show task finished",
        skipped=result.skipped,
        found=result.found,
        marked=result.marked,
        errors=result.errors,
    )
    return {"status": "success" if result.errors == 0 else "partial", **result.model_dump(mode="json")}
