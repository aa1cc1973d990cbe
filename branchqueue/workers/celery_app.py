"""Celery application configuration."""

from celery import Celery

from branchqueue.core.config import settings

celery_app = Celery(
    "branchqueue",
    broker=settings.celery_broker_url,
    backend=settings.celery_result_backend,
    include=["branchqueue.workers.tasks"]
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=10 * 60,
    task_soft_time_limit=8 * 60,
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat-driven marking for deployments that run several API processes; the
# conditional no-show update keeps concurrent runs from double-marking.
if settings.celery_beat_no_show:
    celery_app.conf.beat_schedule = {
        "mark-no-shows": {
            "task": "branchqueue.workers.tasks.mark_no_shows",
            "schedule": settings.no_show_interval_minutes * 60.0,
        },
    }

if __name__ == "__main__":
    celery_app.start()
