"""No-show scheduler control routes."""

from fastapi import APIRouter, Depends, Request

from branchqueue.db.schemas import (
    NoShowRunResult,
    NoShowSchedulerConfig,
    NoShowSchedulerConfigUpdate,
    NoShowSchedulerStats,
)
from branchqueue.services.no_show_scheduler import NoShowScheduler

router = APIRouter(prefix="/scheduler/no-show")


def get_no_show_scheduler(request: Request) -> NoShowScheduler:
    """The scheduler owned by the application lifespan."""
    return request.app.state.no_show_scheduler


@router.get("/stats", response_model=NoShowSchedulerStats)
async def get_stats(scheduler: NoShowScheduler = Depends(get_no_show_scheduler)) -> NoShowSchedulerStats:
    return scheduler.get_stats()


@router.get("/config", response_model=NoShowSchedulerConfig)
async def get_config(scheduler: NoShowScheduler = Depends(get_no_show_scheduler)) -> NoShowSchedulerConfig:
    return scheduler.get_config()


@router.put("/config", response_model=NoShowSchedulerConfig)
async def update_config(
    changes: NoShowSchedulerConfigUpdate,
    scheduler: NoShowScheduler = Depends(get_no_show_scheduler),
) -> NoShowSchedulerConfig:
    """Apply a partial configuration; an invalid one is rejected and the current one kept."""
    return scheduler.update_config(changes)


@router.post("/run", response_model=NoShowRunResult)
async def run_now(scheduler: NoShowScheduler = Depends(get_no_show_scheduler)) -> NoShowRunResult:
    """Run one tick now; skipped if a run is already in progress."""
    return scheduler.execute_manually()


@router.post("/start", response_model=NoShowSchedulerStats)
async def start(scheduler: NoShowScheduler = Depends(get_no_show_scheduler)) -> NoShowSchedulerStats:
    scheduler.start()
    return scheduler.get_stats()


@router.post("/stop", response_model=NoShowSchedulerStats)
async def stop(scheduler: NoShowScheduler = Depends(get_no_show_scheduler)) -> NoShowSchedulerStats:
    scheduler.stop()
    return scheduler.get_stats()


@router.post("/reset-stats", response_model=NoShowSchedulerStats)
async def reset_stats(scheduler: NoShowScheduler = Depends(get_no_show_scheduler)) -> NoShowSchedulerStats:
    scheduler.reset_stats()
    return scheduler.get_stats()
