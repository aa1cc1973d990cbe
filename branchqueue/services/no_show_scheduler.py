"""Recurring job that marks overdue scheduled appointments as no-show."""

import threading
import time
from collections import deque
from collections.abc import Callable
from contextlib import AbstractContextManager
from datetime import datetime, timedelta
from typing import Any, Optional, Union

from pydantic import ValidationError
from sqlalchemy.orm import Session

from branchqueue.core.clock import Clock, system_clock
from branchqueue.core.config import settings
from branchqueue.core.exceptions import ConfigurationError
from branchqueue.core.logging import get_logger
from branchqueue.db.base import SessionLocal
from branchqueue.db.schemas import (
    NoShowRunResult,
    NoShowSchedulerConfig,
    NoShowSchedulerConfigUpdate,
    NoShowSchedulerStats,
)
from branchqueue.observability.metrics import (
    NO_SHOW_ERRORS,
    NO_SHOW_MARKED,
    NO_SHOW_SKIPPED,
    NO_SHOW_TICK_DURATION,
)
from branchqueue.services.lifecycle import AppointmentLifecycle

logger = get_logger(__name__)

SessionScope = Callable[[], AbstractContextManager[Session]]

EXECUTION_TIME_WINDOW = 10


class NoShowScheduler:
    """
    Marks scheduled appointments as no-show once their grace time has passed.

    A daemon thread runs one tick immediately and then one every
    interval_minutes. Ticks never overlap: the timer and execute_manually()
    share a non-blocking lock and a tick that cannot take it is skipped.
    Each tick opens its own session through session_scope.
    """

    def __init__(
        self,
        session_scope: SessionScope,
        config: Optional[NoShowSchedulerConfig] = None,
        clock: Clock = system_clock,
    ):
        self.session_scope = session_scope
        self.config = config or NoShowSchedulerConfig()
        self.clock = clock

        self._tick_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        self._execution_times: deque[float] = deque(maxlen=EXECUTION_TIME_WINDOW)
        self.last_run: Optional[datetime] = None
        self.next_run: Optional[datetime] = None
        self.total_marked_as_no_show = 0
        self.total_errors = 0

    @classmethod
    def from_settings(cls, session_scope: SessionScope = SessionLocal, clock: Clock = system_clock) -> "NoShowScheduler":
        """Build a scheduler configured from environment settings."""
        config = NoShowSchedulerConfig(
            interval_minutes=settings.no_show_interval_minutes,
            grace_time_minutes=settings.no_show_grace_time_minutes,
            enabled=True,
        )
        return cls(session_scope, config=config, clock=clock)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def is_processing(self) -> bool:
        return self._tick_lock.locked()

    def start(self) -> bool:
        """
        Start the timer thread.

        Returns:
            bool: False if the scheduler is disabled or already running
        """
        if not self.config.enabled:
            logger.info("No-show scheduler is disabled, not starting")
            return False
        if self.is_running:
            logger.warning("No-show scheduler already running")
            return False

        self._stop_event = threading.Event()
        self._thread = threading.Thread(
            target=self._run_loop,
            args=(self._stop_event,),
            name="no-show-scheduler",
            daemon=True,
        )
        self._thread.start()

        logger.info(
            "No-show scheduler started",
            interval_minutes=self.config.interval_minutes,
            grace_time_minutes=self.config.grace_time_minutes,
        )
        return True

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        """Stop the timer thread, waiting for an in-flight tick up to timeout seconds."""
        if self._thread is None:
            return

        self._stop_event.set()
        if self._thread is not threading.current_thread():
            self._thread.join(timeout)
        self._thread = None
        self.next_run = None

        logger.info("No-show scheduler stopped")

    def _run_loop(self, stop_event: threading.Event) -> None:
        interval_seconds = self.config.interval_minutes * 60
        while True:
            self._execute_no_show_marking()
            if stop_event.wait(interval_seconds):
                break

    def execute_manually(self) -> NoShowRunResult:
        """Run one tick now, through the same path and guard as the timer."""
        logger.info("Manual no-show run requested")
        return self._execute_no_show_marking()

    def _execute_no_show_marking(self) -> NoShowRunResult:
        if not self._tick_lock.acquire(blocking=False):
            logger.warning("No-show marking already in progress, skipping run")
            NO_SHOW_SKIPPED.inc()
            return NoShowRunResult(skipped=True)

        started = time.perf_counter()
        now = self.clock.now()
        cutoff = now - timedelta(minutes=self.config.grace_time_minutes)
        result = NoShowRunResult(cutoff=cutoff)

        try:
            with self.session_scope() as db:
                lifecycle = AppointmentLifecycle(db, clock=self.clock)
                overdue = lifecycle.repository.find_scheduled_before(cutoff)
                result.found = len(overdue)

                for appointment in overdue:
                    appointment_id = appointment.id
                    try:
                        if lifecycle.mark_no_show(appointment, auto=True):
                            result.marked += 1
                    except Exception as e:
                        db.rollback()
                        result.errors += 1
                        NO_SHOW_ERRORS.labels(stage="row").inc()
                        logger.error(
                            "Failed to mark appointment as no-show",
                            appointment_id=appointment_id,
                            error=str(e),
                            error_type=type(e).__name__,
                        )

            self.last_run = now
            self.total_marked_as_no_show += result.marked
            self.total_errors += result.errors
            NO_SHOW_MARKED.inc(result.marked)

            logger.info(
                "No-show run finished",
                cutoff=cutoff.isoformat(),
                found=result.found,
                marked=result.marked,
                errors=result.errors,
            )
        except Exception as e:
            self.total_errors += 1
            result.errors += 1
            NO_SHOW_ERRORS.labels(stage="selection").inc()
            logger.error(
                "No-show run aborted",
                cutoff=cutoff.isoformat(),
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            elapsed = time.perf_counter() - started
            self._execution_times.append(elapsed * 1000)
            NO_SHOW_TICK_DURATION.observe(elapsed)
            if self.is_running:
                self.next_run = now + timedelta(minutes=self.config.interval_minutes)
            self._tick_lock.release()

        return result

    def update_config(
        self, changes: Union[NoShowSchedulerConfigUpdate, dict[str, Any]]
    ) -> NoShowSchedulerConfig:
        """
        Apply a partial configuration, restarting the timer if it was running.

        Raises:
            ConfigurationError: If the merged configuration is invalid; the
                current configuration stays active
        """
        if isinstance(changes, NoShowSchedulerConfigUpdate):
            changes = changes.model_dump(exclude_unset=True)
        changes = {key: value for key, value in changes.items() if value is not None}

        unknown = set(changes) - set(NoShowSchedulerConfig.model_fields)
        if unknown:
            raise ConfigurationError(
                f"Unknown scheduler setting: {', '.join(sorted(unknown))}",
                field=sorted(unknown)[0],
            )

        try:
            new_config = NoShowSchedulerConfig.model_validate({**self.config.model_dump(), **changes})
        except ValidationError as e:
            errors = e.errors()
            raise ConfigurationError(
                "Invalid no-show scheduler configuration",
                field=".".join(str(part) for part in errors[0]["loc"]) if errors else None,
                context={"errors": [error["msg"] for error in errors]},
            ) from e

        was_running = self.is_running
        if was_running:
            self.stop()

        self.config = new_config
        logger.info("No-show scheduler configuration updated", **new_config.model_dump())

        if was_running and new_config.enabled:
            self.start()
        return self.get_config()

    def get_config(self) -> NoShowSchedulerConfig:
        return self.config.model_copy()

    def get_stats(self) -> NoShowSchedulerStats:
        """Counters, timestamps and the rolling average execution time."""
        average = 0.0
        if self._execution_times:
            average = round(sum(self._execution_times) / len(self._execution_times), 2)

        return NoShowSchedulerStats(
            last_run=self.last_run,
            next_run=self.next_run,
            total_marked_as_no_show=self.total_marked_as_no_show,
            total_errors=self.total_errors,
            is_running=self.is_running,
            is_processing=self.is_processing,
            average_execution_time_ms=average,
        )

    def reset_stats(self) -> None:
        self.total_marked_as_no_show = 0
        self.total_errors = 0
        self.last_run = None
        self._execution_times.clear()
        logger.info("No-show scheduler statistics reset")
