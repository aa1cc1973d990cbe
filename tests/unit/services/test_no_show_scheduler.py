"""Unit tests for the no-show scheduler."""

import threading
import time
from datetime import timedelta
from unittest.mock import patch

import pytest

from branchqueue.core.exceptions import ConfigurationError, PersistenceError
from branchqueue.db.models import Appointment, AppointmentStatus
from branchqueue.db.repository import AppointmentRepository
from branchqueue.db.schemas import NoShowSchedulerConfig
from branchqueue.services.lifecycle import AppointmentLifecycle
from tests.utils.test_data import DataFactory


def wait_until(condition, timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if condition():
            return True
        time.sleep(0.01)
    return False


@pytest.fixture
def overdue(temp_db, branch, service, clock):
    """Factory for scheduled appointments that started the given minutes ago."""
    def make(minutes_ago: int = 60) -> Appointment:
        return DataFactory.create_appointment(
            temp_db, branch, service, scheduled_at=clock.now() - timedelta(minutes=minutes_ago)
        )
    return make


@pytest.mark.unit
class TestNoShowTick:
    """A single scheduler run."""

    def test_grace_window_boundary(self, temp_db, scheduler, overdue, clock):
        appointment = overdue(minutes_ago=0)
        scheduled_at = appointment.scheduled_at

        clock.set(scheduled_at + timedelta(minutes=14))
        result = scheduler.execute_manually()
        assert result.marked == 0
        assert appointment.status == AppointmentStatus.SCHEDULED

        clock.set(scheduled_at + timedelta(minutes=16))
        result = scheduler.execute_manually()
        assert result.marked == 1

        temp_db.refresh(appointment)
        assert appointment.status == AppointmentStatus.NO_SHOW
        assert appointment.auto_marked_as_no_show is True
        assert appointment.no_show_marked_at == clock.now()

    def test_rescan_is_a_no_op(self, temp_db, scheduler, overdue, clock):
        appointment = overdue()
        scheduler.execute_manually()
        marked_at = appointment.no_show_marked_at

        clock.advance(minutes=5)
        result = scheduler.execute_manually()

        assert result.found == 0
        assert result.marked == 0
        temp_db.refresh(appointment)
        assert appointment.no_show_marked_at == marked_at
        assert scheduler.get_stats().total_marked_as_no_show == 1

    def test_only_scheduled_rows_are_selected(self, temp_db, scheduler, branch, service, clock):
        past = clock.now() - timedelta(hours=1)
        for status in (AppointmentStatus.CHECKED_IN, AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED):
            DataFactory.create_appointment(temp_db, branch, service, scheduled_at=past, status=status)
        DataFactory.create_appointment(temp_db, branch, service, scheduled_at=clock.now() + timedelta(hours=1))

        result = scheduler.execute_manually()

        assert result.found == 0
        assert result.marked == 0

    def test_superseded_rows_are_not_scanned(self, temp_db, scheduler, branch, service, clock):
        appointment = DataFactory.create_appointment(
            temp_db, branch, service, scheduled_at=clock.now() + timedelta(minutes=30)
        )
        replacement = AppointmentLifecycle(temp_db, clock=clock).reschedule(
            appointment, clock.now() + timedelta(days=1), actor_id=1
        )

        clock.advance(hours=2)
        result = scheduler.execute_manually()

        assert result.found == 0
        temp_db.refresh(appointment)
        temp_db.refresh(replacement)
        assert appointment.status == AppointmentStatus.SCHEDULED
        assert replacement.status == AppointmentStatus.SCHEDULED

    def test_processes_rows_in_selection_order(self, scheduler, overdue):
        first = overdue(90)
        second = overdue(60)
        seen = []

        def record(appointment, auto):
            seen.append(appointment.id)
            return True

        with patch.object(AppointmentLifecycle, "mark_no_show", side_effect=record):
            scheduler.execute_manually()

        assert seen == [first.id, second.id]

    def test_row_failure_does_not_abort_batch(self, scheduler, overdue):
        overdue(90)
        overdue(60)

        with patch.object(
            AppointmentLifecycle,
            "mark_no_show",
            side_effect=[PersistenceError("Failed to mark appointment as no-show"), True],
        ):
            result = scheduler.execute_manually()

        assert result.found == 2
        assert result.marked == 1
        assert result.errors == 1

        stats = scheduler.get_stats()
        assert stats.total_marked_as_no_show == 1
        assert stats.total_errors == 1

    def test_selection_failure_aborts_tick(self, scheduler, overdue):
        overdue()

        with patch.object(
            AppointmentRepository,
            "find_scheduled_before",
            side_effect=PersistenceError("Failed to select overdue appointments"),
        ):
            result = scheduler.execute_manually()

        assert result.skipped is False
        assert result.found == 0
        assert result.errors == 1

        stats = scheduler.get_stats()
        assert stats.total_errors == 1
        assert stats.last_run is None
        assert stats.is_processing is False

        # The guard was released: the next run works normally
        assert scheduler.execute_manually().marked == 1

    def test_overlapping_run_is_skipped(self, scheduler, overdue):
        overdue()
        entered = threading.Event()
        release = threading.Event()

        def slow_select(cutoff):
            entered.set()
            release.wait(5)
            return []

        with patch.object(AppointmentRepository, "find_scheduled_before", side_effect=slow_select) as select:
            worker = threading.Thread(target=scheduler.execute_manually)
            worker.start()
            try:
                assert entered.wait(5)
                assert scheduler.get_stats().is_processing is True

                result = scheduler.execute_manually()
            finally:
                release.set()
                worker.join(5)

        assert result.skipped is True
        assert result.found == 0
        assert select.call_count == 1

    def test_stats_after_run(self, scheduler, overdue, clock):
        overdue()
        scheduler.execute_manually()

        stats = scheduler.get_stats()
        assert stats.last_run == clock.now()
        assert stats.next_run is None
        assert stats.is_running is False
        assert stats.average_execution_time_ms >= 0

    def test_reset_stats(self, scheduler, overdue):
        overdue()
        scheduler.execute_manually()

        scheduler.reset_stats()

        stats = scheduler.get_stats()
        assert stats.total_marked_as_no_show == 0
        assert stats.total_errors == 0
        assert stats.last_run is None
        assert stats.average_execution_time_ms == 0


@pytest.mark.unit
class TestNoShowConfig:
    """Configuration updates."""

    def test_partial_update(self, scheduler):
        config = scheduler.update_config({"grace_time_minutes": 30})

        assert config.grace_time_minutes == 30
        assert config.interval_minutes == 5
        assert config.enabled is True

    @pytest.mark.parametrize(
        "changes",
        [
            {"interval_minutes": 0},
            {"interval_minutes": -5},
            {"grace_time_minutes": -1},
            {"unknown_setting": 3},
        ],
    )
    def test_invalid_update_keeps_previous_config(self, scheduler, changes):
        before = scheduler.get_config()

        with pytest.raises(ConfigurationError):
            scheduler.update_config(changes)

        assert scheduler.get_config() == before

    def test_new_grace_time_applies_to_next_run(self, scheduler, overdue):
        overdue(minutes_ago=10)
        assert scheduler.execute_manually().marked == 0

        scheduler.update_config({"grace_time_minutes": 5})

        assert scheduler.execute_manually().marked == 1


@pytest.mark.unit
class TestNoShowTimer:
    """Background thread behaviour."""

    def test_disabled_scheduler_does_not_start(self, scheduler):
        scheduler.update_config({"enabled": False})

        assert scheduler.start() is False
        assert scheduler.get_stats().is_running is False

    def test_start_runs_first_tick_immediately(self, temp_db, scheduler, overdue, clock):
        appointment = overdue()

        assert scheduler.start() is True
        assert scheduler.start() is False
        assert wait_until(lambda: scheduler.get_stats().next_run is not None)

        stats = scheduler.get_stats()
        assert stats.is_running is True
        assert stats.next_run == clock.now() + timedelta(minutes=5)

        scheduler.stop()
        assert scheduler.get_stats().is_running is False
        assert scheduler.get_stats().next_run is None

        temp_db.refresh(appointment)
        assert appointment.status == AppointmentStatus.NO_SHOW

    def test_config_update_restarts_running_timer(self, scheduler):
        scheduler.start()
        assert wait_until(lambda: scheduler.get_stats().last_run is not None)

        scheduler.update_config({"interval_minutes": 10})

        assert scheduler.get_stats().is_running is True
        assert scheduler.get_config() == NoShowSchedulerConfig(interval_minutes=10, grace_time_minutes=15)

    def test_disabling_stops_running_timer(self, scheduler):
        scheduler.start()
        scheduler.update_config({"enabled": False})

        assert scheduler.get_stats().is_running is False
