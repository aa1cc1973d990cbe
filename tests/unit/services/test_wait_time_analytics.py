"""Unit tests for the wait-time analytics service."""

from datetime import timedelta

import pytest

from branchqueue.db.models import AppointmentStatus
from branchqueue.db.schemas import DateRange, ReportFilters
from branchqueue.services.wait_time_analytics import WaitTimeAnalyticsService, rank_by_average_wait
from tests.utils.test_data import DataFactory


@pytest.fixture
def filters(clock) -> ReportFilters:
    today = clock.now().date()
    return ReportFilters(date_range=DateRange.for_days(today, today))


@pytest.fixture
def analytics(temp_db) -> WaitTimeAnalyticsService:
    return WaitTimeAnalyticsService(temp_db)


def visit(db, branch, service, queued_at, wait, service_time, service_point=None):
    return DataFactory.create_served_visit(
        db, branch, service, queued_at, wait=wait, service_time=service_time, service_point=service_point
    )


@pytest.mark.unit
class TestWaitTimesByBranch:
    """Grouping by branch."""

    def test_worked_example(self, temp_db, analytics, filters, branch, service, clock):
        start = clock.now()
        visit(temp_db, branch, service, start, timedelta(minutes=5), timedelta(minutes=10))
        visit(temp_db, branch, service, start + timedelta(minutes=1), timedelta(minutes=10), timedelta(minutes=20))
        visit(temp_db, branch, service, start + timedelta(minutes=2), timedelta(seconds=20), timedelta(minutes=5))

        [report] = analytics.get_wait_times_by_branch(filters)

        assert report.branch_name == "Downtown"
        assert report.wait_time.model_dump() == {"average": 5, "median": 5, "minimum": 0, "maximum": 10, "count": 3}
        assert report.service_time.model_dump() == {"average": 12, "median": 10, "minimum": 5, "maximum": 20, "count": 3}
        assert report.total_processed == 3

    def test_invalid_samples_are_excluded(self, temp_db, analytics, filters, branch, service, clock):
        start = clock.now()
        visit(temp_db, branch, service, start, timedelta(minutes=4), timedelta(minutes=6))
        # Called at the moment of creation
        visit(temp_db, branch, service, start, timedelta(0), timedelta(minutes=6))
        # Service longer than eight hours
        visit(temp_db, branch, service, start, timedelta(minutes=2), timedelta(hours=9))

        [report] = analytics.get_wait_times_by_branch(filters)

        assert report.wait_time.count == 1
        assert report.wait_time.average == 4
        assert report.total_processed == 1

    def test_group_with_only_invalid_samples_reports_zero(
        self, temp_db, analytics, filters, branch, other_branch, service, clock
    ):
        visit(temp_db, branch, service, clock.now(), timedelta(minutes=3), timedelta(minutes=3))
        visit(temp_db, other_branch, service, clock.now(), timedelta(0), timedelta(minutes=3))

        reports = analytics.get_wait_times_by_branch(filters)

        assert [report.branch_name for report in reports] == ["Downtown", "Uptown"]
        assert reports[1].wait_time.count == 0
        assert reports[1].wait_time.average == 0
        assert reports[1].total_processed == 0

    def test_entries_not_yet_served_are_ignored(self, temp_db, analytics, filters, branch, service, clock):
        appointment = DataFactory.create_appointment(
            temp_db, branch, service, scheduled_at=clock.now(), status=AppointmentStatus.CHECKED_IN
        )
        DataFactory.create_queue_entry(
            temp_db, appointment, created_at=clock.now(), called_at=clock.now() + timedelta(minutes=5)
        )

        assert analytics.get_wait_times_by_branch(filters) == []

    def test_date_range_and_branch_filters(self, temp_db, analytics, branch, other_branch, service, clock):
        visit(temp_db, branch, service, clock.now(), timedelta(minutes=3), timedelta(minutes=3))
        visit(temp_db, branch, service, clock.now() - timedelta(days=2), timedelta(minutes=30), timedelta(minutes=3))
        visit(temp_db, other_branch, service, clock.now(), timedelta(minutes=8), timedelta(minutes=3))

        today = clock.now().date()
        filters = ReportFilters(date_range=DateRange.for_days(today, today), branch_id=branch.id)
        [report] = analytics.get_wait_times_by_branch(filters)

        assert report.branch_id == branch.id
        assert report.wait_time.count == 1
        assert report.wait_time.average == 3


@pytest.mark.unit
class TestWaitTimesByServiceAndPoint:
    """Grouping by service and by service point."""

    def test_by_service_is_keyed_by_branch_too(
        self, temp_db, analytics, filters, branch, other_branch, service, other_service, clock
    ):
        visit(temp_db, branch, service, clock.now(), timedelta(minutes=2), timedelta(minutes=5))
        visit(temp_db, other_branch, service, clock.now(), timedelta(minutes=6), timedelta(minutes=5))
        visit(temp_db, branch, other_service, clock.now(), timedelta(minutes=10), timedelta(minutes=5))

        reports = analytics.get_wait_times_by_service(filters)

        assert [(r.service_name, r.branch_name) for r in reports] == [
            ("Deposits", "Downtown"),
            ("Deposits", "Uptown"),
            ("Loans", "Downtown"),
        ]
        assert [r.wait_time.average for r in reports] == [2, 6, 10]

    def test_by_service_point_skips_unassigned_entries(
        self, temp_db, analytics, filters, branch, service, service_point, clock
    ):
        visit(temp_db, branch, service, clock.now(), timedelta(minutes=2), timedelta(minutes=5), service_point)
        visit(temp_db, branch, service, clock.now(), timedelta(minutes=9), timedelta(minutes=5))

        [report] = analytics.get_wait_times_by_service_point(filters)

        assert report.service_point_name == "Window 1"
        assert report.branch_name == "Downtown"
        assert report.wait_time.count == 1
        assert report.wait_time.average == 2


@pytest.mark.unit
class TestWaitTimesSummary:
    """Summary report."""

    def test_summary(self, temp_db, analytics, filters, branch, other_branch, service, other_service, clock):
        now = clock.now()
        visit(temp_db, branch, service, now, timedelta(minutes=4), timedelta(minutes=10))
        visit(temp_db, branch, other_service, now, timedelta(minutes=20), timedelta(minutes=10))
        visit(temp_db, other_branch, service, now, timedelta(minutes=2), timedelta(minutes=4))
        # Rejected sample still counts as a completed queue
        visit(temp_db, other_branch, service, now, timedelta(0), timedelta(minutes=4))
        waiting = DataFactory.create_appointment(
            temp_db, branch, service, scheduled_at=now, status=AppointmentStatus.CHECKED_IN
        )
        DataFactory.create_queue_entry(temp_db, waiting, created_at=now)

        summary = analytics.get_wait_times_summary(filters)

        assert summary.total_queues == 5
        assert summary.completed_queues == 4
        assert summary.avg_wait_time == 9
        assert summary.avg_service_time == 8
        assert [(r.name, r.avg_wait_time, r.total_processed) for r in summary.top_branches] == [
            ("Uptown", 2, 1),
            ("Downtown", 12, 2),
        ]
        assert [r.name for r in summary.top_services] == ["Deposits", "Loans"]
        assert [b.count for b in summary.time_distribution] == [2, 0, 1, 0, 0]

    def test_empty_summary(self, analytics, filters):
        summary = analytics.get_wait_times_summary(filters)

        assert summary.total_queues == 0
        assert summary.completed_queues == 0
        assert summary.avg_wait_time == 0
        assert summary.top_branches == []
        assert all(bucket.percentage == 0 for bucket in summary.time_distribution)

    def test_ranking_keeps_five_fastest(self):
        waits = {f"Branch {i}": [i] for i in range(7, 0, -1)}

        ranking = rank_by_average_wait(waits)

        assert [entry.name for entry in ranking] == [f"Branch {i}" for i in range(1, 6)]
