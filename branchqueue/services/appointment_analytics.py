"""Appointment outcome analytics and reporting service."""

from collections import Counter, defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy.orm import Session

from branchqueue.core.logging import get_logger, log_error
from branchqueue.db.models import AppointmentStatus, QueueStatus
from branchqueue.db.repository import AppointmentRepository
from branchqueue.db.rows import AppointmentReportRow
from branchqueue.db.schemas import (
    AppointmentByBranch,
    AppointmentByService,
    AppointmentMetrics,
    AppointmentTrend,
    DailyCount,
    DemandTrend,
    HourlyDistribution,
    QueueMetrics,
    ReasonCount,
    ReportFilters,
    ReschedulingStats,
)
from branchqueue.services.time_metrics import percentage, round_half_up

logger = get_logger(__name__)

TOP_REASONS_SIZE = 5


@dataclass
class StatusCounts:
    """Appointments of one group counted by status."""
    total: int = 0
    scheduled: int = 0
    checked_in: int = 0
    completed: int = 0
    cancelled: int = 0
    no_show: int = 0

    _FIELDS = {
        AppointmentStatus.SCHEDULED: "scheduled",
        AppointmentStatus.CHECKED_IN: "checked_in",
        AppointmentStatus.COMPLETED: "completed",
        AppointmentStatus.CANCELLED: "cancelled",
        AppointmentStatus.NO_SHOW: "no_show",
    }

    @classmethod
    def of(cls, rows: Iterable[AppointmentReportRow]) -> "StatusCounts":
        counts = cls()
        for row in rows:
            counts.total += 1
            name = cls._FIELDS[row.status]
            setattr(counts, name, getattr(counts, name) + 1)
        return counts

    @property
    def attendance_rate(self) -> float:
        return percentage(self.completed + self.checked_in, self.total)

    @property
    def completion_rate(self) -> float:
        return percentage(self.completed, self.total)

    @property
    def no_show_rate(self) -> float:
        return percentage(self.no_show, self.total)


def demand_trend_from_rank(index: int, total: int) -> DemandTrend:
    """
    Label a service by its position in a popularity-sorted list.

    This is a rank heuristic, not a time-series trend: the top third of the
    list is "increasing", the bottom third "decreasing", the rest "stable".
    """
    if index < total / 3:
        return DemandTrend.INCREASING
    if index > total * 2 / 3:
        return DemandTrend.DECREASING
    return DemandTrend.STABLE


def _mean(values: list[float]) -> float:
    if not values:
        return 0.0
    return round_half_up(sum(values) / len(values), 2)


def _minutes(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60


class AppointmentAnalyticsService:
    """Service for appointment outcome analytics and reporting."""

    def __init__(self, db: Session):
        self.db = db
        self.repository = AppointmentRepository(db)

    def get_appointments_summary(self, filters: ReportFilters) -> AppointmentMetrics:
        """
        Outcome counts and rates for appointments scheduled in the window.

        The rescheduled count is independent of the status counts: it is the
        number of replacement appointments created during the window.

        Args:
            filters: Date range and optional branch, service and service point

        Returns:
            AppointmentMetrics: Counts and percentage rates, all 0 for an empty window
        """
        try:
            counts = StatusCounts.of(self.repository.find_appointments_in_range(filters))
            rescheduled = len(self.repository.find_reschedules_in_range(filters))

            metrics = AppointmentMetrics(
                total_appointments=counts.total,
                scheduled_appointments=counts.scheduled,
                checked_in_appointments=counts.checked_in,
                completed_appointments=counts.completed,
                cancelled_appointments=counts.cancelled,
                no_show_appointments=counts.no_show,
                rescheduled_appointments=rescheduled,
                attendance_rate=counts.attendance_rate,
                completion_rate=counts.completion_rate,
                no_show_rate=counts.no_show_rate,
            )

            logger.info("Generated appointment summary", total=counts.total, rescheduled=rescheduled)
            return metrics

        except Exception as e:
            log_error(logger, e, context={"report": "appointments_summary"})
            raise

    def get_appointments_by_branch(self, filters: ReportFilters) -> list[AppointmentByBranch]:
        """Per-branch outcomes, busiest branch first."""
        rows = self.repository.find_appointments_in_range(filters)
        rescheduled = Counter(row.branch_id for row in self.repository.find_reschedules_in_range(filters))
        days = filters.date_range.days

        by_branch: dict[int, list[AppointmentReportRow]] = defaultdict(list)
        for row in rows:
            by_branch[row.branch_id].append(row)

        results = []
        for branch_id, branch_rows in by_branch.items():
            counts = StatusCounts.of(branch_rows)
            results.append(
                AppointmentByBranch(
                    branch_id=branch_id,
                    branch_name=branch_rows[0].branch_name,
                    total_appointments=counts.total,
                    completed_appointments=counts.completed,
                    cancelled_appointments=counts.cancelled,
                    no_show_appointments=counts.no_show,
                    rescheduled_appointments=rescheduled[branch_id],
                    attendance_rate=counts.attendance_rate,
                    completion_rate=counts.completion_rate,
                    no_show_rate=counts.no_show_rate,
                    average_appointments_per_day=round_half_up(counts.total / days, 2),
                )
            )

        results.sort(key=lambda result: (-result.total_appointments, result.branch_name))
        return results

    def get_appointments_by_service(self, filters: ReportFilters) -> list[AppointmentByService]:
        """Per-service outcomes ranked by popularity, with the rank-based demand label."""
        by_service: dict[int, list[AppointmentReportRow]] = defaultdict(list)
        for row in self.repository.find_appointments_in_range(filters):
            by_service[row.service_id].append(row)

        ranked = sorted(
            by_service.values(),
            key=lambda service_rows: (-len(service_rows), service_rows[0].service_name),
        )

        results = []
        for index, service_rows in enumerate(ranked):
            completion_minutes = [
                _minutes(row.scheduled_at, row.attended_at)
                for row in service_rows
                if row.attended_at is not None
            ]
            results.append(
                AppointmentByService(
                    service_id=service_rows[0].service_id,
                    service_name=service_rows[0].service_name,
                    total_appointments=len(service_rows),
                    completed_appointments=sum(
                        1 for row in service_rows if row.status == AppointmentStatus.COMPLETED
                    ),
                    average_completion_time=_mean(completion_minutes),
                    popularity_rank=index + 1,
                    demand_trend=demand_trend_from_rank(index, len(ranked)),
                )
            )
        return results

    def get_queue_statistics(self, filters: ReportFilters) -> QueueMetrics:
        """Queue entries created in the window by status, with averages over completed ones."""
        rows = self.repository.find_queue_status_rows(filters)
        by_status = Counter(row.status for row in rows)

        completed = [row for row in rows if row.status == QueueStatus.COMPLETE]
        wait_minutes = [
            _minutes(row.created_at, row.called_at) for row in completed if row.called_at is not None
        ]
        service_minutes = [
            _minutes(row.called_at, row.completed_at)
            for row in completed
            if row.called_at is not None and row.completed_at is not None
        ]

        return QueueMetrics(
            total_queues=len(rows),
            waiting_queues=by_status[QueueStatus.WAITING],
            serving_queues=by_status[QueueStatus.SERVING],
            completed_queues=by_status[QueueStatus.COMPLETE],
            average_wait_time=_mean(wait_minutes),
            average_service_time=_mean(service_minutes),
            queue_efficiency=percentage(by_status[QueueStatus.COMPLETE], len(rows)),
        )

    def get_rescheduling_stats(self, filters: ReportFilters) -> ReschedulingStats:
        """
        Reschedules performed during the window.

        The rate is relative to the appointments scheduled in the window.
        Notice is how many days ahead of the previous slot the reschedule
        happened.
        """
        reschedules = self.repository.find_reschedules_in_range(filters)
        total_appointments = len(self.repository.find_appointments_in_range(filters))
        total = len(reschedules)

        reasons = Counter(row.reason for row in reschedules if row.reason)
        most_common = [
            ReasonCount(reason=reason, count=count, percentage=percentage(count, total))
            for reason, count in reasons.most_common(TOP_REASONS_SIZE)
        ]

        per_day = Counter(row.created_at.date() for row in reschedules)
        trends = [DailyCount(date=day, count=per_day[day]) for day in sorted(per_day)]

        notice_days = [
            (row.previous_scheduled_at - row.created_at).total_seconds() / 86400
            for row in reschedules
        ]

        return ReschedulingStats(
            total_rescheduled=total,
            rescheduling_rate=percentage(total, total_appointments),
            average_notice_days=_mean(notice_days),
            most_common_reasons=most_common,
            rescheduling_trends=trends,
        )

    def get_hourly_distribution(self, filters: ReportFilters) -> list[HourlyDistribution]:
        """Appointments per hour of the scheduled time, for hours that have any."""
        by_hour: dict[int, list[AppointmentReportRow]] = defaultdict(list)
        for row in self.repository.find_appointments_in_range(filters):
            by_hour[row.scheduled_at.hour].append(row)

        results = []
        for hour in sorted(by_hour):
            hour_rows = by_hour[hour]
            counts = StatusCounts.of(hour_rows)
            waits = [_minutes(row.scheduled_at, row.attended_at) for row in hour_rows if row.attended_at is not None]
            results.append(
                HourlyDistribution(
                    hour=hour,
                    appointment_count=counts.total,
                    completion_rate=counts.completion_rate,
                    average_wait_time=_mean(waits),
                )
            )
        return results

    def get_appointment_trends(self, filters: ReportFilters) -> list[AppointmentTrend]:
        """Daily outcome counts over the window."""
        by_day: dict[date, list[AppointmentReportRow]] = defaultdict(list)
        for row in self.repository.find_appointments_in_range(filters):
            by_day[row.scheduled_at.date()].append(row)

        trends = []
        for day in sorted(by_day):
            counts = StatusCounts.of(by_day[day])
            trends.append(
                AppointmentTrend(
                    date=day,
                    total_appointments=counts.total,
                    completed_appointments=counts.completed,
                    cancelled_appointments=counts.cancelled,
                    no_show_appointments=counts.no_show,
                    attendance_rate=counts.attendance_rate,
                )
            )
        return trends
