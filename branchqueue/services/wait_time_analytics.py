"""Wait and service time reports built from queue history."""

import time
from collections.abc import Callable, Hashable
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy.orm import Session

from branchqueue.core.exceptions import InvalidSample
from branchqueue.core.logging import get_logger
from branchqueue.db.repository import AppointmentRepository
from branchqueue.db.rows import QueueSampleRow
from branchqueue.db.schemas import (
    RankedWaitTime,
    ReportFilters,
    WaitTimeByBranch,
    WaitTimeByService,
    WaitTimeByServicePoint,
    WaitTimeSummary,
)
from branchqueue.observability.metrics import QUEUE_SAMPLES_REJECTED
from branchqueue.services.time_metrics import (
    QueueTimes,
    average_minutes,
    calculate_time_distribution,
    calculate_time_metrics,
    validate_sample,
)

logger = get_logger(__name__)

TOP_RANKING_SIZE = 5


@dataclass
class SampleGroup:
    """Valid samples collected for one grouping key."""
    row: QueueSampleRow
    wait_times: list[int] = field(default_factory=list)
    service_times: list[int] = field(default_factory=list)

    def add(self, times: QueueTimes) -> None:
        self.wait_times.append(times.wait_time)
        self.service_times.append(times.service_time)


class WaitTimeAnalyticsService:
    """Service for wait-time reporting by branch, service and service point."""

    def __init__(self, db: Session):
        self.db = db
        self.repository = AppointmentRepository(db)

    def _validated(self, row: QueueSampleRow) -> Optional[QueueTimes]:
        try:
            return validate_sample(row.created_at, row.called_at, row.completed_at)
        except InvalidSample as e:
            QUEUE_SAMPLES_REJECTED.inc()
            logger.warning("Discarding queue sample", queue_id=row.queue_id, reason=e.message, **e.context)
            return None

    def _group(
        self,
        rows: list[QueueSampleRow],
        key: Callable[[QueueSampleRow], Hashable],
    ) -> dict[Hashable, SampleGroup]:
        # A group exists as soon as one of its rows is seen, even if every
        # sample ends up rejected; it then reports zero metrics.
        groups: dict[Hashable, SampleGroup] = {}
        for row in rows:
            group = groups.setdefault(key(row), SampleGroup(row=row))
            times = self._validated(row)
            if times is not None:
                group.add(times)
        return groups

    def _log_report(self, report: str, started: float, rows: int, groups: int) -> None:
        logger.info(
            "Wait time report generated",
            report=report,
            rows=rows,
            groups=groups,
            duration_ms=round((time.perf_counter() - started) * 1000, 2),
        )

    def get_wait_times_by_branch(self, filters: ReportFilters) -> list[WaitTimeByBranch]:
        """Wait and service metrics per branch, sorted by branch name."""
        started = time.perf_counter()
        rows = self.repository.find_queue_entries_in_range(filters)
        groups = self._group(rows, lambda row: row.branch_id)

        results = [
            WaitTimeByBranch(
                branch_id=group.row.branch_id,
                branch_name=group.row.branch_name,
                wait_time=calculate_time_metrics(group.wait_times),
                service_time=calculate_time_metrics(group.service_times),
                total_processed=len(group.wait_times),
            )
            for group in groups.values()
        ]
        results.sort(key=lambda result: result.branch_name)

        self._log_report("by_branch", started, len(rows), len(results))
        return results

    def get_wait_times_by_service(self, filters: ReportFilters) -> list[WaitTimeByService]:
        """Wait and service metrics per service within each branch."""
        started = time.perf_counter()
        rows = self.repository.find_queue_entries_in_range(filters)
        groups = self._group(rows, lambda row: (row.service_id, row.branch_id))

        results = [
            WaitTimeByService(
                service_id=group.row.service_id,
                service_name=group.row.service_name,
                branch_id=group.row.branch_id,
                branch_name=group.row.branch_name,
                wait_time=calculate_time_metrics(group.wait_times),
                service_time=calculate_time_metrics(group.service_times),
                total_processed=len(group.wait_times),
            )
            for group in groups.values()
        ]
        results.sort(key=lambda result: (result.service_name, result.branch_name))

        self._log_report("by_service", started, len(rows), len(results))
        return results

    def get_wait_times_by_service_point(self, filters: ReportFilters) -> list[WaitTimeByServicePoint]:
        """Wait and service metrics per service point; entries without one are left out."""
        started = time.perf_counter()
        rows = self.repository.find_queue_entries_in_range(filters, require_service_point=True)
        groups = self._group(rows, lambda row: row.service_point_id)

        results = [
            WaitTimeByServicePoint(
                service_point_id=group.row.service_point_id,
                service_point_name=group.row.service_point_name,
                branch_id=group.row.branch_id,
                branch_name=group.row.branch_name,
                wait_time=calculate_time_metrics(group.wait_times),
                service_time=calculate_time_metrics(group.service_times),
                total_processed=len(group.wait_times),
            )
            for group in groups.values()
        ]
        results.sort(key=lambda result: result.service_point_name)

        self._log_report("by_service_point", started, len(rows), len(results))
        return results

    def get_wait_times_summary(self, filters: ReportFilters) -> WaitTimeSummary:
        """
        Overall averages, fastest branches and services, and the wait distribution.

        total_queues counts every entry created in range; completed_queues
        counts the called and completed ones, before sample validation.
        """
        started = time.perf_counter()
        total_queues = self.repository.count_queue_entries_in_range(filters)
        rows = self.repository.find_queue_entries_in_range(filters)

        wait_times: list[int] = []
        service_times: list[int] = []
        by_branch: dict[str, list[int]] = {}
        by_service: dict[str, list[int]] = {}

        for row in rows:
            times = self._validated(row)
            if times is None:
                continue
            wait_times.append(times.wait_time)
            service_times.append(times.service_time)
            by_branch.setdefault(row.branch_name, []).append(times.wait_time)
            by_service.setdefault(row.service_name, []).append(times.wait_time)

        summary = WaitTimeSummary(
            total_queues=total_queues,
            completed_queues=len(rows),
            avg_wait_time=average_minutes(wait_times),
            avg_service_time=average_minutes(service_times),
            top_branches=rank_by_average_wait(by_branch),
            top_services=rank_by_average_wait(by_service),
            time_distribution=calculate_time_distribution(wait_times),
        )

        self._log_report("summary", started, len(rows), len(by_branch))
        return summary


def rank_by_average_wait(waits_by_name: dict[str, list[int]], limit: int = TOP_RANKING_SIZE) -> list[RankedWaitTime]:
    """Names with the lowest average wait first."""
    ranking = [
        RankedWaitTime(name=name, avg_wait_time=average_minutes(waits), total_processed=len(waits))
        for name, waits in waits_by_name.items()
    ]
    ranking.sort(key=lambda entry: entry.avg_wait_time)
    return ranking[:limit]
