"""Wait-time and appointment report routes."""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import ValidationError
from sqlalchemy.orm import Session

from branchqueue.core.exceptions import ErrorCode, ValidationException
from branchqueue.db.base import get_db
from branchqueue.db.schemas import (
    AppointmentByBranch,
    AppointmentByService,
    AppointmentMetrics,
    AppointmentTrend,
    DateRange,
    HourlyDistribution,
    QueueMetrics,
    ReportFilters,
    ReschedulingStats,
    WaitTimeByBranch,
    WaitTimeByService,
    WaitTimeByServicePoint,
    WaitTimeSummary,
)
from branchqueue.services.appointment_analytics import AppointmentAnalyticsService
from branchqueue.services.wait_time_analytics import WaitTimeAnalyticsService

router = APIRouter()


def report_filters(
    start_date: date = Query(..., description="First day of the report (YYYY-MM-DD)"),
    end_date: date = Query(..., description="Last day of the report (YYYY-MM-DD)"),
    branch_id: Optional[int] = Query(None),
    service_id: Optional[int] = Query(None),
    service_point_id: Optional[int] = Query(None),
) -> ReportFilters:
    """Build report filters covering whole days from start_date to end_date."""
    try:
        date_range = DateRange.for_days(start_date, end_date)
    except ValidationError as e:
        raise ValidationException(
            "end_date must not be before start_date",
            field="end_date",
            error_code=ErrorCode.INVALID_DATE,
        ) from e

    return ReportFilters(
        date_range=date_range,
        branch_id=branch_id,
        service_id=service_id,
        service_point_id=service_point_id,
    )


# Wait times

@router.get("/reports/wait-times/branches", response_model=list[WaitTimeByBranch])
async def wait_times_by_branch(
    filters: ReportFilters = Depends(report_filters),
    db: Session = Depends(get_db),
) -> list[WaitTimeByBranch]:
    return WaitTimeAnalyticsService(db).get_wait_times_by_branch(filters)


@router.get("/reports/wait-times/services", response_model=list[WaitTimeByService])
async def wait_times_by_service(
    filters: ReportFilters = Depends(report_filters),
    db: Session = Depends(get_db),
) -> list[WaitTimeByService]:
    return WaitTimeAnalyticsService(db).get_wait_times_by_service(filters)


@router.get("/reports/wait-times/service-points", response_model=list[WaitTimeByServicePoint])
async def wait_times_by_service_point(
    filters: ReportFilters = Depends(report_filters),
    db: Session = Depends(get_db),
) -> list[WaitTimeByServicePoint]:
    return WaitTimeAnalyticsService(db).get_wait_times_by_service_point(filters)


@router.get("/reports/wait-times/summary", response_model=WaitTimeSummary)
async def wait_times_summary(
    filters: ReportFilters = Depends(report_filters),
    db: Session = Depends(get_db),
) -> WaitTimeSummary:
    """Overall averages, fastest branches and services, and the wait distribution."""
    return WaitTimeAnalyticsService(db).get_wait_times_summary(filters)


# Appointments

@router.get("/reports/appointments/summary", response_model=AppointmentMetrics)
async def appointments_summary(
    filters: ReportFilters = Depends(report_filters),
    db: Session = Depends(get_db),
) -> AppointmentMetrics:
    return AppointmentAnalyticsService(db).get_appointments_summary(filters)


@router.get("/reports/appointments/branches", response_model=list[AppointmentByBranch])
async def appointments_by_branch(
    filters: ReportFilters = Depends(report_filters),
    db: Session = Depends(get_db),
) -> list[AppointmentByBranch]:
    return AppointmentAnalyticsService(db).get_appointments_by_branch(filters)


@router.get("/reports/appointments/services", response_model=list[AppointmentByService])
async def appointments_by_service(
    filters: ReportFilters = Depends(report_filters),
    db: Session = Depends(get_db),
) -> list[AppointmentByService]:
    return AppointmentAnalyticsService(db).get_appointments_by_service(filters)


@router.get("/reports/appointments/queues", response_model=QueueMetrics)
async def queue_statistics(
    filters: ReportFilters = Depends(report_filters),
    db: Session = Depends(get_db),
) -> QueueMetrics:
    return AppointmentAnalyticsService(db).get_queue_statistics(filters)


@router.get("/reports/appointments/rescheduling", response_model=ReschedulingStats)
async def rescheduling_stats(
    filters: ReportFilters = Depends(report_filters),
    db: Session = Depends(get_db),
) -> ReschedulingStats:
    return AppointmentAnalyticsService(db).get_rescheduling_stats(filters)


@router.get("/reports/appointments/hourly", response_model=list[HourlyDistribution])
async def hourly_distribution(
    filters: ReportFilters = Depends(report_filters),
    db: Session = Depends(get_db),
) -> list[HourlyDistribution]:
    return AppointmentAnalyticsService(db).get_hourly_distribution(filters)


@router.get("/reports/appointments/trends", response_model=list[AppointmentTrend])
async def appointment_trends(
    filters: ReportFilters = Depends(report_filters),
    db: Session = Depends(get_db),
) -> list[AppointmentTrend]:
    return AppointmentAnalyticsService(db).get_appointment_trends(filters)
