"""Pydantic v2 schemas for the queue service and its reports."""

from datetime import date, datetime, time
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from branchqueue.db.models import AppointmentStatus, AppointmentType, QueueStatus


# Base schemas
class BaseSchema(BaseModel):
    """Base schema with common configuration."""
    model_config = ConfigDict(from_attributes=True)


class ErrorResponse(BaseSchema):
    """Error body returned for every APIException."""

    detail: str = Field(..., description="Error message")
    error_code: str = Field(..., description="Machine-readable error code")
    field: Optional[str] = Field(None, description="Field that caused the error")
    timestamp: datetime
    request_id: Optional[str] = None
    context: Optional[Dict[str, Any]] = None


# Appointment schemas
class AppointmentOut(BaseSchema):
    """Schema for appointment output."""
    id: int
    service_id: int
    branch_id: int
    service_point_id: Optional[int] = None
    user_id: Optional[int] = None
    status: AppointmentStatus
    type: AppointmentType
    scheduled_at: datetime
    attended_at: Optional[datetime] = None
    no_show_marked_at: Optional[datetime] = None
    auto_marked_as_no_show: bool = False
    cancelled_at: Optional[datetime] = None
    cancellation_reason: Optional[str] = None
    rescheduled_from_id: Optional[int] = None
    rescheduled_by_id: Optional[int] = None
    rescheduled_at: Optional[datetime] = None
    rescheduled_reason: Optional[str] = None
    original_scheduled_at: Optional[datetime] = None


class CancelRequest(BaseSchema):
    """Schema for cancelling an appointment."""
    reason: Optional[str] = Field(None, max_length=1000)


class RescheduleRequest(BaseSchema):
    """Schema for rescheduling an appointment."""
    new_scheduled_at: datetime
    actor_id: int
    reason: Optional[str] = Field(None, max_length=1000)


class RescheduleOut(BaseSchema):
    """Result of a reschedule: the closed row and its replacement."""
    previous: AppointmentOut
    current: AppointmentOut


class AppointmentRescheduleOut(BaseSchema):
    """One entry of an appointment's reschedule history."""
    id: int
    appointment_id: int
    new_appointment_id: int
    original_scheduled_at: datetime
    new_scheduled_at: datetime
    rescheduled_by_id: int
    reason: Optional[str] = None
    created_at: datetime


# Queue schemas
class QueueEntryOut(BaseSchema):
    """Schema for queue entry output."""
    id: int
    appointment_id: int
    branch_id: int
    queue_date: date
    counter: int
    status: QueueStatus
    created_at: datetime
    called_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class QueuePosition(BaseSchema):
    """A freshly created queue entry with its place in line."""
    entry: QueueEntryOut
    position: int = Field(..., ge=0, description="Waiting entries ahead of this one")
    estimated_wait_minutes: int = Field(..., ge=0)


# Report filters
class DateRange(BaseSchema):
    """Inclusive instant range bounding a report."""
    start_date: datetime
    end_date: datetime

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    @classmethod
    def for_days(cls, start: date, end: date) -> "DateRange":
        """Expand calendar days to start-of-day / end-of-day instants."""
        return cls(
            start_date=datetime.combine(start, time.min),
            end_date=datetime.combine(end, time.max),
        )

    @property
    def days(self) -> int:
        """Whole days covered by the range, at least one."""
        seconds = (self.end_date - self.start_date).total_seconds()
        return max(1, int(-(-seconds // 86400)))


class ReportFilters(BaseSchema):
    """Filters accepted by every analytics query."""
    date_range: DateRange
    branch_id: Optional[int] = None
    service_id: Optional[int] = None
    service_point_id: Optional[int] = None


# Wait-time reports
class TimeMetrics(BaseSchema):
    """Summary statistics over minute-valued durations."""
    average: int = 0
    median: int = 0
    minimum: int = 0
    maximum: int = 0
    count: int = 0


class WaitTimeByBranch(BaseSchema):
    branch_id: int
    branch_name: str
    wait_time: TimeMetrics
    service_time: TimeMetrics
    total_processed: int


class WaitTimeByService(BaseSchema):
    service_id: int
    service_name: str
    branch_id: int
    branch_name: str
    wait_time: TimeMetrics
    service_time: TimeMetrics
    total_processed: int


class WaitTimeByServicePoint(BaseSchema):
    service_point_id: int
    service_point_name: str
    branch_id: int
    branch_name: str
    wait_time: TimeMetrics
    service_time: TimeMetrics
    total_processed: int


class RankedWaitTime(BaseSchema):
    """Entry in a top-N ranking by average wait."""
    name: str
    avg_wait_time: int
    total_processed: int


class TimeDistributionBucket(BaseSchema):
    time_range: str
    count: int
    percentage: int


class WaitTimeSummary(BaseSchema):
    total_queues: int
    completed_queues: int
    avg_wait_time: int
    avg_service_time: int
    top_branches: List[RankedWaitTime]
    top_services: List[RankedWaitTime]
    time_distribution: List[TimeDistributionBucket]


# Appointment reports
class DemandTrend(str, Enum):
    """Coarse label derived from a service's popularity rank."""
    INCREASING = "increasing"
    STABLE = "stable"
    DECREASING = "decreasing"


class AppointmentMetrics(BaseSchema):
    total_appointments: int = 0
    scheduled_appointments: int = 0
    checked_in_appointments: int = 0
    completed_appointments: int = 0
    cancelled_appointments: int = 0
    no_show_appointments: int = 0
    rescheduled_appointments: int = 0
    attendance_rate: float = 0.0
    completion_rate: float = 0.0
    no_show_rate: float = 0.0


class AppointmentByBranch(BaseSchema):
    branch_id: int
    branch_name: str
    total_appointments: int
    completed_appointments: int
    cancelled_appointments: int
    no_show_appointments: int
    rescheduled_appointments: int
    attendance_rate: float
    completion_rate: float
    no_show_rate: float
    average_appointments_per_day: float


class AppointmentByService(BaseSchema):
    service_id: int
    service_name: str
    total_appointments: int
    completed_appointments: int
    average_completion_time: float
    popularity_rank: int
    demand_trend: DemandTrend


class QueueMetrics(BaseSchema):
    total_queues: int = 0
    waiting_queues: int = 0
    serving_queues: int = 0
    completed_queues: int = 0
    average_wait_time: float = 0.0
    average_service_time: float = 0.0
    queue_efficiency: float = 0.0


class ReasonCount(BaseSchema):
    reason: str
    count: int
    percentage: float


class DailyCount(BaseSchema):
    date: date
    count: int


class ReschedulingStats(BaseSchema):
    total_rescheduled: int
    rescheduling_rate: float
    average_notice_days: float
    most_common_reasons: List[ReasonCount]
    rescheduling_trends: List[DailyCount]


class HourlyDistribution(BaseSchema):
    hour: int
    appointment_count: int
    completion_rate: float
    average_wait_time: float


class AppointmentTrend(BaseSchema):
    date: date
    total_appointments: int
    completed_appointments: int
    cancelled_appointments: int
    no_show_appointments: int
    attendance_rate: float


# No-show scheduler
class NoShowSchedulerConfig(BaseSchema):
    """Scheduler configuration."""
    interval_minutes: int = Field(5, gt=0, description="Minutes between runs")
    enabled: bool = True
    grace_time_minutes: int = Field(1, ge=0, description="Tolerance after scheduled_at")


class NoShowSchedulerConfigUpdate(BaseSchema):
    """Partial scheduler configuration."""
    interval_minutes: Optional[int] = None
    enabled: Optional[bool] = None
    grace_time_minutes: Optional[int] = None


class NoShowSchedulerStats(BaseSchema):
    """Scheduler counters."""
    last_run: Optional[datetime] = None
    next_run: Optional[datetime] = None
    total_marked_as_no_show: int = 0
    total_errors: int = 0
    is_running: bool = False
    is_processing: bool = False
    average_execution_time_ms: float = 0.0


class NoShowRunResult(BaseSchema):
    """Outcome of a single scheduler tick."""
    skipped: bool = False
    found: int = 0
    marked: int = 0
    errors: int = 0
    cutoff: Optional[datetime] = None
