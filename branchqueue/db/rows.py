"""Typed rows returned by the reporting queries.

One dataclass per query shape so the analytics code never indexes loose
tuples or dicts.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from branchqueue.db.models import AppointmentStatus, QueueStatus


@dataclass(frozen=True)
class QueueSampleRow:
    """A queue entry joined with its appointment's grouping keys."""
    queue_id: int
    branch_id: int
    branch_name: str
    service_id: int
    service_name: str
    service_point_id: Optional[int]
    service_point_name: Optional[str]
    created_at: datetime
    called_at: Optional[datetime]
    completed_at: Optional[datetime]


@dataclass(frozen=True)
class QueueStatusRow:
    """Queue entry status with its raw timestamps."""
    status: QueueStatus
    created_at: datetime
    called_at: Optional[datetime]
    completed_at: Optional[datetime]


@dataclass(frozen=True)
class AppointmentReportRow:
    """Appointment fields consumed by the outcome reports."""
    appointment_id: int
    branch_id: int
    branch_name: str
    service_id: int
    service_name: str
    status: AppointmentStatus
    scheduled_at: datetime
    attended_at: Optional[datetime]


@dataclass(frozen=True)
class RescheduleRow:
    """A replacement appointment joined with the row it superseded."""
    appointment_id: int
    previous_id: int
    branch_id: int
    branch_name: str
    service_id: int
    created_at: datetime
    previous_scheduled_at: datetime
    reason: Optional[str]
