"""Persistence for appointments, queue entries and their report queries."""

from dataclasses import dataclass
from datetime import date, datetime
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from branchqueue.core.exceptions import PersistenceError
from branchqueue.core.logging import get_logger
from branchqueue.db.models import (
    Appointment,
    AppointmentReschedule,
    AppointmentStatus,
    Branch,
    QueueEntry,
    QueueStatus,
    Service,
    ServicePoint,
)
from branchqueue.db.rows import AppointmentReportRow, QueueSampleRow, QueueStatusRow, RescheduleRow
from branchqueue.db.schemas import ReportFilters

logger = get_logger(__name__)


@dataclass(frozen=True)
class QueueScope:
    """Counter scope: one branch's line for one calendar day."""
    branch_id: int
    queue_date: date


class AppointmentRepository:
    """Repository for appointment and queue database operations."""

    def __init__(self, db: Session):
        self.db = db

    # Writes

    def save(self, *instances) -> None:
        """Persist instances and commit, refreshing them afterwards."""
        try:
            for instance in instances:
                self.db.add(instance)
            self.db.commit()
            for instance in instances:
                self.db.refresh(instance)
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(
                "Failed to save changes",
                context={"error": str(e), "types": [type(i).__name__ for i in instances]},
            ) from e

    def flush(self, *instances) -> None:
        """Stage instances in the open transaction so they get primary keys, without committing."""
        try:
            for instance in instances:
                self.db.add(instance)
            self.db.flush()
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(
                "Failed to stage changes",
                context={"error": str(e), "types": [type(i).__name__ for i in instances]},
            ) from e

    def claim_no_show(self, appointment_id: int, marked_at: datetime, auto: bool) -> bool:
        """
        Atomically flip a scheduled appointment to no-show.

        The WHERE clause repeats the eligibility test so that concurrent
        schedulers, in this process or another one, can only succeed once.

        Returns:
            bool: True if this call performed the transition
        """
        try:
            updated = (
                self.db.query(Appointment)
                .filter(
                    Appointment.id == appointment_id,
                    Appointment.status == AppointmentStatus.SCHEDULED,
                    Appointment.no_show_marked_at.is_(None),
                )
                .update(
                    {
                        Appointment.status: AppointmentStatus.NO_SHOW,
                        Appointment.no_show_marked_at: marked_at,
                        Appointment.auto_marked_as_no_show: auto,
                        Appointment.updated_at: marked_at,
                    },
                    synchronize_session=False,
                )
            )
            self.db.commit()
            return updated == 1
        except SQLAlchemyError as e:
            self.db.rollback()
            raise PersistenceError(
                "Failed to mark appointment as no-show",
                context={"appointment_id": appointment_id, "error": str(e)},
            ) from e

    # Appointment lookups

    def get_appointment(self, appointment_id: int) -> Optional[Appointment]:
        """Get appointment by ID."""
        return self.db.query(Appointment).filter(Appointment.id == appointment_id).first()

    def find_scheduled_before(self, cutoff: datetime) -> list[Appointment]:
        """
        Find appointments eligible for automatic no-show marking.

        Superseded rows (rescheduled_at set) keep status scheduled but are
        excluded here; their replacement carries the live schedule.
        """
        try:
            return (
                self.db.query(Appointment)
                .filter(
                    Appointment.status == AppointmentStatus.SCHEDULED,
                    Appointment.scheduled_at < cutoff,
                    Appointment.no_show_marked_at.is_(None),
                    Appointment.rescheduled_at.is_(None),
                )
                .order_by(Appointment.id)
                .all()
            )
        except SQLAlchemyError as e:
            raise PersistenceError(
                "Failed to select overdue appointments",
                context={"cutoff": cutoff.isoformat(), "error": str(e)},
            ) from e

    def get_reschedule_ancestors(self, appointment: Appointment) -> list[Appointment]:
        """Walk rescheduled_from_id back to the first appointment of the chain."""
        ancestors = []
        current = appointment
        while current.rescheduled_from_id is not None:
            current = self.get_appointment(current.rescheduled_from_id)
            if current is None:
                break
            ancestors.append(current)
        return ancestors

    def find_reschedule_history(self, appointment: Appointment) -> list[AppointmentReschedule]:
        """History rows for every reschedule that led to this appointment."""
        chain_ids = [appointment.id] + [a.id for a in self.get_reschedule_ancestors(appointment)]
        return (
            self.db.query(AppointmentReschedule)
            .filter(AppointmentReschedule.new_appointment_id.in_(chain_ids))
            .order_by(AppointmentReschedule.created_at, AppointmentReschedule.id)
            .all()
        )

    # Queue lookups

    def get_queue_entry(self, entry_id: int) -> Optional[QueueEntry]:
        """Get queue entry by ID."""
        return self.db.query(QueueEntry).filter(QueueEntry.id == entry_id).first()

    def get_queue_entry_for_appointment(self, appointment_id: int) -> Optional[QueueEntry]:
        """Get the queue entry owned by an appointment, if any."""
        return self.db.query(QueueEntry).filter(QueueEntry.appointment_id == appointment_id).first()

    def next_counter(self, scope: QueueScope) -> int:
        """Next sequential ticket number for the scope, starting at 1."""
        last = (
            self.db.query(func.max(QueueEntry.counter))
            .filter(QueueEntry.branch_id == scope.branch_id, QueueEntry.queue_date == scope.queue_date)
            .scalar()
        )
        return (last or 0) + 1

    def _waiting_in_line(self, query: Query, scope: QueueScope) -> Query:
        # A ticket whose appointment left checked-in (e.g. cancelled) is out of the line.
        return query.join(Appointment, QueueEntry.appointment_id == Appointment.id).filter(
            QueueEntry.branch_id == scope.branch_id,
            QueueEntry.queue_date == scope.queue_date,
            QueueEntry.status == QueueStatus.WAITING,
            Appointment.status == AppointmentStatus.CHECKED_IN,
        )

    def count_waiting_before(self, scope: QueueScope, counter: int) -> int:
        """Waiting entries of the scope that were issued before the given ticket."""
        query = self._waiting_in_line(self.db.query(func.count(QueueEntry.id)), scope)
        return query.filter(QueueEntry.counter < counter).scalar()

    def find_next_waiting(self, scope: QueueScope, service_point_id: Optional[int] = None) -> Optional[QueueEntry]:
        """Lowest-numbered waiting entry of the scope."""
        query = self._waiting_in_line(self.db.query(QueueEntry), scope)
        if service_point_id is not None:
            query = query.filter(Appointment.service_point_id == service_point_id)
        return query.order_by(QueueEntry.counter).first()

    def get_service_point(self, service_point_id: int) -> Optional[ServicePoint]:
        """Get service point by ID."""
        return self.db.query(ServicePoint).filter(ServicePoint.id == service_point_id).first()

    def find_service_history(self, service_id: int, limit: int = 200) -> list[QueueStatusRow]:
        """Most recent completed queue entries for a service."""
        rows = (
            self.db.query(QueueEntry.status, QueueEntry.created_at, QueueEntry.called_at, QueueEntry.completed_at)
            .join(Appointment, QueueEntry.appointment_id == Appointment.id)
            .filter(
                Appointment.service_id == service_id,
                QueueEntry.status == QueueStatus.COMPLETE,
                QueueEntry.called_at.is_not(None),
                QueueEntry.completed_at.is_not(None),
            )
            .order_by(QueueEntry.completed_at.desc())
            .limit(limit)
            .all()
        )
        return [QueueStatusRow(*row) for row in rows]

    # Report queries

    def _apply_filters(self, query: Query, filters: ReportFilters) -> Query:
        if filters.branch_id is not None:
            query = query.filter(Appointment.branch_id == filters.branch_id)
        if filters.service_id is not None:
            query = query.filter(Appointment.service_id == filters.service_id)
        if filters.service_point_id is not None:
            query = query.filter(Appointment.service_point_id == filters.service_point_id)
        return query

    def _queue_range(self, query: Query, filters: ReportFilters) -> Query:
        query = query.filter(
            QueueEntry.created_at >= filters.date_range.start_date,
            QueueEntry.created_at <= filters.date_range.end_date,
        )
        return self._apply_filters(query, filters)

    def find_queue_entries_in_range(
        self,
        filters: ReportFilters,
        require_service_point: bool = False,
    ) -> list[QueueSampleRow]:
        """
        Queue entries created in range that were both called and completed,
        joined with the appointment's branch, service and service point.
        """
        query = (
            self.db.query(
                QueueEntry.id,
                Appointment.branch_id,
                Branch.name,
                Appointment.service_id,
                Service.name,
                Appointment.service_point_id,
                ServicePoint.name,
                QueueEntry.created_at,
                QueueEntry.called_at,
                QueueEntry.completed_at,
            )
            .join(Appointment, QueueEntry.appointment_id == Appointment.id)
            .join(Branch, Appointment.branch_id == Branch.id)
            .join(Service, Appointment.service_id == Service.id)
            .outerjoin(ServicePoint, Appointment.service_point_id == ServicePoint.id)
            .filter(QueueEntry.called_at.is_not(None), QueueEntry.completed_at.is_not(None))
        )
        if require_service_point:
            query = query.filter(Appointment.service_point_id.is_not(None))
        query = self._queue_range(query, filters).order_by(QueueEntry.id)
        return [QueueSampleRow(*row) for row in query.all()]

    def count_queue_entries_in_range(self, filters: ReportFilters) -> int:
        """All queue entries created in range, whatever their status."""
        query = self.db.query(func.count(QueueEntry.id)).join(
            Appointment, QueueEntry.appointment_id == Appointment.id
        )
        return self._queue_range(query, filters).scalar() or 0

    def find_queue_status_rows(self, filters: ReportFilters) -> list[QueueStatusRow]:
        """Status and timestamps of every queue entry created in range."""
        query = self.db.query(
            QueueEntry.status, QueueEntry.created_at, QueueEntry.called_at, QueueEntry.completed_at
        ).join(Appointment, QueueEntry.appointment_id == Appointment.id)
        return [QueueStatusRow(*row) for row in self._queue_range(query, filters).all()]

    def find_appointments_in_range(self, filters: ReportFilters) -> list[AppointmentReportRow]:
        """Appointments whose scheduled_at falls in range."""
        query = (
            self.db.query(
                Appointment.id,
                Appointment.branch_id,
                Branch.name,
                Appointment.service_id,
                Service.name,
                Appointment.status,
                Appointment.scheduled_at,
                Appointment.attended_at,
            )
            .join(Branch, Appointment.branch_id == Branch.id)
            .join(Service, Appointment.service_id == Service.id)
            .filter(
                Appointment.scheduled_at >= filters.date_range.start_date,
                Appointment.scheduled_at <= filters.date_range.end_date,
            )
        )
        query = self._apply_filters(query, filters).order_by(Appointment.id)
        return [AppointmentReportRow(*row) for row in query.all()]

    def find_reschedules_in_range(self, filters: ReportFilters) -> list[RescheduleRow]:
        """
        Replacement appointments created in range.

        A replacement row's created_at is the moment of the reschedule; the
        superseded row supplies the previous time and the reason.
        """
        previous = Appointment.__table__.alias("previous")
        query = (
            self.db.query(
                Appointment.id,
                Appointment.rescheduled_from_id,
                Appointment.branch_id,
                Branch.name,
                Appointment.service_id,
                Appointment.created_at,
                previous.c.scheduled_at,
                previous.c.rescheduled_reason,
            )
            .join(previous, Appointment.rescheduled_from_id == previous.c.id)
            .join(Branch, Appointment.branch_id == Branch.id)
            .filter(
                Appointment.rescheduled_from_id.is_not(None),
                Appointment.created_at >= filters.date_range.start_date,
                Appointment.created_at <= filters.date_range.end_date,
            )
        )
        query = self._apply_filters(query, filters).order_by(Appointment.created_at, Appointment.id)
        return [RescheduleRow(*row) for row in query.all()]
