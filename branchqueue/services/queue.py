"""Walk-in queue: ticket assignment, calling and completion."""

from typing import Optional

from sqlalchemy.orm import Session

from branchqueue.core.clock import Clock, system_clock
from branchqueue.core.config import settings
from branchqueue.core.exceptions import (
    ErrorCode,
    InvalidSample,
    InvalidTransition,
    ResourceConflictException,
    ValidationException,
)
from branchqueue.core.logging import get_logger
from branchqueue.db.models import Appointment, AppointmentStatus, QueueEntry, QueueStatus
from branchqueue.db.repository import AppointmentRepository, QueueScope
from branchqueue.db.schemas import QueueEntryOut, QueuePosition
from branchqueue.services.lifecycle import AppointmentLifecycle
from branchqueue.services.time_metrics import average_minutes, validate_sample

logger = get_logger(__name__)


class QueueAssigner:
    """Service for moving checked-in appointments through a branch's daily line."""

    def __init__(self, db: Session, clock: Clock = system_clock, default_service_minutes: Optional[int] = None):
        self.db = db
        self.clock = clock
        self.repository = AppointmentRepository(db)
        self.lifecycle = AppointmentLifecycle(db, clock=clock)
        self.default_service_minutes = (
            settings.default_service_minutes if default_service_minutes is None else default_service_minutes
        )

    def scope_for(self, entry: QueueEntry) -> QueueScope:
        return QueueScope(branch_id=entry.branch_id, queue_date=entry.queue_date)

    def enqueue(self, appointment: Appointment, service_point_id: Optional[int] = None) -> QueuePosition:
        """
        Give a checked-in appointment the next ticket of its branch for today.

        Args:
            appointment: Checked-in appointment
            service_point_id: Optional desk that will attend the ticket; it must
                be an active service point of the appointment's branch

        Returns:
            QueuePosition: Entry, waiting entries ahead of it and estimated wait

        Raises:
            InvalidTransition: If the appointment is not checked in
            ResourceConflictException: If the appointment already has a ticket
            ValidationException: If the service point is unknown, inactive or
                belongs to another branch
        """
        if appointment.status != AppointmentStatus.CHECKED_IN:
            raise InvalidTransition(
                "appointment", appointment.id, appointment.status.value, "enqueue",
                reason="only checked-in appointments can join the queue",
            )

        existing = self.repository.get_queue_entry_for_appointment(appointment.id)
        if existing is not None:
            raise ResourceConflictException(
                f"Appointment {appointment.id} already holds ticket {existing.counter}",
                error_code=ErrorCode.APPOINTMENT_ALREADY_QUEUED,
                context={"appointment_id": appointment.id, "queue_entry_id": existing.id},
            )

        if service_point_id is not None:
            self._ensure_service_point(appointment, service_point_id)
            appointment.service_point_id = service_point_id

        now = self.clock.now()
        scope = QueueScope(branch_id=appointment.branch_id, queue_date=now.date())
        entry = QueueEntry(
            appointment_id=appointment.id,
            branch_id=scope.branch_id,
            queue_date=scope.queue_date,
            counter=self.repository.next_counter(scope),
            status=QueueStatus.WAITING,
            created_at=now,
        )
        self.repository.save(entry, appointment)

        position = self.get_position(entry)
        logger.info(
            "Appointment queued",
            appointment_id=appointment.id,
            queue_entry_id=entry.id,
            counter=entry.counter,
            position=position.position,
            service_point_id=appointment.service_point_id,
        )
        return position

    def _ensure_service_point(self, appointment: Appointment, service_point_id: int) -> None:
        point = self.repository.get_service_point(service_point_id)
        if point is None or point.branch_id != appointment.branch_id:
            raise ValidationException(
                f"Service point {service_point_id} does not belong to branch {appointment.branch_id}",
                field="service_point_id",
                context={"service_point_id": service_point_id, "branch_id": appointment.branch_id},
            )
        if not point.is_active:
            raise ValidationException(
                f"Service point {service_point_id} is not active",
                field="service_point_id",
                context={"service_point_id": service_point_id},
            )

    def get_position(self, entry: QueueEntry) -> QueuePosition:
        """Current position and estimated wait for a queue entry."""
        if entry.status == QueueStatus.WAITING:
            position = self.repository.count_waiting_before(self.scope_for(entry), entry.counter)
        else:
            position = 0

        estimated_wait = 0
        if position:
            estimated_wait = position * self.average_service_minutes(entry.appointment.service_id)

        return QueuePosition(
            entry=QueueEntryOut.model_validate(entry),
            position=position,
            estimated_wait_minutes=estimated_wait,
        )

    def average_service_minutes(self, service_id: int) -> int:
        """Mean historical service time of a service, or the configured default."""
        service_times = []
        for row in self.repository.find_service_history(service_id):
            try:
                times = validate_sample(row.created_at, row.called_at, row.completed_at)
            except InvalidSample:
                continue
            service_times.append(times.service_time)

        if not service_times:
            return self.default_service_minutes
        return average_minutes(service_times)

    def call(self, entry: QueueEntry) -> QueueEntry:
        """waiting -> serving, stamping called_at."""
        if entry.status != QueueStatus.WAITING:
            raise InvalidTransition("queue entry", entry.id, entry.status.value, "call")
        if entry.appointment.status != AppointmentStatus.CHECKED_IN:
            raise InvalidTransition(
                "queue entry", entry.id, entry.status.value, "call",
                reason=f"appointment is {entry.appointment.status.value}",
            )

        entry.status = QueueStatus.SERVING
        entry.called_at = self.clock.now()
        self.repository.save(entry)

        logger.info("Queue entry called", queue_entry_id=entry.id, counter=entry.counter)
        return entry

    def call_next(self, branch_id: int, service_point_id: Optional[int] = None) -> Optional[QueueEntry]:
        """Call the lowest waiting ticket of the branch's queue for today."""
        scope = QueueScope(branch_id=branch_id, queue_date=self.clock.now().date())
        entry = self.repository.find_next_waiting(scope, service_point_id=service_point_id)
        if entry is None:
            logger.info("No waiting entries to call", branch_id=branch_id, service_point_id=service_point_id)
            return None
        return self.call(entry)

    def finish(self, entry: QueueEntry) -> QueueEntry:
        """serving -> complete, stamping completed_at and completing the appointment."""
        if entry.status != QueueStatus.SERVING:
            raise InvalidTransition("queue entry", entry.id, entry.status.value, "finish")

        entry.status = QueueStatus.COMPLETE
        entry.completed_at = self.clock.now()

        appointment = entry.appointment
        if appointment.status == AppointmentStatus.CHECKED_IN:
            self.lifecycle.apply_complete(appointment)
        self.repository.save(entry, appointment)

        logger.info(
            "Queue entry completed",
            queue_entry_id=entry.id,
            appointment_id=appointment.id,
            appointment_status=appointment.status.value,
        )
        return entry
