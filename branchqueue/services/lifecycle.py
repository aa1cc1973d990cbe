"""Appointment lifecycle: the only place appointment status changes."""

from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from branchqueue.core.clock import Clock, system_clock
from branchqueue.core.config import settings
from branchqueue.core.exceptions import ErrorCode, InvalidTransition, ValidationException
from branchqueue.core.logging import bind_appointment, get_logger
from branchqueue.db.models import (
    Appointment,
    AppointmentReschedule,
    AppointmentStatus,
)
from branchqueue.db.repository import AppointmentRepository

logger = get_logger(__name__)

# Operation -> statuses it may start from.
ALLOWED_TRANSITIONS = {
    "check_in": frozenset({AppointmentStatus.SCHEDULED}),
    "complete": frozenset({AppointmentStatus.CHECKED_IN}),
    "cancel": frozenset({AppointmentStatus.SCHEDULED, AppointmentStatus.CHECKED_IN}),
    "reschedule": frozenset({AppointmentStatus.SCHEDULED}),
    "mark_no_show": frozenset({AppointmentStatus.SCHEDULED}),
}


class AppointmentLifecycle:
    """
    State machine for a single appointment.

    scheduled is initial; checked-in is the only intermediate state;
    completed, cancelled and no-show are terminal. A reschedule closes the
    current row and opens a new one linked through rescheduled_from_id.
    """

    def __init__(self, db: Session, clock: Clock = system_clock, max_reschedules: Optional[int] = None):
        self.db = db
        self.clock = clock
        self.repository = AppointmentRepository(db)
        self.max_reschedules = settings.max_reschedules if max_reschedules is None else max_reschedules

    def _ensure_allowed(self, appointment: Appointment, operation: str) -> None:
        if appointment.is_superseded:
            raise InvalidTransition(
                "appointment",
                appointment.id,
                appointment.status.value,
                operation.replace("_", " "),
                reason="appointment was superseded by a reschedule",
            )
        if appointment.status not in ALLOWED_TRANSITIONS[operation]:
            raise InvalidTransition(
                "appointment", appointment.id, appointment.status.value, operation.replace("_", " ")
            )

    def can(self, appointment: Appointment, operation: str) -> bool:
        """Whether an operation is currently allowed for the appointment."""
        try:
            self._ensure_allowed(appointment, operation)
        except InvalidTransition:
            return False
        return True

    def check_in(self, appointment: Appointment) -> Appointment:
        """scheduled -> checked-in, stamping attended_at."""
        self._ensure_allowed(appointment, "check_in")

        now = self.clock.now()
        appointment.status = AppointmentStatus.CHECKED_IN
        appointment.attended_at = now
        appointment.updated_at = now
        self.repository.save(appointment)

        bind_appointment(logger, appointment.id).info("Appointment checked in", attended_at=now.isoformat())
        return appointment

    def apply_complete(self, appointment: Appointment) -> Appointment:
        """checked-in -> completed in memory only; the caller commits it with its own changes."""
        self._ensure_allowed(appointment, "complete")

        now = self.clock.now()
        appointment.status = AppointmentStatus.COMPLETED
        if appointment.attended_at is None:
            appointment.attended_at = now
        appointment.updated_at = now
        return appointment

    def complete(self, appointment: Appointment) -> Appointment:
        """checked-in -> completed."""
        self.apply_complete(appointment)
        self.repository.save(appointment)

        bind_appointment(logger, appointment.id).info("Appointment completed")
        return appointment

    def cancel(self, appointment: Appointment, reason: Optional[str] = None) -> Appointment:
        """scheduled or checked-in -> cancelled."""
        self._ensure_allowed(appointment, "cancel")

        now = self.clock.now()
        appointment.status = AppointmentStatus.CANCELLED
        appointment.cancelled_at = now
        appointment.cancellation_reason = reason
        appointment.updated_at = now
        self.repository.save(appointment)

        bind_appointment(logger, appointment.id).info("Appointment cancelled", reason=reason)
        return appointment

    def reschedule(
        self,
        appointment: Appointment,
        new_time: datetime,
        actor_id: int,
        reason: Optional[str] = None,
    ) -> Appointment:
        """
        Replace a scheduled appointment with a new one at another time.

        The old row keeps status scheduled and gets the lineage fields; its
        rescheduled_at marks it superseded, which removes it from no-show
        scans and blocks further transitions on it.

        Args:
            appointment: Appointment being moved
            new_time: New scheduled instant, must be in the future
            actor_id: User performing the reschedule
            reason: Optional free-text reason

        Returns:
            Appointment: The new appointment

        Raises:
            InvalidTransition: If the appointment is not scheduled or already superseded
            ValidationException: If the new time is not in the future or the
                chain reached the reschedule limit
        """
        self._ensure_allowed(appointment, "reschedule")

        now = self.clock.now()
        if new_time <= now:
            raise ValidationException(
                "New scheduled time must be in the future",
                field="new_scheduled_at",
                error_code=ErrorCode.INVALID_DATE,
                context={"new_scheduled_at": new_time.isoformat(), "now": now.isoformat()},
            )

        previous_reschedules = len(self.repository.get_reschedule_ancestors(appointment))
        if previous_reschedules >= self.max_reschedules:
            raise ValidationException(
                f"Appointment has reached the limit of {self.max_reschedules} reschedules",
                error_code=ErrorCode.APPOINTMENT_CANNOT_BE_RESCHEDULED,
                context={"reschedules": previous_reschedules},
            )

        original_scheduled_at = appointment.original_scheduled_at or appointment.scheduled_at

        replacement = Appointment(
            user_id=appointment.user_id,
            service_id=appointment.service_id,
            branch_id=appointment.branch_id,
            service_point_id=appointment.service_point_id,
            type=appointment.type,
            status=AppointmentStatus.SCHEDULED,
            scheduled_at=new_time,
            form_data=appointment.form_data,
            guest_name=appointment.guest_name,
            guest_email=appointment.guest_email,
            guest_phone=appointment.guest_phone,
            guest_notes=appointment.guest_notes,
            rescheduled_from_id=appointment.id,
            original_scheduled_at=original_scheduled_at,
            created_at=now,
            updated_at=now,
        )

        appointment.rescheduled_by_id = actor_id
        appointment.rescheduled_at = now
        appointment.rescheduled_reason = reason
        appointment.original_scheduled_at = original_scheduled_at
        appointment.updated_at = now

        # Flushed, not committed: the history row needs the replacement id.
        self.repository.flush(appointment, replacement)

        history = AppointmentReschedule(
            appointment_id=appointment.id,
            new_appointment_id=replacement.id,
            original_scheduled_at=appointment.scheduled_at,
            new_scheduled_at=new_time,
            rescheduled_by_id=actor_id,
            reason=reason,
            created_at=now,
        )
        self.repository.save(appointment, replacement, history)

        bind_appointment(logger, appointment.id).info(
            "Appointment rescheduled",
            new_appointment_id=replacement.id,
            new_scheduled_at=new_time.isoformat(),
            actor_id=actor_id,
        )
        return replacement

    def mark_no_show(self, appointment: Appointment, auto: bool = False) -> bool:
        """
        scheduled -> no-show, at most once.

        Anything other than a live scheduled row is a silent no-op so the
        scheduler can re-scan without side effects. The write itself is a
        conditional update, so a concurrent marker loses cleanly.

        Returns:
            bool: True if this call marked the appointment
        """
        if (
            appointment.status != AppointmentStatus.SCHEDULED
            or appointment.no_show_marked_at is not None
            or appointment.is_superseded
        ):
            logger.debug(
                "Skipping no-show mark",
                appointment_id=appointment.id,
                status=appointment.status.value,
            )
            return False

        now = self.clock.now()
        if not self.repository.claim_no_show(appointment.id, now, auto):
            self.db.refresh(appointment)
            logger.info("No-show already recorded elsewhere", appointment_id=appointment.id)
            return False

        appointment.status = AppointmentStatus.NO_SHOW
        appointment.no_show_marked_at = now
        appointment.auto_marked_as_no_show = auto
        appointment.updated_at = now

        bind_appointment(logger, appointment.id).info(
            "Appointment marked as no-show",
            auto=auto,
            scheduled_at=appointment.scheduled_at.isoformat(),
        )
        return True

    def reschedule_history(self, appointment: Appointment) -> list[AppointmentReschedule]:
        """Every reschedule that led to this appointment, oldest first."""
        return self.repository.find_reschedule_history(appointment)
