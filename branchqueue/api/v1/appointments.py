"""Appointment lifecycle routes for branch staff."""

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from branchqueue.core.clock import Clock, get_clock, to_naive_utc
from branchqueue.core.exceptions import ResourceNotFoundException
from branchqueue.db.base import get_db
from branchqueue.db.models import Appointment
from branchqueue.db.repository import AppointmentRepository
from branchqueue.db.schemas import (
    AppointmentOut,
    AppointmentRescheduleOut,
    CancelRequest,
    RescheduleOut,
    RescheduleRequest,
)
from branchqueue.services.lifecycle import AppointmentLifecycle

router = APIRouter()


def get_appointment_or_404(db: Session, appointment_id: int) -> Appointment:
    appointment = AppointmentRepository(db).get_appointment(appointment_id)
    if appointment is None:
        raise ResourceNotFoundException("Appointment", appointment_id)
    return appointment


@router.get("/appointments/{appointment_id}", response_model=AppointmentOut, summary="Get appointment")
async def get_appointment(appointment_id: int, db: Session = Depends(get_db)) -> AppointmentOut:
    """Get an appointment by ID."""
    return AppointmentOut.model_validate(get_appointment_or_404(db, appointment_id))


@router.post(
    "/appointments/{appointment_id}/check-in",
    response_model=AppointmentOut,
    summary="Check in appointment",
)
async def check_in_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> AppointmentOut:
    """Register the client's arrival at the branch."""
    appointment = get_appointment_or_404(db, appointment_id)
    return AppointmentOut.model_validate(AppointmentLifecycle(db, clock=clock).check_in(appointment))


@router.post(
    "/appointments/{appointment_id}/complete",
    response_model=AppointmentOut,
    summary="Complete appointment",
)
async def complete_appointment(
    appointment_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> AppointmentOut:
    """Mark a checked-in appointment as completed."""
    appointment = get_appointment_or_404(db, appointment_id)
    return AppointmentOut.model_validate(AppointmentLifecycle(db, clock=clock).complete(appointment))


@router.post(
    "/appointments/{appointment_id}/cancel",
    response_model=AppointmentOut,
    summary="Cancel appointment",
)
async def cancel_appointment(
    appointment_id: int,
    request: CancelRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> AppointmentOut:
    """Cancel a scheduled or checked-in appointment."""
    appointment = get_appointment_or_404(db, appointment_id)
    cancelled = AppointmentLifecycle(db, clock=clock).cancel(appointment, reason=request.reason)
    return AppointmentOut.model_validate(cancelled)


@router.post(
    "/appointments/{appointment_id}/reschedule",
    response_model=RescheduleOut,
    summary="Reschedule appointment",
    description="Close the appointment and open a linked replacement at the new time.",
)
async def reschedule_appointment(
    appointment_id: int,
    request: RescheduleRequest,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> RescheduleOut:
    appointment = get_appointment_or_404(db, appointment_id)
    replacement = AppointmentLifecycle(db, clock=clock).reschedule(
        appointment,
        new_time=to_naive_utc(request.new_scheduled_at),
        actor_id=request.actor_id,
        reason=request.reason,
    )
    return RescheduleOut(
        previous=AppointmentOut.model_validate(appointment),
        current=AppointmentOut.model_validate(replacement),
    )


@router.post(
    "/appointments/{appointment_id}/no-show",
    response_model=AppointmentOut,
    summary="Mark appointment as no-show",
    description="Idempotent: an appointment that is no longer scheduled is returned unchanged.",
)
async def mark_no_show(
    appointment_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> AppointmentOut:
    appointment = get_appointment_or_404(db, appointment_id)
    AppointmentLifecycle(db, clock=clock).mark_no_show(appointment, auto=False)
    return AppointmentOut.model_validate(appointment)


@router.get(
    "/appointments/{appointment_id}/reschedule-history",
    response_model=list[AppointmentRescheduleOut],
    summary="Reschedule history",
)
async def get_reschedule_history(appointment_id: int, db: Session = Depends(get_db)) -> list[AppointmentRescheduleOut]:
    """Every reschedule that led to this appointment, oldest first."""
    appointment = get_appointment_or_404(db, appointment_id)
    history = AppointmentLifecycle(db).reschedule_history(appointment)
    return [AppointmentRescheduleOut.model_validate(row) for row in history]
