"""Walk-in queue routes."""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from branchqueue.api.v1.appointments import get_appointment_or_404
from branchqueue.core.clock import Clock, get_clock
from branchqueue.core.exceptions import ResourceNotFoundException
from branchqueue.db.base import get_db
from branchqueue.db.models import QueueEntry
from branchqueue.db.repository import AppointmentRepository
from branchqueue.db.schemas import QueueEntryOut, QueuePosition
from branchqueue.services.queue import QueueAssigner

router = APIRouter()


def get_queue_entry_or_404(db: Session, entry_id: int) -> QueueEntry:
    entry = AppointmentRepository(db).get_queue_entry(entry_id)
    if entry is None:
        raise ResourceNotFoundException("Queue entry", entry_id)
    return entry


@router.post(
    "/queue/appointments/{appointment_id}",
    response_model=QueuePosition,
    status_code=status.HTTP_201_CREATED,
    summary="Enqueue appointment",
    description="Give a checked-in appointment the next ticket of its branch for today.",
)
async def enqueue_appointment(
    appointment_id: int,
    service_point_id: Optional[int] = Query(None, description="Active service point of the appointment's branch"),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> QueuePosition:
    appointment = get_appointment_or_404(db, appointment_id)
    return QueueAssigner(db, clock=clock).enqueue(appointment, service_point_id=service_point_id)


@router.get("/queue/{entry_id}", response_model=QueuePosition, summary="Get queue position")
async def get_queue_position(
    entry_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> QueuePosition:
    """Current position and estimated wait of a queue entry."""
    entry = get_queue_entry_or_404(db, entry_id)
    return QueueAssigner(db, clock=clock).get_position(entry)


@router.post("/queue/{entry_id}/call", response_model=QueueEntryOut, summary="Call queue entry")
async def call_queue_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> QueueEntryOut:
    entry = get_queue_entry_or_404(db, entry_id)
    return QueueEntryOut.model_validate(QueueAssigner(db, clock=clock).call(entry))


@router.post("/queue/{entry_id}/finish", response_model=QueueEntryOut, summary="Finish queue entry")
async def finish_queue_entry(
    entry_id: int,
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> QueueEntryOut:
    """Close the entry being served and complete its appointment."""
    entry = get_queue_entry_or_404(db, entry_id)
    return QueueEntryOut.model_validate(QueueAssigner(db, clock=clock).finish(entry))


@router.post(
    "/queue/branches/{branch_id}/call-next",
    response_model=QueueEntryOut,
    summary="Call next ticket",
)
async def call_next_entry(
    branch_id: int,
    service_point_id: Optional[int] = Query(None, description="Only tickets assigned to this service point"),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
) -> QueueEntryOut:
    """Call the lowest waiting ticket of the branch's queue for today."""
    entry = QueueAssigner(db, clock=clock).call_next(branch_id, service_point_id=service_point_id)
    if entry is None:
        raise ResourceNotFoundException("Waiting queue entry")
    return QueueEntryOut.model_validate(entry)
