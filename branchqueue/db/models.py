"""SQLAlchemy 2.x models for branch appointments and walk-in queues."""

from datetime import date, datetime
from enum import Enum as PyEnum
from typing import Any, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from branchqueue.db.base import engine


class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


class AppointmentStatus(str, PyEnum):
    """Appointment status enumeration."""
    SCHEDULED = "scheduled"
    CHECKED_IN = "checked-in"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


TERMINAL_STATUSES = frozenset(
    {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
)


class AppointmentType(str, PyEnum):
    """How the appointment entered the system."""
    APPOINTMENT = "appointment"
    TURN = "turn"
    PUBLIC = "public"


class QueueStatus(str, PyEnum):
    """Queue entry status enumeration."""
    WAITING = "waiting"
    SERVING = "serving"
    COMPLETE = "complete"


def _enum_column(enum_cls: type[PyEnum]) -> Enum:
    # Stored by value so "checked-in" and "no-show" round-trip unchanged.
    return Enum(
        enum_cls,
        values_callable=lambda members: [member.value for member in members],
        native_enum=False,
        length=20,
    )


class Branch(Base):
    """Physical branch where services are delivered."""

    __tablename__ = "branches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    service_points: Mapped[list["ServicePoint"]] = relationship(back_populates="branch")


class Service(Base):
    """Bookable service."""

    __tablename__ = "services"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer, default=30, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)


class ServicePoint(Base):
    """Counter or desk inside a branch that attends the queue."""

    __tablename__ = "service_points"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    branch: Mapped["Branch"] = relationship(back_populates="service_points")


class Appointment(Base):
    """One scheduled visit, booked or drawn at a self-service kiosk."""

    __tablename__ = "appointments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    service_id: Mapped[int] = mapped_column(ForeignKey("services.id"), nullable=False)
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), nullable=False)
    service_point_id: Mapped[Optional[int]] = mapped_column(ForeignKey("service_points.id"), nullable=True)
    confirmation_code: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    status: Mapped[AppointmentStatus] = mapped_column(
        _enum_column(AppointmentStatus),
        default=AppointmentStatus.SCHEDULED,
        nullable=False,
        index=True,
    )
    type: Mapped[AppointmentType] = mapped_column(
        _enum_column(AppointmentType),
        default=AppointmentType.APPOINTMENT,
        nullable=False,
    )
    scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    attended_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    no_show_marked_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    auto_marked_as_no_show: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    cancellation_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    form_data: Mapped[Optional[dict[str, Any]]] = mapped_column(JSON, nullable=True)

    # Guest contact for public bookings
    guest_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    guest_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    guest_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    guest_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Reschedule lineage
    rescheduled_from_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("appointments.id"), nullable=True, index=True
    )
    rescheduled_by_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    rescheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    rescheduled_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    original_scheduled_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, server_default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    branch: Mapped["Branch"] = relationship()
    service: Mapped["Service"] = relationship()
    service_point: Mapped[Optional["ServicePoint"]] = relationship()
    rescheduled_from: Mapped[Optional["Appointment"]] = relationship(remote_side=[id])
    queue_entry: Mapped[Optional["QueueEntry"]] = relationship(back_populates="appointment", uselist=False)

    __table_args__ = (
        CheckConstraint(
            "type != 'public' OR user_id IS NULL",
            name="check_public_appointment_has_no_user",
        ),
    )

    @property
    def is_superseded(self) -> bool:
        """True once a reschedule has replaced this row with a new one."""
        return self.rescheduled_at is not None


class QueueEntry(Base):
    """A position in a branch's daily waiting line."""

    __tablename__ = "queues"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    appointment_id: Mapped[int] = mapped_column(
        ForeignKey("appointments.id"), unique=True, nullable=False
    )
    branch_id: Mapped[int] = mapped_column(ForeignKey("branches.id"), nullable=False)
    queue_date: Mapped[date] = mapped_column(Date, nullable=False)
    counter: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[QueueStatus] = mapped_column(
        _enum_column(QueueStatus),
        default=QueueStatus.WAITING,
        nullable=False,
        index=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    called_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    appointment: Mapped["Appointment"] = relationship(back_populates="queue_entry")

    __table_args__ = (
        UniqueConstraint("branch_id", "queue_date", "counter", name="uq_queue_counter_per_scope"),
        CheckConstraint("called_at IS NULL OR called_at >= created_at", name="check_called_after_created"),
        CheckConstraint(
            "completed_at IS NULL OR called_at IS NULL OR completed_at >= called_at",
            name="check_completed_after_called",
        ),
    )


class AppointmentReschedule(Base):
    """History row written for every reschedule."""

    __tablename__ = "appointment_reschedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    appointment_id: Mapped[int] = mapped_column(ForeignKey("appointments.id"), nullable=False, index=True)
    new_appointment_id: Mapped[int] = mapped_column(ForeignKey("appointments.id"), nullable=False)
    original_scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    new_scheduled_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    rescheduled_by_id: Mapped[int] = mapped_column(Integer, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


# Create all tables
def create_tables():
    """Create all database tables."""
    Base.metadata.create_all(bind=engine)
