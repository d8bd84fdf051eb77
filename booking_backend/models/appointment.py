"""Appointment model definitions."""

import enum
from datetime import datetime

from sqlalchemy import Column, Date, DateTime, Enum, ForeignKey, Index, Integer, String, Time, text
from booking_backend.database import Base


class AppointmentStatus(str, enum.Enum):
    PENDING = 'PENDING'
    CONFIRMED = 'CONFIRMED'
    CANCELLED = 'CANCELLED'
    COMPLETED = 'COMPLETED'
    NO_SHOW = 'NO_SHOW'


ALLOWED_TRANSITIONS: dict[AppointmentStatus, frozenset[AppointmentStatus]] = {
    AppointmentStatus.PENDING: frozenset({AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED}),
    AppointmentStatus.CONFIRMED: frozenset(
        {AppointmentStatus.COMPLETED, AppointmentStatus.CANCELLED, AppointmentStatus.NO_SHOW}
    ),
    AppointmentStatus.COMPLETED: frozenset(),
    AppointmentStatus.CANCELLED: frozenset(),
    AppointmentStatus.NO_SHOW: frozenset(),
}

# Statuses that still hold their slot.
SLOT_HOLDING_STATUSES = frozenset(status for status in AppointmentStatus if status is not AppointmentStatus.CANCELLED)

RESCHEDULABLE_STATUSES = frozenset({AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED})


def can_transition(current: AppointmentStatus, requested: AppointmentStatus) -> bool:
    return requested in ALLOWED_TRANSITIONS.get(current, frozenset())


def is_terminal(status: AppointmentStatus) -> bool:
    return not ALLOWED_TRANSITIONS.get(status)


class Appointment(Base):
    """Represents a booked practitioner slot."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    practitioner_id = Column(Integer, ForeignKey("practitioners.id"), nullable=False)
    requester_id = Column(Integer, ForeignKey("requesters.id"), nullable=False)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    status = Column(
        Enum(AppointmentStatus, native_enum=False, length=20),
        nullable=False,
        default=AppointmentStatus.PENDING,
    )
    reason = Column(String(500))
    notes = Column(String(1000))
    created_at = Column(DateTime, nullable=False, default=datetime.now)
    updated_at = Column(DateTime, nullable=False, default=datetime.now, onupdate=datetime.now)

    __table_args__ = (
        Index("idx_appointments_practitioner_date", "practitioner_id", "date"),
        Index("idx_appointments_requester_date", "requester_id", "date"),
        Index("idx_appointments_status", "status"),
        # One slot-holding booking per practitioner, date and time.
        Index(
            "uq_appointments_active_slot",
            "practitioner_id",
            "date",
            "time",
            unique=True,
            postgresql_where=text("status != 'CANCELLED'"),
            sqlite_where=text("status != 'CANCELLED'"),
        ),
    )

    def __repr__(self) -> str:
        return (
            f"<Appointment(id={self.id}, practitioner={self.practitioner_id}, "
            f"slot={self.date} {self.time}, status={self.status})>"
        )
