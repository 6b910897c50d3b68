"""Appointment model definitions."""

from datetime import datetime, timedelta
from enum import Enum

from sqlalchemy import Column, Date, DateTime, ForeignKey, Index, Integer, String, Time, func, text
from backend.database import ACTIVE_SLOT_PREDICATE, Base


class AppointmentStatus(str, Enum):
    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


class AppointmentType(str, Enum):
    INDIVIDUAL = "individual"
    GROUP = "group"
    EMERGENCY = "emergency"


ACTIVE_STATUSES = (AppointmentStatus.SCHEDULED.value, AppointmentStatus.CONFIRMED.value)
TERMINAL_STATUSES = frozenset({
    AppointmentStatus.COMPLETED,
    AppointmentStatus.CANCELLED,
    AppointmentStatus.NO_SHOW,
})


class Appointment(Base):
    """A booked counseling session. Rows are never deleted; cancellation is a status."""
    __tablename__ = "appointments"

    id = Column(Integer, primary_key=True)
    student_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    counselor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    time = Column(Time, nullable=False)
    duration_minutes = Column(Integer, nullable=False, default=60)
    appointment_type = Column(String, nullable=False, default=AppointmentType.INDIVIDUAL.value)
    status = Column(String, nullable=False, default=AppointmentStatus.SCHEDULED.value)
    notes = Column(String(1000))
    student_notes = Column(String(500))
    counselor_notes = Column(String(1000))
    meeting_link = Column(String)
    location = Column(String(200))
    rating = Column(Integer)
    feedback = Column(String(1000))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    __table_args__ = (
        # Only one scheduled/confirmed appointment may hold a counselor's slot.
        Index(
            "uq_appointments_active_slot",
            "counselor_id",
            "date",
            "time",
            unique=True,
            sqlite_where=text(ACTIVE_SLOT_PREDICATE),
            postgresql_where=text(ACTIVE_SLOT_PREDICATE),
        ),
        Index("idx_appointments_counselor_date", "counselor_id", "date"),
        Index("idx_appointments_student_date", "student_id", "date"),
    )

    @property
    def starts_at(self) -> datetime:
        return datetime.combine(self.date, self.time)

    @property
    def ends_at(self) -> datetime:
        return self.starts_at + timedelta(minutes=self.duration_minutes)
