"""Turns a slot selection into a persisted appointment.

All checks and writes for one booking run in a single transaction. The slot
check is repeated by the database itself: ``uq_appointments_active_slot``
rejects a second scheduled/confirmed row for the same counselor, date and
time, and the daily counter only moves through a conditional UPDATE. A
request that loses either race gets a normal scheduling error and leaves no
partial writes behind.
"""

import logging
from datetime import date, datetime, time
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.core import config
from backend.core.errors import (
    CapacityExceeded,
    InvalidDate,
    NoAvailability,
    SchedulingError,
    SlotMisaligned,
    SlotUnavailable,
)
from backend.models.appointment import Appointment, AppointmentStatus, AppointmentType
from backend.models.counselor import Counselor
from backend.scheduling import capacity
from backend.scheduling.availability import get_window_for_date
from backend.scheduling.slots import (
    check_booking_window,
    is_slot_start,
    window_contains_slot,
    window_contains_time,
)

logger = logging.getLogger(__name__)

SLOT_TAKEN_MESSAGE = 'This time slot is already booked. Please choose another slot.'


def _find_slot_holder(db: Session, counselor_id: int, appointment_date: date, appointment_time: time):
    return db.query(Appointment.id).filter(
        Appointment.counselor_id == counselor_id,
        Appointment.date == appointment_date,
        Appointment.time == appointment_time,
        Appointment.status != AppointmentStatus.CANCELLED.value,
    ).first()


def _check_slot_is_bookable(
    db: Session,
    counselor_id: int,
    appointment_date: date,
    appointment_time: time,
    duration_minutes: int,
    granularity_minutes: int,
) -> Counselor:
    counselor = db.get(Counselor, counselor_id)
    if counselor is None or not counselor.is_available:
        raise NoAvailability('Counselor is not accepting appointments.', counselor_id=counselor_id)

    window = get_window_for_date(db, counselor_id, appointment_date)
    if window is None or not window.is_enabled:
        raise NoAvailability(
            'Counselor has no availability on this day.',
            counselor_id=counselor_id,
            date=appointment_date.isoformat(),
        )

    if not window_contains_time(window, appointment_time):
        raise NoAvailability(
            'Requested time is outside the counselor\'s working hours.',
            counselor_id=counselor_id,
            window_start=window.start_time.isoformat(timespec='minutes'),
            window_end=window.end_time.isoformat(timespec='minutes'),
        )

    if not is_slot_start(window, appointment_time, granularity_minutes):
        raise SlotMisaligned(
            f'Appointments must start on {granularity_minutes}-minute slot boundaries.',
            time=appointment_time.isoformat(timespec='minutes'),
        )

    # Only reachable for templates saved before end times had to be aligned.
    if not window_contains_slot(window, appointment_time, granularity_minutes):
        raise NoAvailability(
            'Requested slot runs past the end of the counselor\'s working hours.',
            counselor_id=counselor_id,
            window_end=window.end_time.isoformat(timespec='minutes'),
        )

    if not config.MIN_APPOINTMENT_MINUTES <= duration_minutes <= granularity_minutes:
        raise SlotMisaligned(
            f'Duration must be between {config.MIN_APPOINTMENT_MINUTES} and {granularity_minutes} minutes.',
            duration_minutes=duration_minutes,
        )

    return counselor


def book_appointment(
    db: Session,
    *,
    student_id: int,
    counselor_id: int,
    appointment_date: date,
    appointment_time: time,
    now: datetime,
    duration_minutes: Optional[int] = None,
    appointment_type: AppointmentType = AppointmentType.INDIVIDUAL,
    notes: Optional[str] = None,
    student_notes: Optional[str] = None,
    granularity_minutes: Optional[int] = None,
    horizon_days: Optional[int] = None,
) -> Appointment:
    """Book a slot for a student.

    Raises, in precondition order: InvalidDate, NoAvailability or
    SlotMisaligned, SlotUnavailable, CapacityExceeded. Storage failures
    propagate as SQLAlchemyError after the session is rolled back.
    """
    granularity = granularity_minutes or config.SLOT_GRANULARITY_MINUTES
    duration = duration_minutes or granularity
    appointment_time = appointment_time.replace(second=0, microsecond=0)

    try:
        check_booking_window(appointment_date, now, horizon_days or config.BOOKING_HORIZON_DAYS)
        if datetime.combine(appointment_date, appointment_time) <= now:
            raise InvalidDate(
                'Appointment must be scheduled for a future date and time.',
                date=appointment_date.isoformat(),
                time=appointment_time.isoformat(timespec='minutes'),
            )

        _check_slot_is_bookable(db, counselor_id, appointment_date, appointment_time, duration, granularity)

        if _find_slot_holder(db, counselor_id, appointment_date, appointment_time) is not None:
            raise SlotUnavailable(SLOT_TAKEN_MESSAGE, time=appointment_time.isoformat(timespec='minutes'))

        capacity.ensure_daily_load(db, counselor_id, appointment_date)
        counselor = db.get(Counselor, counselor_id)
        if not capacity.try_reserve_session(db, counselor_id, appointment_date, counselor.max_sessions_per_day):
            raise CapacityExceeded(
                'Counselor has reached maximum sessions for this day.',
                counselor_id=counselor_id,
                date=appointment_date.isoformat(),
                max_sessions_per_day=counselor.max_sessions_per_day,
            )

        appointment = Appointment(
            student_id=student_id,
            counselor_id=counselor_id,
            date=appointment_date,
            time=appointment_time,
            duration_minutes=duration,
            appointment_type=AppointmentType(appointment_type).value,
            status=AppointmentStatus.SCHEDULED.value,
            notes=notes,
            student_notes=student_notes,
        )
        db.add(appointment)
        db.flush()
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise SlotUnavailable(SLOT_TAKEN_MESSAGE, time=appointment_time.isoformat(timespec='minutes')) from exc
    except SchedulingError:
        db.rollback()
        raise

    db.refresh(appointment)
    logger.info(
        'New appointment created: %s by student %s with counselor %s on %s %s',
        appointment.id,
        student_id,
        counselor_id,
        appointment_date.isoformat(),
        appointment_time.isoformat(timespec='minutes'),
    )
    return appointment
