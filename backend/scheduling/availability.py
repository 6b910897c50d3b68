"""Counselor profiles, weekly availability templates and slot queries."""

import logging
from datetime import date, datetime, time
from typing import Optional, Sequence

from sqlalchemy.orm import Session

from backend.core import config
from backend.core.errors import InvalidAvailability, NotFound
from backend.models.appointment import Appointment, AppointmentStatus
from backend.models.counselor import AvailabilityTemplate, Counselor
from backend.models.user import ROLE_COUNSELOR, User
from backend.scheduling import capacity
from backend.scheduling.slots import (
    Slot,
    WeeklyWindow,
    check_booking_window,
    day_of_week,
    generate_slots,
    is_on_granularity,
    minutes_of_day,
)

logger = logging.getLogger(__name__)


def get_counselor(db: Session, counselor_id: int) -> Counselor:
    counselor = db.get(Counselor, counselor_id)
    if counselor is None:
        raise NotFound('Counselor not found.', counselor_id=counselor_id)
    return counselor


def save_counselor_profile(
    db: Session,
    counselor_id: int,
    max_sessions_per_day: Optional[int] = None,
    is_available: Optional[bool] = None,
) -> Counselor:
    """Create or update the scheduling profile of a counselor account."""
    user = db.get(User, counselor_id)
    if user is None or user.role != ROLE_COUNSELOR:
        raise NotFound('Counselor account not found.', counselor_id=counselor_id)

    if max_sessions_per_day is not None and not 1 <= max_sessions_per_day <= config.MAX_SESSIONS_PER_DAY_LIMIT:
        raise InvalidAvailability(
            f'Maximum sessions per day must be between 1 and {config.MAX_SESSIONS_PER_DAY_LIMIT}.',
            max_sessions_per_day=max_sessions_per_day,
        )

    counselor = db.get(Counselor, counselor_id)
    if counselor is None:
        counselor = Counselor(
            user_id=counselor_id,
            max_sessions_per_day=max_sessions_per_day or config.DEFAULT_MAX_SESSIONS_PER_DAY,
            is_available=True if is_available is None else is_available,
        )
        db.add(counselor)
    else:
        if max_sessions_per_day is not None:
            counselor.max_sessions_per_day = max_sessions_per_day
        if is_available is not None:
            counselor.is_available = is_available

    db.commit()
    db.refresh(counselor)
    logger.info('Counselor profile saved for counselor %s', counselor_id)
    return counselor


def validate_windows(windows: Sequence[WeeklyWindow], granularity_minutes: int) -> None:
    seen_days: set[int] = set()

    for window in windows:
        if not 0 <= window.day_of_week <= 6:
            raise InvalidAvailability('Invalid day of week.', day_of_week=window.day_of_week)
        if window.day_of_week in seen_days:
            raise InvalidAvailability(
                'Only one availability window is allowed per day.',
                day_of_week=window.day_of_week,
            )
        seen_days.add(window.day_of_week)

        if minutes_of_day(window.start_time) >= minutes_of_day(window.end_time):
            raise InvalidAvailability('Start time must be before end time.', day_of_week=window.day_of_week)

        if not (
            is_on_granularity(window.start_time, granularity_minutes)
            and is_on_granularity(window.end_time, granularity_minutes)
        ):
            raise InvalidAvailability(
                f'Availability must start and end on {granularity_minutes}-minute boundaries.',
                day_of_week=window.day_of_week,
            )


def set_availability(
    db: Session,
    counselor_id: int,
    windows: Sequence[WeeklyWindow],
    granularity_minutes: Optional[int] = None,
) -> list[AvailabilityTemplate]:
    """Replace the counselor's whole weekly template set."""
    granularity = granularity_minutes or config.SLOT_GRANULARITY_MINUTES
    counselor = get_counselor(db, counselor_id)
    validate_windows(windows, granularity)

    counselor.availability = []
    # Old rows must be gone before new ones reuse their (counselor, day) keys.
    db.flush()
    counselor.availability = [
        AvailabilityTemplate(
            counselor_id=counselor_id,
            day_of_week=window.day_of_week,
            start_time=window.start_time,
            end_time=window.end_time,
            is_enabled=window.is_enabled,
        )
        for window in windows
    ]
    db.commit()

    logger.info('Availability replaced for counselor %s (%s windows)', counselor_id, len(windows))
    return get_availability(db, counselor_id)


def get_availability(db: Session, counselor_id: int) -> list[AvailabilityTemplate]:
    return db.query(AvailabilityTemplate).filter(
        AvailabilityTemplate.counselor_id == counselor_id,
    ).order_by(AvailabilityTemplate.day_of_week.asc()).all()


def get_window_for_date(db: Session, counselor_id: int, target_date: date) -> Optional[AvailabilityTemplate]:
    return db.query(AvailabilityTemplate).filter(
        AvailabilityTemplate.counselor_id == counselor_id,
        AvailabilityTemplate.day_of_week == day_of_week(target_date),
    ).first()


def get_booked_times(db: Session, counselor_id: int, target_date: date) -> list[time]:
    rows = db.query(Appointment.time).filter(
        Appointment.counselor_id == counselor_id,
        Appointment.date == target_date,
        Appointment.status != AppointmentStatus.CANCELLED.value,
    ).all()
    return [row.time for row in rows]


def get_available_slots(
    db: Session,
    counselor_id: int,
    target_date: date,
    now: datetime,
    granularity_minutes: Optional[int] = None,
    horizon_days: Optional[int] = None,
) -> list[Slot]:
    """Slots for one counselor and date, marked against the current ledger."""
    granularity = granularity_minutes or config.SLOT_GRANULARITY_MINUTES
    check_booking_window(target_date, now, horizon_days or config.BOOKING_HORIZON_DAYS)

    counselor = get_counselor(db, counselor_id)
    if not counselor.is_available:
        return []

    window = get_window_for_date(db, counselor_id, target_date)
    remaining = counselor.max_sessions_per_day - capacity.current_sessions(db, counselor_id, target_date)
    slots = generate_slots(
        window,
        target_date,
        granularity,
        booked_times=get_booked_times(db, counselor_id, target_date),
        capacity_remaining=remaining,
    )

    if target_date != now.date():
        return slots

    return [
        Slot(start_time=slot.start_time, duration_minutes=slot.duration_minutes, available=False)
        if slot.available and datetime.combine(target_date, slot.start_time) <= now
        else slot
        for slot in slots
    ]


def find_available_counselors(
    db: Session,
    on_date: Optional[date] = None,
    at_time: Optional[time] = None,
) -> list[Counselor]:
    """Counselors open for booking, best rated first.

    With both ``on_date`` and ``at_time`` only counselors whose enabled window
    for that weekday contains the time are returned.
    """
    counselors = db.query(Counselor).filter(
        Counselor.is_available.is_(True),
    ).order_by(Counselor.rating.desc(), Counselor.total_sessions.desc(), Counselor.user_id.asc()).all()

    if on_date is None or at_time is None:
        return counselors

    weekday = day_of_week(on_date)
    requested = minutes_of_day(at_time)
    matching: list[Counselor] = []
    for counselor in counselors:
        window = next((item for item in counselor.availability if item.day_of_week == weekday), None)
        if window is None or not window.is_enabled:
            continue
        if minutes_of_day(window.start_time) <= requested < minutes_of_day(window.end_time):
            matching.append(counselor)
    return matching
