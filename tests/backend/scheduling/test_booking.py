from datetime import date, datetime, time

import pytest
from sqlalchemy.exc import IntegrityError

from backend.core.errors import (
    CapacityExceeded,
    InvalidDate,
    NoAvailability,
    SlotMisaligned,
    SlotUnavailable,
)
from backend.models.appointment import Appointment, AppointmentType
from backend.models.user import ROLE_STUDENT
from backend.scheduling import availability, booking, capacity, lifecycle
from backend.scheduling.lifecycle import Actor

COUNSELOR_ID = 10
STUDENT_ID = 1
OTHER_STUDENT_ID = 2
NOW = datetime(2025, 3, 3, 8, 0)
MONDAY = date(2025, 3, 10)


def book(db, appointment_time=time(9, 0), appointment_date=MONDAY, student_id=STUDENT_ID, **kwargs):
    return booking.book_appointment(
        db,
        student_id=student_id,
        counselor_id=COUNSELOR_ID,
        appointment_date=appointment_date,
        appointment_time=appointment_time,
        now=kwargs.pop('now', NOW),
        **kwargs,
    )


def active_rows(db, appointment_time=time(9, 0)):
    return db.query(Appointment).filter(
        Appointment.counselor_id == COUNSELOR_ID,
        Appointment.date == MONDAY,
        Appointment.time == appointment_time,
        Appointment.status.in_(('scheduled', 'confirmed')),
    ).count()


def test_book_appointment_creates_scheduled_appointment(db, counselor) -> None:
    appointment = book(db, notes='First visit', appointment_type=AppointmentType.GROUP)

    assert appointment.id is not None
    assert appointment.status == 'scheduled'
    assert appointment.appointment_type == 'group'
    assert appointment.duration_minutes == 60
    assert appointment.notes == 'First visit'
    assert capacity.current_sessions(db, COUNSELOR_ID, MONDAY) == 1


def test_booked_slot_shows_taken_until_cancelled(db, counselor) -> None:
    appointment = book(db)

    slots = availability.get_available_slots(db, COUNSELOR_ID, MONDAY, NOW)
    assert [(slot.start_time, slot.available) for slot in slots] == [
        (time(9, 0), False),
        (time(10, 0), True),
        (time(11, 0), True),
    ]

    lifecycle.cancel_appointment(db, appointment.id, Actor(STUDENT_ID, ROLE_STUDENT), NOW)

    slots = availability.get_available_slots(db, COUNSELOR_ID, MONDAY, NOW)
    assert all(slot.available for slot in slots)


def test_cancelled_slot_can_be_booked_again(db, counselor) -> None:
    first = book(db)
    lifecycle.cancel_appointment(db, first.id, Actor(STUDENT_ID, ROLE_STUDENT), NOW)

    second = book(db, student_id=OTHER_STUDENT_ID)

    assert second.id != first.id
    assert active_rows(db) == 1


@pytest.mark.parametrize(
    ('appointment_date', 'appointment_time', 'now'),
    [
        (date(2025, 3, 2), time(9, 0), NOW),
        (date(2025, 4, 7), time(9, 0), NOW),
        (MONDAY, time(9, 0), datetime(2025, 3, 10, 9, 30)),
    ],
)
def test_book_appointment_rejects_invalid_dates(db, counselor, appointment_date, appointment_time, now) -> None:
    with pytest.raises(InvalidDate):
        book(db, appointment_time=appointment_time, appointment_date=appointment_date, now=now)


def test_book_appointment_rejects_day_without_template(db, counselor) -> None:
    with pytest.raises(NoAvailability):
        book(db, appointment_date=date(2025, 3, 11))


def test_book_appointment_rejects_disabled_window(db, make_counselor) -> None:
    make_counselor(windows=((1, time(9, 0), time(12, 0), False),))

    with pytest.raises(NoAvailability):
        book(db)


def test_book_appointment_rejects_unavailable_counselor(db, make_counselor) -> None:
    make_counselor(is_available=False)

    with pytest.raises(NoAvailability):
        book(db)


@pytest.mark.parametrize('appointment_time', [time(8, 0), time(12, 0), time(12, 30)])
def test_book_appointment_rejects_time_outside_window(db, counselor, appointment_time) -> None:
    with pytest.raises(NoAvailability):
        book(db, appointment_time=appointment_time)


@pytest.mark.parametrize('appointment_time', [time(9, 30), time(11, 30), time(11, 59)])
def test_book_appointment_rejects_misaligned_time(db, counselor, appointment_time) -> None:
    with pytest.raises(SlotMisaligned):
        book(db, appointment_time=appointment_time)


def test_book_appointment_rejects_slot_running_past_unaligned_window_end(db, make_counselor) -> None:
    make_counselor(windows=((1, time(9, 0), time(11, 30)),))

    with pytest.raises(NoAvailability):
        book(db, appointment_time=time(11, 0))


@pytest.mark.parametrize('duration', [10, 90])
def test_book_appointment_rejects_duration_that_does_not_fit_slot(db, counselor, duration: int) -> None:
    with pytest.raises(SlotMisaligned):
        book(db, duration_minutes=duration)


def test_book_appointment_rejects_taken_slot(db, counselor) -> None:
    book(db)

    with pytest.raises(SlotUnavailable):
        book(db, student_id=OTHER_STUDENT_ID)

    assert active_rows(db) == 1
    assert capacity.current_sessions(db, COUNSELOR_ID, MONDAY) == 1


def test_slot_shown_free_then_booked_by_another_session_is_rechecked_at_booking(session_factory, counselor) -> None:
    first_session = session_factory()
    second_session = session_factory()
    try:
        shown = availability.get_available_slots(second_session, COUNSELOR_ID, MONDAY, NOW)
        assert shown[0].available

        book(first_session)

        with pytest.raises(SlotUnavailable):
            book(second_session, student_id=OTHER_STUDENT_ID)
    finally:
        first_session.close()
        second_session.close()


def test_database_constraint_catches_a_missed_conflict_check(db, counselor, monkeypatch) -> None:
    book(db)
    monkeypatch.setattr(booking, '_find_slot_holder', lambda *args: None)

    with pytest.raises(SlotUnavailable):
        book(db, student_id=OTHER_STUDENT_ID)

    assert active_rows(db) == 1
    assert capacity.current_sessions(db, COUNSELOR_ID, MONDAY) == 1


def test_ledger_refuses_two_active_appointments_for_one_slot(db, counselor) -> None:
    db.add(Appointment(student_id=STUDENT_ID, counselor_id=COUNSELOR_ID, date=MONDAY, time=time(9, 0), status='scheduled'))
    db.commit()

    db.add(Appointment(student_id=OTHER_STUDENT_ID, counselor_id=COUNSELOR_ID, date=MONDAY, time=time(9, 0), status='confirmed'))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()

    db.add(Appointment(student_id=OTHER_STUDENT_ID, counselor_id=COUNSELOR_ID, date=MONDAY, time=time(9, 0), status='cancelled'))
    db.commit()


def test_capacity_limit_applies_regardless_of_time(db, make_counselor) -> None:
    make_counselor(max_sessions_per_day=1)
    book(db)

    for requested in (time(10, 0), time(11, 0)):
        with pytest.raises(CapacityExceeded):
            book(db, appointment_time=requested, student_id=OTHER_STUDENT_ID)

    slots = availability.get_available_slots(db, COUNSELOR_ID, MONDAY, NOW)
    assert not any(slot.available for slot in slots)


def test_cancelling_releases_capacity(db, make_counselor) -> None:
    make_counselor(max_sessions_per_day=2)
    first = book(db, appointment_time=time(9, 0))
    book(db, appointment_time=time(10, 0))

    with pytest.raises(CapacityExceeded):
        book(db, appointment_time=time(11, 0), student_id=OTHER_STUDENT_ID)

    lifecycle.cancel_appointment(db, first.id, Actor(STUDENT_ID, ROLE_STUDENT), NOW)
    third = book(db, appointment_time=time(11, 0), student_id=OTHER_STUDENT_ID)

    assert third.status == 'scheduled'
    assert capacity.current_sessions(db, COUNSELOR_ID, MONDAY) == 2


def test_capacity_counter_is_seeded_from_existing_appointments(db, make_counselor) -> None:
    make_counselor(max_sessions_per_day=1)
    db.add(Appointment(student_id=STUDENT_ID, counselor_id=COUNSELOR_ID, date=MONDAY, time=time(9, 0), status='scheduled'))
    db.commit()

    with pytest.raises(CapacityExceeded):
        book(db, appointment_time=time(10, 0), student_id=OTHER_STUDENT_ID)
