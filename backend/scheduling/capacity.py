"""Per-counselor daily session counter.

The counter in ``counselor_daily_loads`` caches the number of non-cancelled
appointments a counselor holds on a date. It is only changed by conditional
UPDATE statements issued inside the booking or cancellation transaction, so
the database serialises concurrent writers on the same (counselor, date) row.
"""

import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend.models.appointment import Appointment, AppointmentStatus
from backend.models.daily_load import CounselorDailyLoad

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LoadDrift:
    counselor_id: int
    date: date
    stored: int
    actual: int


def count_booked_sessions(db: Session, counselor_id: int, day: date) -> int:
    return db.query(func.count(Appointment.id)).filter(
        Appointment.counselor_id == counselor_id,
        Appointment.date == day,
        Appointment.status != AppointmentStatus.CANCELLED.value,
    ).scalar() or 0


def _load_filter(counselor_id: int, day: date):
    return (
        CounselorDailyLoad.counselor_id == counselor_id,
        CounselorDailyLoad.date == day,
    )


def ensure_daily_load(db: Session, counselor_id: int, day: date) -> None:
    """Create the counter row if it is missing, seeded from the ledger.

    Must run before the caller writes anything in the current transaction:
    losing the insert race to another request rolls the transaction back.
    """
    exists = db.query(CounselorDailyLoad.id).filter(*_load_filter(counselor_id, day)).first()
    if exists is not None:
        return

    db.add(CounselorDailyLoad(
        counselor_id=counselor_id,
        date=day,
        session_count=count_booked_sessions(db, counselor_id, day),
    ))
    try:
        db.flush()
    except IntegrityError:
        # Another request created the row first; theirs is used from here on.
        db.rollback()


def current_sessions(db: Session, counselor_id: int, day: date) -> int:
    stored = db.query(CounselorDailyLoad.session_count).filter(*_load_filter(counselor_id, day)).scalar()
    if stored is None:
        return count_booked_sessions(db, counselor_id, day)
    return stored


def try_reserve_session(db: Session, counselor_id: int, day: date, max_sessions: int) -> bool:
    """Increment the counter only while it is below ``max_sessions``."""
    updated = db.query(CounselorDailyLoad).filter(
        *_load_filter(counselor_id, day),
        CounselorDailyLoad.session_count < max_sessions,
    ).update(
        {CounselorDailyLoad.session_count: CounselorDailyLoad.session_count + 1},
        synchronize_session=False,
    )
    return updated == 1


def release_session(db: Session, counselor_id: int, day: date) -> None:
    db.query(CounselorDailyLoad).filter(
        *_load_filter(counselor_id, day),
        CounselorDailyLoad.session_count > 0,
    ).update(
        {CounselorDailyLoad.session_count: CounselorDailyLoad.session_count - 1},
        synchronize_session=False,
    )


def reconcile_daily_loads(db: Session, counselor_id: Optional[int] = None) -> list[LoadDrift]:
    """Recompute every stored counter from the appointments and fix drift.

    Returns the rows whose stored value disagreed with the ledger. Dates that
    have appointments but no counter row are created.
    """
    actual_query = db.query(
        Appointment.counselor_id,
        Appointment.date,
        func.count(Appointment.id),
    ).filter(
        Appointment.status != AppointmentStatus.CANCELLED.value,
    )
    load_query = db.query(CounselorDailyLoad)
    if counselor_id is not None:
        actual_query = actual_query.filter(Appointment.counselor_id == counselor_id)
        load_query = load_query.filter(CounselorDailyLoad.counselor_id == counselor_id)

    actual_counts = {
        (row_counselor_id, row_date): count
        for row_counselor_id, row_date, count in actual_query.group_by(Appointment.counselor_id, Appointment.date)
    }
    stored_rows = {(row.counselor_id, row.date): row for row in load_query.all()}

    drift: list[LoadDrift] = []
    for key in sorted(set(actual_counts) | set(stored_rows)):
        actual = actual_counts.get(key, 0)
        row = stored_rows.get(key)
        if row is None:
            if actual == 0:
                continue
            row = CounselorDailyLoad(counselor_id=key[0], date=key[1], session_count=0)
            db.add(row)
        if row.session_count != actual:
            drift.append(LoadDrift(counselor_id=key[0], date=key[1], stored=row.session_count, actual=actual))
            row.session_count = actual

    db.commit()

    for item in drift:
        logger.warning(
            'Daily load drift corrected for counselor %s on %s: stored %s, actual %s',
            item.counselor_id,
            item.date.isoformat(),
            item.stored,
            item.actual,
        )
    return drift
