"""Appointment status transitions and post-booking changes."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.core import config
from backend.core.errors import InvalidRating, InvalidTransition, NotFound, Unauthorized
from backend.models.appointment import Appointment, AppointmentStatus, TERMINAL_STATUSES
from backend.models.counselor import Counselor
from backend.models.user import ROLE_ADMIN, ROLE_COUNSELOR, ROLE_STUDENT
from backend.scheduling import capacity

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS = {
    AppointmentStatus.SCHEDULED: {
        AppointmentStatus.CONFIRMED,
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    },
    AppointmentStatus.CONFIRMED: {
        AppointmentStatus.CANCELLED,
        AppointmentStatus.COMPLETED,
        AppointmentStatus.NO_SHOW,
    },
}

# Transitions a student may never trigger.
COUNSELOR_ONLY_TARGETS = {
    AppointmentStatus.CONFIRMED,
    AppointmentStatus.COMPLETED,
    AppointmentStatus.NO_SHOW,
}

EDITABLE_FIELDS = {
    ROLE_STUDENT: frozenset({'notes', 'student_notes'}),
    ROLE_COUNSELOR: frozenset({'counselor_notes', 'meeting_link', 'location'}),
    ROLE_ADMIN: frozenset({'notes', 'student_notes', 'counselor_notes', 'meeting_link', 'location'}),
}


@dataclass(frozen=True)
class Actor:
    id: int
    role: str

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN


@dataclass(frozen=True)
class AppointmentPage:
    appointments: list[Appointment]
    total: int
    page: int
    limit: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.limit - 1) // self.limit if self.limit else 0

    @property
    def has_next(self) -> bool:
        return (self.page - 1) * self.limit + len(self.appointments) < self.total

    @property
    def has_prev(self) -> bool:
        return self.page > 1


def _is_participant(appointment: Appointment, actor: Actor) -> bool:
    return actor.is_admin or actor.id in (appointment.student_id, appointment.counselor_id)


def get_appointment(db: Session, appointment_id: int, actor: Actor) -> Appointment:
    appointment = db.get(Appointment, appointment_id)
    if appointment is None:
        raise NotFound('Appointment not found.', appointment_id=appointment_id)
    if not _is_participant(appointment, actor):
        raise Unauthorized('Access denied.', appointment_id=appointment_id)
    return appointment


def list_appointments(
    db: Session,
    actor: Actor,
    status: Optional[AppointmentStatus] = None,
    appointment_type: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
) -> AppointmentPage:
    query = db.query(Appointment)
    if actor.role == ROLE_STUDENT:
        query = query.filter(Appointment.student_id == actor.id)
    elif actor.role == ROLE_COUNSELOR:
        query = query.filter(Appointment.counselor_id == actor.id)
    elif not actor.is_admin:
        raise Unauthorized('Access denied.')

    if status is not None:
        query = query.filter(Appointment.status == AppointmentStatus(status).value)
    if appointment_type is not None:
        query = query.filter(Appointment.appointment_type == appointment_type)

    total = query.count()
    appointments = query.order_by(
        Appointment.date.asc(),
        Appointment.time.asc(),
        Appointment.id.asc(),
    ).offset((page - 1) * limit).limit(limit).all()

    return AppointmentPage(appointments=appointments, total=total, page=page, limit=limit)


def _ensure_not_terminal(appointment: Appointment) -> AppointmentStatus:
    current = AppointmentStatus(appointment.status)
    if current in TERMINAL_STATUSES:
        raise InvalidTransition(
            f'Appointment is already {current.value} and cannot change status.',
            appointment_id=appointment.id,
            status=current.value,
        )
    return current


def _cancel(db: Session, appointment: Appointment, actor: Actor, now: datetime, notice_minutes: int) -> None:
    _ensure_not_terminal(appointment)

    if appointment.starts_at <= now:
        raise InvalidTransition(
            'Only upcoming appointments can be cancelled.',
            appointment_id=appointment.id,
        )

    if actor.role == ROLE_STUDENT and appointment.starts_at - now < timedelta(minutes=notice_minutes):
        raise InvalidTransition(
            f'Appointment cannot be cancelled less than {notice_minutes} minutes before start time.',
            appointment_id=appointment.id,
        )

    capacity.ensure_daily_load(db, appointment.counselor_id, appointment.date)
    appointment.status = AppointmentStatus.CANCELLED.value
    capacity.release_session(db, appointment.counselor_id, appointment.date)


def cancel_appointment(
    db: Session,
    appointment_id: int,
    actor: Actor,
    now: datetime,
    notice_minutes: Optional[int] = None,
) -> Appointment:
    """Cancel an upcoming appointment and give its capacity back."""
    if notice_minutes is None:
        notice_minutes = config.STUDENT_CANCELLATION_NOTICE_MINUTES

    appointment = get_appointment(db, appointment_id, actor)
    try:
        _cancel(db, appointment, actor, now, notice_minutes)
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(appointment)
    logger.info('Appointment cancelled: %s by user %s', appointment_id, actor.id)
    return appointment


def transition_appointment(
    db: Session,
    appointment_id: int,
    actor: Actor,
    target_status: AppointmentStatus,
    now: datetime,
) -> Appointment:
    target = AppointmentStatus(target_status)
    appointment = get_appointment(db, appointment_id, actor)

    if target == AppointmentStatus.CANCELLED:
        return cancel_appointment(db, appointment_id, actor, now)

    current = _ensure_not_terminal(appointment)
    if target not in ALLOWED_TRANSITIONS[current]:
        raise InvalidTransition(
            f'Cannot change appointment from {current.value} to {target.value}.',
            appointment_id=appointment_id,
            status=current.value,
            target_status=target.value,
        )

    if target in COUNSELOR_ONLY_TARGETS and actor.role == ROLE_STUDENT:
        raise InvalidTransition(
            f'Only the counselor can mark an appointment as {target.value}.',
            appointment_id=appointment_id,
        )

    if target == AppointmentStatus.COMPLETED and now < appointment.starts_at:
        raise InvalidTransition(
            'Appointment cannot be completed before its scheduled time.',
            appointment_id=appointment_id,
        )

    if target == AppointmentStatus.NO_SHOW and now <= appointment.starts_at:
        raise InvalidTransition(
            'Appointment cannot be marked as a no-show before its scheduled time has passed.',
            appointment_id=appointment_id,
        )

    appointment.status = target.value
    if target == AppointmentStatus.COMPLETED:
        counselor = db.get(Counselor, appointment.counselor_id)
        if counselor is not None:
            counselor.total_sessions = (counselor.total_sessions or 0) + 1

    db.commit()
    db.refresh(appointment)
    logger.info(
        'Appointment %s moved from %s to %s by user %s',
        appointment_id,
        current.value,
        target.value,
        actor.id,
    )
    return appointment


def rate_appointment(
    db: Session,
    appointment_id: int,
    actor: Actor,
    rating: Any,
    feedback: Optional[str] = None,
) -> Appointment:
    appointment = get_appointment(db, appointment_id, actor)
    if appointment.student_id != actor.id:
        raise Unauthorized('Only the student can rate this appointment.', appointment_id=appointment_id)

    if appointment.status != AppointmentStatus.COMPLETED.value:
        raise InvalidRating('Can only rate completed appointments.', status=appointment.status)

    if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
        raise InvalidRating('Rating must be a whole number from 1 to 5.', rating=rating)

    appointment.rating = rating
    appointment.feedback = feedback
    db.flush()

    counselor = db.get(Counselor, appointment.counselor_id)
    if counselor is not None:
        average = db.query(func.avg(Appointment.rating)).filter(
            Appointment.counselor_id == appointment.counselor_id,
            Appointment.rating.is_not(None),
        ).scalar()
        counselor.rating = round(float(average or 0), 2)

    db.commit()
    db.refresh(appointment)
    logger.info('Appointment rated: %s with rating %s by user %s', appointment_id, rating, actor.id)
    return appointment


def update_appointment_details(
    db: Session,
    appointment_id: int,
    actor: Actor,
    changes: Mapping[str, Any],
) -> Appointment:
    """Apply the note/link/location changes this actor is allowed to make."""
    appointment = get_appointment(db, appointment_id, actor)
    allowed = EDITABLE_FIELDS.get(actor.role, frozenset())

    applied = sorted(field for field in changes if field in allowed)
    for field in applied:
        setattr(appointment, field, changes[field])

    if applied:
        db.commit()
        db.refresh(appointment)
        logger.info('Appointment updated: %s by user %s (%s)', appointment_id, actor.id, ', '.join(applied))
    return appointment
