from datetime import date, datetime, time

from fastapi import APIRouter, Depends, Query, Response, status
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import as_actor, get_current_user, require_role
from backend.core import config
from backend.core.clock import get_now
from backend.core.errors import SchedulingError
from backend.database import get_db
from backend.models.appointment import AppointmentStatus, AppointmentType
from backend.models.user import ROLE_ADMIN, ROLE_STUDENT, User
from backend.routes.availability_routes import database_unavailable, ensure_database_ready
from backend.scheduling import booking, capacity, lifecycle

router = APIRouter(tags=['appointments'])


def _normalize_text(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip()
    return normalized or None


class CreateAppointmentRequest(BaseModel):
    counselor_id: int
    date: date
    time: time
    duration_minutes: int | None = Field(
        default=None,
        ge=config.MIN_APPOINTMENT_MINUTES,
        le=config.SLOT_GRANULARITY_MINUTES,
    )
    appointment_type: AppointmentType = AppointmentType.INDIVIDUAL
    notes: str | None = Field(default=None, max_length=config.MAX_NOTES_LENGTH)
    student_notes: str | None = Field(default=None, max_length=config.MAX_STUDENT_NOTES_LENGTH)

    @field_validator('appointment_type', mode='before')
    @classmethod
    def normalize_appointment_type(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value

    @field_validator('notes', 'student_notes')
    @classmethod
    def normalize_notes(cls, value: str | None) -> str | None:
        return _normalize_text(value)


class UpdateAppointmentRequest(BaseModel):
    notes: str | None = Field(default=None, max_length=config.MAX_NOTES_LENGTH)
    student_notes: str | None = Field(default=None, max_length=config.MAX_STUDENT_NOTES_LENGTH)
    counselor_notes: str | None = Field(default=None, max_length=config.MAX_COUNSELOR_NOTES_LENGTH)
    meeting_link: str | None = None
    location: str | None = Field(default=None, max_length=config.MAX_LOCATION_LENGTH)

    @field_validator('meeting_link')
    @classmethod
    def validate_meeting_link(cls, value: str | None) -> str | None:
        normalized = _normalize_text(value)
        if normalized is not None and not normalized.startswith(('https://', 'http://')):
            raise ValueError('Valid meeting link is required.')
        return normalized


class TransitionAppointmentRequest(BaseModel):
    status: AppointmentStatus


class RateAppointmentRequest(BaseModel):
    # Range is enforced by the lifecycle rules so the error kind stays invalid_rating.
    rating: int
    feedback: str | None = Field(default=None, max_length=config.MAX_FEEDBACK_LENGTH)


class AppointmentResponse(BaseModel):
    id: int
    student_id: int
    counselor_id: int
    date: date
    time: time
    duration_minutes: int
    appointment_type: str
    status: str
    notes: str | None = None
    student_notes: str | None = None
    counselor_notes: str | None = None
    meeting_link: str | None = None
    location: str | None = None
    rating: int | None = None
    feedback: str | None = None

    class Config:
        from_attributes = True


class AppointmentListResponse(BaseModel):
    appointments: list[AppointmentResponse]
    current_page: int
    total_pages: int
    total_appointments: int
    has_next: bool
    has_prev: bool


class LoadDriftResponse(BaseModel):
    counselor_id: int
    date: date
    stored: int
    actual: int


@router.get('', response_model=AppointmentListResponse)
def list_appointments(
    status_filter: AppointmentStatus | None = Query(default=None, alias='status'),
    appointment_type: AppointmentType | None = Query(default=None, alias='type'),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=50),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        result = lifecycle.list_appointments(
            db,
            as_actor(current_user),
            status=status_filter,
            appointment_type=appointment_type.value if appointment_type else None,
            page=page,
            limit=limit,
        )
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return AppointmentListResponse(
        appointments=[AppointmentResponse.model_validate(item) for item in result.appointments],
        current_page=result.page,
        total_pages=result.total_pages,
        total_appointments=result.total,
        has_next=result.has_next,
        has_prev=result.has_prev,
    )


@router.post('/reconcile', response_model=list[LoadDriftResponse])
def reconcile_daily_loads(
    counselor_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_role(current_user, ROLE_ADMIN, detail='Only admins can reconcile session counts.')
    ensure_database_ready()

    try:
        drift = capacity.reconcile_daily_loads(db, counselor_id=counselor_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return [
        LoadDriftResponse(counselor_id=item.counselor_id, date=item.date, stored=item.stored, actual=item.actual)
        for item in drift
    ]


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return lifecycle.get_appointment(db, appointment_id, as_actor(current_user))
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    require_role(current_user, ROLE_STUDENT, detail='Only students can book appointments.')
    ensure_database_ready()

    try:
        return booking.book_appointment(
            db,
            student_id=current_user.id,
            counselor_id=data.counselor_id,
            appointment_date=data.date,
            appointment_time=data.time,
            now=now,
            duration_minutes=data.duration_minutes,
            appointment_type=data.appointment_type,
            notes=data.notes,
            student_notes=data.student_notes,
        )
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return lifecycle.update_appointment_details(
            db,
            appointment_id,
            as_actor(current_user),
            data.model_dump(exclude_unset=True),
        )
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def cancel_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    ensure_database_ready()

    try:
        lifecycle.cancel_appointment(db, appointment_id, as_actor(current_user), now)
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post('/{appointment_id}/status', response_model=AppointmentResponse)
def transition_appointment(
    appointment_id: int,
    data: TransitionAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    ensure_database_ready()

    try:
        return lifecycle.transition_appointment(db, appointment_id, as_actor(current_user), data.status, now)
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.post('/{appointment_id}/rating', response_model=AppointmentResponse)
def rate_appointment(
    appointment_id: int,
    data: RateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return lifecycle.rate_appointment(
            db,
            appointment_id,
            as_actor(current_user),
            data.rating,
            feedback=_normalize_text(data.feedback),
        )
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc
