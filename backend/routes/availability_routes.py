from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user
from backend.core import config
from backend.core.clock import get_now
from backend.core.errors import SchedulingError
from backend.database import ensure_appointment_schema, get_db
from backend.models.user import ROLE_ADMIN, ROLE_COUNSELOR, User
from backend.scheduling import availability

router = APIRouter(tags=['counselors'])

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and database credentials.'


class AvailabilityWindowRequest(BaseModel):
    day_of_week: int = Field(ge=0, le=6)
    start_time: time
    end_time: time
    is_enabled: bool = True

    @field_validator('start_time', 'end_time')
    @classmethod
    def strip_seconds(cls, value: time) -> time:
        return value.replace(second=0, microsecond=0)

    @model_validator(mode='after')
    def validate_window(self) -> 'AvailabilityWindowRequest':
        if self.start_time >= self.end_time:
            raise ValueError('Start time must be before end time.')
        return self


class SetAvailabilityRequest(BaseModel):
    availability: list[AvailabilityWindowRequest]


class AvailabilityWindowResponse(BaseModel):
    day_of_week: int
    start_time: time
    end_time: time
    is_enabled: bool

    class Config:
        from_attributes = True


class CounselorProfileRequest(BaseModel):
    max_sessions_per_day: int | None = Field(default=None, ge=1, le=config.MAX_SESSIONS_PER_DAY_LIMIT)
    is_available: bool | None = None


class CounselorResponse(BaseModel):
    user_id: int
    is_available: bool
    max_sessions_per_day: int
    rating: float
    total_sessions: int
    availability: list[AvailabilityWindowResponse] = []

    class Config:
        from_attributes = True


class SlotResponse(BaseModel):
    date: date
    time: time
    start_time: datetime
    end_time: datetime
    duration_minutes: int
    available: bool


def ensure_database_ready() -> None:
    try:
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=DATABASE_UNAVAILABLE_DETAIL,
        ) from exc


def database_unavailable(db: Session) -> HTTPException:
    db.rollback()
    return HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=DATABASE_UNAVAILABLE_DETAIL,
    )


def ensure_can_manage_counselor(current_user: User, counselor_id: int) -> None:
    if current_user.role == ROLE_ADMIN:
        return
    if current_user.role == ROLE_COUNSELOR and current_user.id == counselor_id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='Only the counselor or an admin can change this schedule.',
    )


@router.get('', response_model=list[CounselorResponse])
def list_available_counselors(
    on_date: date | None = Query(default=None, alias='date'),
    at_time: time | None = Query(default=None, alias='time'),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return availability.find_available_counselors(db, on_date=on_date, at_time=at_time)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('/{counselor_id}/availability', response_model=list[AvailabilityWindowResponse])
def get_counselor_availability(counselor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        return availability.get_availability(db, counselor_id)
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.put('/{counselor_id}/availability', response_model=list[AvailabilityWindowResponse])
def set_counselor_availability(
    counselor_id: int,
    data: SetAvailabilityRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_can_manage_counselor(current_user, counselor_id)
    ensure_database_ready()

    try:
        return availability.set_availability(db, counselor_id, data.availability)
    except SchedulingError as exc:
        db.rollback()
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.put('/{counselor_id}/profile', response_model=CounselorResponse)
def save_counselor_profile(
    counselor_id: int,
    data: CounselorProfileRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_can_manage_counselor(current_user, counselor_id)
    ensure_database_ready()

    try:
        return availability.save_counselor_profile(
            db,
            counselor_id,
            max_sessions_per_day=data.max_sessions_per_day,
            is_available=data.is_available,
        )
    except SchedulingError as exc:
        db.rollback()
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc


@router.get('/{counselor_id}/slots', response_model=list[SlotResponse])
def list_counselor_slots(
    counselor_id: int,
    slot_date: date = Query(..., alias='date'),
    db: Session = Depends(get_db),
    now: datetime = Depends(get_now),
):
    ensure_database_ready()

    try:
        slots = availability.get_available_slots(db, counselor_id, slot_date, now)
    except SchedulingError as exc:
        raise exc.to_http_exception() from exc
    except SQLAlchemyError as exc:
        raise database_unavailable(db) from exc

    return [
        SlotResponse(
            date=slot_date,
            time=slot.start_time,
            start_time=datetime.combine(slot_date, slot.start_time),
            end_time=datetime.combine(slot_date, slot.end_time),
            duration_minutes=slot.duration_minutes,
            available=slot.available,
        )
        for slot in slots
    ]
