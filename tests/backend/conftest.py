import os
from datetime import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault('DATABASE_URL', 'sqlite:///./test.db')

from backend.database import Base  # noqa: E402
from backend.models.appointment import Appointment  # noqa: E402, F401
from backend.models.counselor import AvailabilityTemplate, Counselor  # noqa: E402
from backend.models.daily_load import CounselorDailyLoad  # noqa: E402, F401
from backend.models.user import ROLE_ADMIN, ROLE_COUNSELOR, ROLE_STUDENT, User  # noqa: E402

COUNSELOR_ID = 10
STUDENT_ID = 1
OTHER_STUDENT_ID = 2
ADMIN_ID = 99


@pytest.fixture
def session_factory():
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def users(db):
    accounts = {
        'student': User(id=STUDENT_ID, email='student@example.edu', role=ROLE_STUDENT),
        'other_student': User(id=OTHER_STUDENT_ID, email='other@example.edu', role=ROLE_STUDENT),
        'counselor': User(id=COUNSELOR_ID, email='counselor@example.edu', role=ROLE_COUNSELOR),
        'admin': User(id=ADMIN_ID, email='admin@example.edu', role=ROLE_ADMIN),
    }
    db.add_all(accounts.values())
    db.commit()
    return accounts


@pytest.fixture
def make_counselor(db, users):
    """Create a counselor profile with weekly windows given as (day, start, end[, enabled])."""

    def _make(user_id=COUNSELOR_ID, windows=((1, time(9, 0), time(12, 0)),), max_sessions_per_day=8, is_available=True):
        if db.get(User, user_id) is None:
            db.add(User(id=user_id, email=f'counselor{user_id}@example.edu', role=ROLE_COUNSELOR))
        counselor = Counselor(
            user_id=user_id,
            max_sessions_per_day=max_sessions_per_day,
            is_available=is_available,
            rating=0.0,
            total_sessions=0,
        )
        counselor.availability = [
            AvailabilityTemplate(
                counselor_id=user_id,
                day_of_week=window[0],
                start_time=window[1],
                end_time=window[2],
                is_enabled=window[3] if len(window) > 3 else True,
            )
            for window in windows
        ]
        db.add(counselor)
        db.commit()
        return counselor

    return _make


@pytest.fixture
def counselor(make_counselor):
    return make_counselor()
