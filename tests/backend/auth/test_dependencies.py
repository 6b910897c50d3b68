import pytest
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from backend.auth import jwt_handler
from backend.auth.dependencies import as_actor, get_current_user, require_role
from backend.models.user import User


def bearer(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme='Bearer', credentials=token)


def test_get_current_user_rejects_invalid_token(db) -> None:
    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=bearer('not-a-jwt'), db=db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token'


def test_get_current_user_rejects_non_numeric_subject(db) -> None:
    token = jwt_handler.create_access_token('student@example.edu', role='student')

    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=bearer(token), db=db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'Invalid token subject'


def test_get_current_user_resolves_existing_user(db, users) -> None:
    token = jwt_handler.create_access_token('10')

    user = get_current_user(credentials=bearer(token), db=db)

    assert user.id == 10
    assert user.role == 'counselor'
    assert as_actor(user).role == 'counselor'


def test_get_current_user_mirrors_first_time_user(db) -> None:
    token = jwt_handler.create_access_token('42', role='student')

    user = get_current_user(credentials=bearer(token), db=db)

    assert user.role == 'student'
    assert db.get(User, 42) is not None


def test_get_current_user_rejects_unknown_user_without_role(db) -> None:
    token = jwt_handler.create_access_token('42')

    with pytest.raises(HTTPException) as exception_info:
        get_current_user(credentials=bearer(token), db=db)

    assert exception_info.value.status_code == 401
    assert exception_info.value.detail == 'User not found'


def test_require_role_rejects_other_roles(users) -> None:
    require_role(users['admin'], 'admin', detail='Admins only.')

    with pytest.raises(HTTPException) as exception_info:
        require_role(users['student'], 'admin', 'counselor', detail='Staff only.')

    assert exception_info.value.status_code == 403
    assert exception_info.value.detail == 'Staff only.'
