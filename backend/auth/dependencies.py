from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from backend.auth import jwt_handler
from backend.database import get_db
from backend.models.user import ROLE_ADMIN, ROLE_COUNSELOR, ROLE_STUDENT, User
from backend.scheduling.lifecycle import Actor

security = HTTPBearer()

KNOWN_ROLES = {ROLE_STUDENT, ROLE_COUNSELOR, ROLE_ADMIN}


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db),
) -> User:
    """Resolve the bearer token issued by the identity provider to a local user.

    The token's ``sub`` is the user id. A user seen for the first time is
    mirrored locally with the token's ``role`` claim.
    """
    token = credentials.credentials
    try:
        payload = jwt_handler.decode_access_token(token)
    except Exception as exc:
        raise HTTPException(status_code=401, detail="Invalid token") from exc

    subject = payload.get("sub")
    if not subject or not str(subject).isdigit():
        raise HTTPException(status_code=401, detail="Invalid token subject")

    user = db.get(User, int(subject))
    if user is None:
        role = payload.get("role")
        if role not in KNOWN_ROLES:
            raise HTTPException(status_code=401, detail="User not found")
        user = User(id=int(subject), email=payload.get("email"), role=role)
        db.add(user)
        db.commit()
        db.refresh(user)
    return user


def as_actor(user: User) -> Actor:
    return Actor(id=user.id, role=user.role)


def require_role(user: User, *roles: str, detail: str) -> None:
    if user.role not in roles:
        raise HTTPException(status_code=403, detail=detail)
