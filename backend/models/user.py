"""User model definitions."""

from sqlalchemy import Column, Integer, String
from backend.database import Base

ROLE_STUDENT = "student"
ROLE_COUNSELOR = "counselor"
ROLE_ADMIN = "admin"


class User(Base):
    """Local mirror of an identity-provider account."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    role = Column(String, nullable=False, default=ROLE_STUDENT)  # student/counselor/admin
