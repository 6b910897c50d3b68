"""Counselor scheduling profile and weekly availability templates."""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    Time,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import relationship

from backend.core import config
from backend.database import Base


class Counselor(Base):
    """Per-counselor booking configuration, keyed by the counselor's user id."""
    __tablename__ = "counselors"

    user_id = Column(Integer, ForeignKey("users.id"), primary_key=True)
    is_available = Column(Boolean, nullable=False, default=True)
    max_sessions_per_day = Column(Integer, nullable=False, default=config.DEFAULT_MAX_SESSIONS_PER_DAY)
    rating = Column(Float, nullable=False, default=0.0)
    total_sessions = Column(Integer, nullable=False, default=0)
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    availability = relationship(
        "AvailabilityTemplate",
        cascade="all, delete-orphan",
        order_by="AvailabilityTemplate.day_of_week",
    )


class AvailabilityTemplate(Base):
    """One recurring weekly window. day_of_week: 0 = Sunday ... 6 = Saturday."""
    __tablename__ = "counselor_availability"
    __table_args__ = (
        UniqueConstraint("counselor_id", "day_of_week", name="uq_counselor_availability_day"),
        CheckConstraint("day_of_week BETWEEN 0 AND 6", name="ck_counselor_availability_day"),
        CheckConstraint("start_time < end_time", name="ck_counselor_availability_window"),
    )

    id = Column(Integer, primary_key=True)
    counselor_id = Column(Integer, ForeignKey("counselors.user_id"), nullable=False, index=True)
    day_of_week = Column(Integer, nullable=False)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    is_enabled = Column(Boolean, nullable=False, default=True)
