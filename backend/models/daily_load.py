"""Materialised per-day booking counter."""

from sqlalchemy import Column, Date, ForeignKey, Integer, UniqueConstraint
from backend.database import Base


class CounselorDailyLoad(Base):
    """Active appointment count for one counselor on one date.

    Derived from ``appointments``; updated in the same transaction as the
    appointment write and recomputable by the reconciliation routine.
    """
    __tablename__ = "counselor_daily_loads"
    __table_args__ = (
        UniqueConstraint("counselor_id", "date", name="uq_counselor_daily_load"),
    )

    id = Column(Integer, primary_key=True)
    counselor_id = Column(Integer, ForeignKey("counselors.user_id"), nullable=False)
    date = Column(Date, nullable=False)
    session_count = Column(Integer, nullable=False, default=0)
