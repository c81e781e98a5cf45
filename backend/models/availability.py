"""Availability model definitions."""

from sqlalchemy import Column, Integer, Boolean, ForeignKey, String, Time
from backend.database import Base


class AvailabilityEntry(Base):
    """One recurring weekly block of a doctor's open hours."""
    __tablename__ = "availability_entries"

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    day_of_week = Column(String, nullable=False)  # Monday..Sunday
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)
    slot_duration_minutes = Column(Integer, default=30)
    is_available = Column(Boolean, default=True)
    position = Column(Integer, default=0)
