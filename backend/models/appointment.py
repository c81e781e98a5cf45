"""Appointment model definitions."""

import enum

from sqlalchemy import JSON, Column, Date, DateTime, ForeignKey, Index, Integer, String, text
from backend.database import Base


class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    PATIENT_NOT_COME = "patient_not_come"


# Statuses that hold a slot; every other status leaves it free to book.
ACTIVE_STATUSES = (AppointmentStatus.PENDING.value, AppointmentStatus.CONFIRMED.value)


class Appointment(Base):
    """Represents a patient's booking of one doctor slot."""
    __tablename__ = "appointments"
    __table_args__ = (
        Index(
            "uq_appointments_active_slot",
            "doctor_id",
            "date",
            "time_slot",
            unique=True,
            sqlite_where=text("status IN ('pending', 'confirmed')"),
            postgresql_where=text("status IN ('pending', 'confirmed')"),
        ),
    )

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    date = Column(Date, nullable=False)
    time_slot = Column(String, nullable=False)  # "HH:MM-HH:MM"
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    status = Column(String, nullable=False, default=AppointmentStatus.PENDING.value)
    reason = Column(String, nullable=False)
    notes = Column(String, default="")
    disease = Column(String, default="")
    summary = Column(String, default="")
    attachments = Column(JSON, default=list)
    status_updated_at = Column(DateTime)
    confirmed_at = Column(DateTime)
    rejected_at = Column(DateTime)
    cancelled_at = Column(DateTime)
    created_at = Column(DateTime)
