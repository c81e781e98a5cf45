"""Health record and billing model definitions."""

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, Numeric, String
from backend.database import Base


class HealthRecord(Base):
    """Clinical notes produced by a completed appointment."""
    __tablename__ = "health_records"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True)
    disease = Column(String, default="")
    symptoms = Column(String, default="")
    attachments = Column(JSON, default=list)
    created_at = Column(DateTime)


class Billing(Base):
    """Invoice raised for a completed appointment."""
    __tablename__ = "billings"

    id = Column(Integer, primary_key=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    appointment_id = Column(Integer, ForeignKey("appointments.id"), unique=True)
    invoice_no = Column(String, unique=True)
    amount = Column(Numeric(10, 2))
    reason = Column(String, default="")
    status = Column(String, default="pending")
    attachments = Column(JSON, default=list)
    created_at = Column(DateTime)
