"""User model definitions."""

from sqlalchemy import Column, Integer, String, UniqueConstraint, ForeignKey
from backend.database import Base

PATIENT_ROLE = "patient"
DOCTOR_ROLE = "doctor"
ADMIN_ROLE = "admin"


class User(Base):
    """Represents an application user."""
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True)
    full_name = Column(String)
    role = Column(String)  # patient/doctor/admin


class CareRelationship(Base):
    """Links a doctor to a patient once one of their appointments is confirmed."""
    __tablename__ = "care_relationships"
    __table_args__ = (UniqueConstraint("doctor_id", "patient_id", name="uq_care_relationship"),)

    id = Column(Integer, primary_key=True)
    doctor_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    patient_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
