import os
from datetime import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

os.environ.setdefault('DATABASE_URL', 'sqlite:///:memory:')

from backend import notifications  # noqa: E402
from backend.database import Base  # noqa: E402
from backend.models import appointment, availability, records  # noqa: E402,F401
from backend.models.availability import AvailabilityEntry  # noqa: E402
from backend.models.user import DOCTOR_ROLE, PATIENT_ROLE, User  # noqa: E402


@pytest.fixture
def appointment_db():
    engine = create_engine('sqlite:///:memory:')
    testing_session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    Base.metadata.create_all(bind=engine)

    db = testing_session_local()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def sent_notifications():
    sent: list[notifications.Notification] = []
    notifications.set_dispatcher(sent.append)
    try:
        yield sent
    finally:
        notifications.set_dispatcher(None)


def add_user(db, email: str, role: str) -> User:
    user = User(email=email, full_name=email.split('@')[0].title(), role=role)
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def doctor(appointment_db) -> User:
    doctor = add_user(appointment_db, 'house@clinic.test', DOCTOR_ROLE)
    appointment_db.add(
        AvailabilityEntry(
            doctor_id=doctor.id,
            day_of_week='Monday',
            start_time=time(9, 0),
            end_time=time(10, 0),
            slot_duration_minutes=30,
            is_available=True,
            position=0,
        )
    )
    appointment_db.commit()
    return doctor


@pytest.fixture
def patient_a(appointment_db) -> User:
    return add_user(appointment_db, 'alice@example.test', PATIENT_ROLE)


@pytest.fixture
def patient_b(appointment_db) -> User:
    return add_user(appointment_db, 'bob@example.test', PATIENT_ROLE)
