"""Entry points used by the HTTP routes and other collaborators.

These functions load what the pure scheduling pieces need from the database and
run them in the documented order: time grid, booking window, slot state, then
the lifecycle.
"""

import enum
import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from backend.models.appointment import Appointment, AppointmentStatus
from backend.models.availability import AvailabilityEntry
from backend.models.user import DOCTOR_ROLE, User
from backend.scheduling import lifecycle
from backend.scheduling.booking_policy import validate_date, validate_time_buffer
from backend.scheduling.errors import (
    AppointmentNotFound,
    DoctorNotFound,
    NotPermitted,
    SlotNotOffered,
    SlotRaceLost,
)
from backend.scheduling.expiry import reconcile_expired
from backend.scheduling.slot_state import Audience, SlotStatus, SlotView, resolve_slots, summarize
from backend.scheduling.time_grid import TemplateEntry, find_slot, parse_time_slot, slots_for_date

logger = logging.getLogger(__name__)


class TransitionAction(str, enum.Enum):
    CONFIRM = 'confirm'
    REJECT = 'reject'
    COMPLETE = 'complete'
    PATIENT_NOT_COME = 'patient_not_come'


TRANSITIONS = {
    TransitionAction.CONFIRM: lifecycle.confirm,
    TransitionAction.REJECT: lifecycle.reject,
    TransitionAction.COMPLETE: lifecycle.complete,
    TransitionAction.PATIENT_NOT_COME: lifecycle.mark_patient_not_come,
}


@dataclass(frozen=True)
class SlotListing:
    slots: list[SlotView]
    total_slots: int
    booked_count: int
    confirmed_count: int


def get_doctor(db: Session, doctor_id: int) -> User:
    doctor = db.query(User).filter(User.id == doctor_id, User.role == DOCTOR_ROLE).first()
    if doctor is None:
        raise DoctorNotFound()
    return doctor


def get_appointment(db: Session, appointment_id: int) -> Appointment:
    appointment = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    if appointment is None:
        raise AppointmentNotFound()
    return appointment


def load_template(db: Session, doctor_id: int) -> list[AvailabilityEntry]:
    return db.query(AvailabilityEntry).filter(
        AvailabilityEntry.doctor_id == doctor_id,
    ).order_by(AvailabilityEntry.position.asc(), AvailabilityEntry.id.asc()).all()


def appointments_on(db: Session, doctor_id: int, slot_date: date) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.date == slot_date,
    ).order_by(Appointment.id.asc()).all()


def _listing(views: list[SlotView], slots, appointments) -> SlotListing:
    summary = summarize(slots, appointments)
    return SlotListing(
        slots=[view for view in views if view.visible],
        total_slots=summary.total_slots,
        booked_count=summary.booked_count,
        confirmed_count=summary.confirmed_count,
    )


def get_available_slots(
    db: Session,
    doctor_id: int,
    slot_date: date,
    viewer_patient_id: int | None,
    now: datetime,
) -> SlotListing:
    """Patient-facing slots for one doctor and date; confirmed slots are omitted."""
    validate_date(slot_date, now).raise_for_error()
    get_doctor(db, doctor_id)

    slots = slots_for_date(load_template(db, doctor_id), slot_date)
    appointments = appointments_on(db, doctor_id, slot_date)
    views = resolve_slots(slots, appointments, viewer_patient_id, now, Audience.PATIENT)
    return _listing(views, slots, appointments)


def get_doctor_schedule(db: Session, doctor_id: int, slot_date: date, now: datetime) -> SlotListing:
    """Doctor-facing view of a day, after auto-rejecting lapsed requests."""
    get_doctor(db, doctor_id)

    appointments = appointments_on(db, doctor_id, slot_date)
    reconcile_expired(db, appointments, now)
    slots = slots_for_date(load_template(db, doctor_id), slot_date)
    views = resolve_slots(slots, appointments, None, now, Audience.DOCTOR)
    return _listing(views, slots, appointments)


def update_availability(db: Session, doctor_id: int, entries: Iterable[TemplateEntry]) -> list[AvailabilityEntry]:
    """Replace the doctor's whole weekly template; overlaps are not checked."""
    get_doctor(db, doctor_id)

    db.query(AvailabilityEntry).filter(AvailabilityEntry.doctor_id == doctor_id).delete(synchronize_session=False)
    for position, entry in enumerate(entries):
        db.add(
            AvailabilityEntry(
                doctor_id=doctor_id,
                day_of_week=entry.day_of_week,
                start_time=entry.start_time,
                end_time=entry.end_time,
                slot_duration_minutes=entry.slot_duration_minutes,
                is_available=entry.is_available,
                position=position,
            )
        )
    db.commit()

    template = load_template(db, doctor_id)
    logger.info('Doctor %s availability replaced with %d entries.', doctor_id, len(template))
    return template


def book_appointment(
    db: Session,
    patient_id: int,
    doctor_id: int,
    slot_date: date,
    time_slot: str,
    reason: str,
    now: datetime,
) -> Appointment:
    requested = parse_time_slot(time_slot)
    validate_date(slot_date, now).raise_for_error()
    validate_time_buffer(slot_date, requested, now).raise_for_error()

    get_doctor(db, doctor_id)
    offered = find_slot(load_template(db, doctor_id), slot_date, requested)
    if offered is None:
        raise SlotNotOffered()

    view = resolve_slots([offered], appointments_on(db, doctor_id, slot_date), patient_id, now)[0]
    if view.status == SlotStatus.YOUR_PENDING:
        raise SlotRaceLost(own_booking=True)
    if view.status in (SlotStatus.CONFIRMED, SlotStatus.RESERVED):
        raise SlotRaceLost(own_booking=False)

    return lifecycle.create(db, patient_id, doctor_id, slot_date, requested, reason, now)


def transition_appointment(
    db: Session,
    appointment_id: int,
    actor_id: int,
    actor_role: str,
    action: TransitionAction,
    now: datetime,
) -> Appointment:
    if actor_role != DOCTOR_ROLE:
        raise NotPermitted('Only doctors can change the status of an appointment.')

    appointment = get_appointment(db, appointment_id)
    return TRANSITIONS[TransitionAction(action)](db, appointment, actor_id, now)


def cancel_appointment(db: Session, appointment_id: int, actor_id: int, now: datetime) -> Appointment:
    return lifecycle.cancel(db, get_appointment(db, appointment_id), actor_id, now)


def count_by_status(
    db: Session,
    doctor_id: int,
    start_date: date | None = None,
    end_date: date | None = None,
) -> dict[str, int]:
    filters = [Appointment.doctor_id == doctor_id]
    if start_date is not None:
        filters.append(Appointment.date >= start_date)
    if end_date is not None:
        filters.append(Appointment.date <= end_date)

    counts = {status.value: 0 for status in AppointmentStatus}
    rows = db.query(Appointment.status, func.count(Appointment.id)).filter(*filters).group_by(Appointment.status).all()
    for status, count in rows:
        counts[status] = count
    counts['total'] = sum(count for _, count in rows)
    counts['patients'] = db.query(func.count(func.distinct(Appointment.patient_id))).filter(*filters).scalar() or 0
    return counts
