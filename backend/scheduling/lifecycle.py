"""Appointment state machine.

    pending --confirm--> confirmed --complete--> completed
    pending --reject---> rejected  confirmed --no-show--> patient_not_come
    any ----cancel-----> cancelled (tombstone, patient only)

Guard failures raise ``SchedulingError`` subclasses; notification failures are
logged by ``backend.notifications`` and never undo a committed transition.
"""

import logging
import uuid
from datetime import date, datetime
from decimal import Decimal

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backend import notifications
from backend.models.appointment import ACTIVE_STATUSES, Appointment, AppointmentStatus
from backend.models.records import Billing, HealthRecord
from backend.models.user import CareRelationship
from backend.notifications import AppointmentEvent, DocumentKind
from backend.scheduling.booking_policy import slot_has_started, within_slot
from backend.scheduling.errors import (
    InvalidTransition,
    NotPermitted,
    NotYetCompleted,
    SlotRaceLost,
    WindowClosed,
    WindowNotOpen,
)
from backend.scheduling.time_grid import TimeSlot, parse_time_slot

logger = logging.getLogger(__name__)

AUTO_REJECT_NOTE = '[Auto-rejected: no response before slot start]'
NO_SHOW_NOTE = '[Patient did not show up for the appointment]'


def append_note(appointment: Appointment, note: str) -> None:
    appointment.notes = f'{appointment.notes} {note}'.strip() if appointment.notes else note


def slot_of(appointment: Appointment) -> TimeSlot:
    return parse_time_slot(appointment.time_slot)


def find_active_conflicts(db: Session, doctor_id: int, slot_date: date, time_slot: str) -> list[Appointment]:
    return db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.date == slot_date,
        Appointment.time_slot == time_slot,
        Appointment.status.in_(ACTIVE_STATUSES),
    ).all()


def _race_lost(conflicts: list[Appointment], patient_id: int) -> SlotRaceLost:
    return SlotRaceLost(own_booking=any(conflict.patient_id == patient_id for conflict in conflicts))


def create(
    db: Session,
    patient_id: int,
    doctor_id: int,
    slot_date: date,
    time_slot: TimeSlot,
    reason: str,
    now: datetime,
) -> Appointment:
    """Insert a pending appointment unless the slot is already held.

    The partial unique index on active ``(doctor_id, date, time_slot)`` rows makes
    the insert itself the arbiter between concurrent requests; the re-check only
    decides which conflict message the loser sees.
    """
    conflicts = find_active_conflicts(db, doctor_id, slot_date, time_slot.key)
    if conflicts:
        raise _race_lost(conflicts, patient_id)

    appointment = Appointment(
        patient_id=patient_id,
        doctor_id=doctor_id,
        date=slot_date,
        time_slot=time_slot.key,
        start_time=time_slot.start_on(slot_date),
        end_time=time_slot.end_on(slot_date),
        status=AppointmentStatus.PENDING.value,
        reason=reason,
        notes='',
        disease='',
        summary='',
        attachments=[],
        created_at=now,
        status_updated_at=now,
    )
    db.add(appointment)
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        conflicts = find_active_conflicts(db, doctor_id, slot_date, time_slot.key)
        if not conflicts:
            raise
        logger.info('Lost booking race for doctor %s on %s %s.', doctor_id, slot_date, time_slot.key)
        raise _race_lost(conflicts, patient_id) from exc
    db.refresh(appointment)

    logger.info(
        'Appointment %s booked: patient %s with doctor %s on %s %s.',
        appointment.id,
        patient_id,
        doctor_id,
        slot_date,
        time_slot.key,
    )
    notifications.emit(AppointmentEvent.BOOKED, appointment)
    return appointment


def _require_doctor(appointment: Appointment, actor_id: int) -> None:
    if appointment.doctor_id != actor_id:
        raise NotPermitted('Only the appointment\'s doctor can do this.')


def _require_status(appointment: Appointment, expected: AppointmentStatus, action: str) -> None:
    if appointment.status != expected.value:
        raise InvalidTransition(appointment.status, action)


def add_to_roster(db: Session, doctor_id: int, patient_id: int) -> None:
    exists = db.query(CareRelationship).filter(
        CareRelationship.doctor_id == doctor_id,
        CareRelationship.patient_id == patient_id,
    ).first()
    if exists is None:
        db.add(CareRelationship(doctor_id=doctor_id, patient_id=patient_id))


def confirm(db: Session, appointment: Appointment, actor_id: int, now: datetime) -> Appointment:
    _require_doctor(appointment, actor_id)
    _require_status(appointment, AppointmentStatus.PENDING, 'confirm')
    if slot_has_started(appointment.date, slot_of(appointment), now):
        raise WindowClosed('Cannot confirm this appointment because its time has already passed.')

    appointment.status = AppointmentStatus.CONFIRMED.value
    appointment.status_updated_at = now
    appointment.confirmed_at = now
    add_to_roster(db, appointment.doctor_id, appointment.patient_id)
    db.commit()
    db.refresh(appointment)

    logger.info('Slot %s on %s confirmed for appointment %s.', appointment.time_slot, appointment.date, appointment.id)
    notifications.emit(AppointmentEvent.CONFIRMED, appointment)
    return appointment


def reject(db: Session, appointment: Appointment, actor_id: int, now: datetime) -> Appointment:
    _require_doctor(appointment, actor_id)
    _require_status(appointment, AppointmentStatus.PENDING, 'reject')
    if slot_has_started(appointment.date, slot_of(appointment), now):
        raise WindowClosed('Cannot reject this appointment because its time has already passed.')

    appointment.status = AppointmentStatus.REJECTED.value
    appointment.status_updated_at = now
    appointment.rejected_at = now
    db.commit()
    db.refresh(appointment)

    logger.info('Slot %s on %s released by rejecting appointment %s.', appointment.time_slot, appointment.date, appointment.id)
    notifications.emit(AppointmentEvent.REJECTED, appointment)
    return appointment


def _require_in_progress(appointment: Appointment, now: datetime, action: str) -> None:
    _require_status(appointment, AppointmentStatus.CONFIRMED, action)
    if not within_slot(appointment.date, slot_of(appointment), now):
        raise WindowNotOpen(
            f'This can only be done during the appointment time ({appointment.date} {appointment.time_slot}).'
        )


def mark_patient_not_come(db: Session, appointment: Appointment, actor_id: int, now: datetime) -> Appointment:
    _require_doctor(appointment, actor_id)
    _require_in_progress(appointment, now, 'mark_patient_not_come')

    appointment.status = AppointmentStatus.PATIENT_NOT_COME.value
    appointment.status_updated_at = now
    append_note(appointment, NO_SHOW_NOTE)
    db.commit()
    db.refresh(appointment)

    notifications.emit(AppointmentEvent.PATIENT_NOT_COME, appointment)
    return appointment


def _invoice_number() -> str:
    return f'INV-{uuid.uuid4().hex[:8].upper()}'


def complete(db: Session, appointment: Appointment, actor_id: int, now: datetime) -> Appointment:
    _require_doctor(appointment, actor_id)
    _require_in_progress(appointment, now, 'complete')

    appointment.status = AppointmentStatus.COMPLETED.value
    appointment.status_updated_at = now
    db.add(
        HealthRecord(
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            appointment_id=appointment.id,
            disease='',
            symptoms='',
            attachments=[],
            created_at=now,
        )
    )
    db.add(
        Billing(
            patient_id=appointment.patient_id,
            doctor_id=appointment.doctor_id,
            appointment_id=appointment.id,
            invoice_no=_invoice_number(),
            amount=None,
            reason=appointment.reason,
            status='pending',
            attachments=[],
            created_at=now,
        )
    )
    db.commit()
    db.refresh(appointment)

    logger.info('Appointment %s completed.', appointment.id)
    return appointment


def cancel(db: Session, appointment: Appointment, actor_id: int, now: datetime) -> Appointment:
    """Tombstone the appointment as cancelled; the slot becomes free again."""
    if appointment.patient_id != actor_id:
        raise NotPermitted('Only the patient who booked this appointment can cancel it.')
    if appointment.status == AppointmentStatus.CANCELLED.value:
        return appointment

    previous_status = appointment.status
    appointment.status = AppointmentStatus.CANCELLED.value
    appointment.status_updated_at = now
    appointment.cancelled_at = now
    db.commit()
    db.refresh(appointment)

    logger.info('Appointment %s cancelled by patient (was %s).', appointment.id, previous_status)
    notifications.emit(AppointmentEvent.CANCELLED, appointment)
    return appointment


def record_visit_details(
    db: Session,
    appointment: Appointment,
    actor_id: int,
    disease: str,
    summary: str,
    prescription: str | None = None,
    reports: list[str] | None = None,
    bill: str | None = None,
    bill_amount: Decimal | None = None,
    replace: bool = False,
) -> Appointment:
    """Attach the visit outcome to a completed appointment.

    A new prescription is appended, or replaces the previous ones when
    ``replace`` is set. Reports go to the health record, the bill file and amount
    to the billing record.
    """
    _require_doctor(appointment, actor_id)
    if appointment.status != AppointmentStatus.COMPLETED.value:
        raise NotYetCompleted('Cannot add appointment details. The appointment must be completed first.')

    appointment.disease = disease
    appointment.summary = summary
    if prescription:
        existing = [] if replace else list(appointment.attachments or [])
        appointment.attachments = existing + [prescription]

    health_record = db.query(HealthRecord).filter(HealthRecord.appointment_id == appointment.id).first()
    if health_record is not None:
        health_record.disease = disease
        health_record.symptoms = summary
        if reports:
            health_record.attachments = list(reports) if replace else list(health_record.attachments or []) + list(reports)

    billing = db.query(Billing).filter(Billing.appointment_id == appointment.id).first()
    if billing is not None:
        billing.reason = disease
        if bill_amount is not None:
            billing.amount = bill_amount
        if bill:
            billing.attachments = [bill]

    db.commit()
    db.refresh(appointment)

    uploaded = [
        (DocumentKind.PRESCRIPTION, prescription),
        (DocumentKind.REPORT, reports),
        (DocumentKind.BILL, bill),
    ]
    for kind, document in uploaded:
        if document:
            notifications.emit(AppointmentEvent.DOCUMENT_ADDED, appointment, document_kind=kind)
    return appointment
