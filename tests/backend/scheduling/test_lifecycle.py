from datetime import date, datetime
from decimal import Decimal

import pytest

from backend import notifications
from backend.models.appointment import Appointment
from backend.models.records import Billing, HealthRecord
from backend.models.user import CareRelationship
from backend.notifications import AppointmentEvent, DocumentKind
from backend.scheduling import lifecycle
from backend.scheduling.errors import (
    InvalidTransition,
    NotPermitted,
    NotYetCompleted,
    SlotRaceLost,
    WindowClosed,
    WindowNotOpen,
)
from backend.scheduling.time_grid import parse_time_slot

MONDAY = date(2024, 6, 17)
BOOKED_AT = datetime(2024, 6, 10, 8, 0)
FIRST_SLOT = parse_time_slot('09:00-09:30')
DURING_FIRST_SLOT = datetime(2024, 6, 17, 9, 10)
AFTER_FIRST_SLOT = datetime(2024, 6, 17, 9, 40)


def book(db, patient, doctor, time_slot=FIRST_SLOT) -> Appointment:
    return lifecycle.create(db, patient.id, doctor.id, MONDAY, time_slot, 'Persistent cough', BOOKED_AT)


def confirmed(db, patient, doctor) -> Appointment:
    return lifecycle.confirm(db, book(db, patient, doctor), doctor.id, BOOKED_AT)


def test_create_inserts_pending_appointment(appointment_db, doctor, patient_a, sent_notifications) -> None:
    appointment = book(appointment_db, patient_a, doctor)

    assert appointment.id is not None
    assert appointment.status == 'pending'
    assert appointment.time_slot == '09:00-09:30'
    assert appointment.start_time == datetime(2024, 6, 17, 9, 0)
    assert appointment.end_time == datetime(2024, 6, 17, 9, 30)
    assert appointment.created_at == BOOKED_AT
    assert appointment.attachments == []
    assert [n.event for n in sent_notifications] == [AppointmentEvent.BOOKED]
    assert sent_notifications[0].as_payload() == {
        'event': 'appointment.booked',
        'appointment_id': appointment.id,
        'patient_id': patient_a.id,
        'doctor_id': doctor.id,
        'status': 'pending',
    }


def test_create_distinguishes_own_and_other_conflicts(appointment_db, doctor, patient_a, patient_b) -> None:
    book(appointment_db, patient_a, doctor)

    with pytest.raises(SlotRaceLost) as own_conflict:
        book(appointment_db, patient_a, doctor)
    with pytest.raises(SlotRaceLost) as other_conflict:
        book(appointment_db, patient_b, doctor)

    assert own_conflict.value.own_booking is True
    assert other_conflict.value.own_booking is False
    assert appointment_db.query(Appointment).count() == 1


def test_create_lets_unique_index_decide_race(
    appointment_db,
    doctor,
    patient_a,
    patient_b,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    book(appointment_db, patient_a, doctor)
    real_lookup = lifecycle.find_active_conflicts
    calls = []

    def stale_first_lookup(*args):
        calls.append(args)
        return [] if len(calls) == 1 else real_lookup(*args)

    monkeypatch.setattr(lifecycle, 'find_active_conflicts', stale_first_lookup)

    with pytest.raises(SlotRaceLost) as exception_info:
        book(appointment_db, patient_b, doctor)

    assert exception_info.value.own_booking is False
    assert len(calls) == 2
    assert appointment_db.query(Appointment).count() == 1


def test_confirm_stamps_and_adds_roster_once(appointment_db, doctor, patient_a, sent_notifications) -> None:
    first = confirmed(appointment_db, patient_a, doctor)
    second = lifecycle.create(
        appointment_db, patient_a.id, doctor.id, MONDAY, parse_time_slot('09:30-10:00'), 'Follow-up', BOOKED_AT
    )
    lifecycle.confirm(appointment_db, second, doctor.id, BOOKED_AT)

    assert first.status == 'confirmed'
    assert first.confirmed_at == BOOKED_AT
    assert first.status_updated_at == BOOKED_AT
    assert appointment_db.query(CareRelationship).filter(
        CareRelationship.doctor_id == doctor.id,
        CareRelationship.patient_id == patient_a.id,
    ).count() == 1
    assert [n.event for n in sent_notifications].count(AppointmentEvent.CONFIRMED) == 2


def test_confirm_requires_the_appointments_doctor(appointment_db, doctor, patient_a) -> None:
    appointment = book(appointment_db, patient_a, doctor)

    with pytest.raises(NotPermitted):
        lifecycle.confirm(appointment_db, appointment, patient_a.id, BOOKED_AT)


@pytest.mark.parametrize('transition', [lifecycle.confirm, lifecycle.reject])
def test_confirm_and_reject_close_once_slot_started(appointment_db, doctor, patient_a, transition) -> None:
    appointment = book(appointment_db, patient_a, doctor)

    with pytest.raises(WindowClosed):
        transition(appointment_db, appointment, doctor.id, DURING_FIRST_SLOT)

    assert appointment.status == 'pending'


def test_confirm_rejects_non_pending_source(appointment_db, doctor, patient_a) -> None:
    appointment = confirmed(appointment_db, patient_a, doctor)

    with pytest.raises(InvalidTransition) as exception_info:
        lifecycle.confirm(appointment_db, appointment, doctor.id, BOOKED_AT)

    assert exception_info.value.current_status == 'confirmed'


def test_reject_releases_slot_for_new_booking(appointment_db, doctor, patient_a, patient_b, sent_notifications) -> None:
    appointment = book(appointment_db, patient_a, doctor)

    lifecycle.reject(appointment_db, appointment, doctor.id, BOOKED_AT)
    rebooked = book(appointment_db, patient_b, doctor)

    assert appointment.status == 'rejected'
    assert appointment.rejected_at == BOOKED_AT
    assert rebooked.status == 'pending'
    assert AppointmentEvent.REJECTED in [n.event for n in sent_notifications]


def test_patient_not_come_only_during_slot(appointment_db, doctor, patient_a, sent_notifications) -> None:
    appointment = confirmed(appointment_db, patient_a, doctor)

    with pytest.raises(WindowNotOpen):
        lifecycle.mark_patient_not_come(appointment_db, appointment, doctor.id, BOOKED_AT)
    with pytest.raises(WindowNotOpen):
        lifecycle.mark_patient_not_come(appointment_db, appointment, doctor.id, AFTER_FIRST_SLOT)

    lifecycle.mark_patient_not_come(appointment_db, appointment, doctor.id, DURING_FIRST_SLOT)

    assert appointment.status == 'patient_not_come'
    assert appointment.notes == lifecycle.NO_SHOW_NOTE
    assert sent_notifications[-1].event == AppointmentEvent.PATIENT_NOT_COME


def test_complete_requires_confirmed_appointment(appointment_db, doctor, patient_a) -> None:
    appointment = book(appointment_db, patient_a, doctor)

    with pytest.raises(InvalidTransition):
        lifecycle.complete(appointment_db, appointment, doctor.id, DURING_FIRST_SLOT)


def test_complete_creates_health_record_and_billing(appointment_db, doctor, patient_a) -> None:
    appointment = confirmed(appointment_db, patient_a, doctor)

    lifecycle.complete(appointment_db, appointment, doctor.id, DURING_FIRST_SLOT)

    assert appointment.status == 'completed'
    health_record = appointment_db.query(HealthRecord).filter(HealthRecord.appointment_id == appointment.id).one()
    billing = appointment_db.query(Billing).filter(Billing.appointment_id == appointment.id).one()
    assert health_record.patient_id == patient_a.id
    assert billing.status == 'pending'
    assert billing.invoice_no.startswith('INV-')


def test_cancel_keeps_tombstone_and_frees_slot(appointment_db, doctor, patient_a, patient_b, sent_notifications) -> None:
    appointment = confirmed(appointment_db, patient_a, doctor)

    lifecycle.cancel(appointment_db, appointment, patient_a.id, AFTER_FIRST_SLOT)
    rebooked = book(appointment_db, patient_b, doctor)

    assert appointment_db.query(Appointment).filter(Appointment.id == appointment.id).one().status == 'cancelled'
    assert appointment.cancelled_at == AFTER_FIRST_SLOT
    assert rebooked.status == 'pending'
    cancelled_events = [n for n in sent_notifications if n.event == AppointmentEvent.CANCELLED]
    assert len(cancelled_events) == 1
    assert cancelled_events[0].status == 'cancelled'


def test_cancel_is_owner_only_and_idempotent(appointment_db, doctor, patient_a, patient_b, sent_notifications) -> None:
    appointment = book(appointment_db, patient_a, doctor)

    with pytest.raises(NotPermitted):
        lifecycle.cancel(appointment_db, appointment, patient_b.id, BOOKED_AT)

    lifecycle.cancel(appointment_db, appointment, patient_a.id, BOOKED_AT)
    lifecycle.cancel(appointment_db, appointment, patient_a.id, AFTER_FIRST_SLOT)

    assert appointment.cancelled_at == BOOKED_AT
    assert [n.event for n in sent_notifications].count(AppointmentEvent.CANCELLED) == 1


def test_visit_details_require_completion(appointment_db, doctor, patient_a) -> None:
    appointment = confirmed(appointment_db, patient_a, doctor)

    with pytest.raises(NotYetCompleted):
        lifecycle.record_visit_details(appointment_db, appointment, doctor.id, 'Flu', 'Fever and cough')


def test_visit_details_append_or_replace_prescriptions(appointment_db, doctor, patient_a, sent_notifications) -> None:
    appointment = confirmed(appointment_db, patient_a, doctor)
    lifecycle.complete(appointment_db, appointment, doctor.id, DURING_FIRST_SLOT)

    lifecycle.record_visit_details(
        appointment_db,
        appointment,
        doctor.id,
        'Flu',
        'Fever and cough',
        prescription='uploads/rx-1.pdf',
        reports=['uploads/blood.pdf'],
        bill='uploads/bill.pdf',
        bill_amount=Decimal('40.00'),
    )
    lifecycle.record_visit_details(appointment_db, appointment, doctor.id, 'Flu', 'Fever', prescription='uploads/rx-2.pdf')
    assert appointment.attachments == ['uploads/rx-1.pdf', 'uploads/rx-2.pdf']

    lifecycle.record_visit_details(
        appointment_db, appointment, doctor.id, 'Flu', 'Fever', prescription='uploads/rx-3.pdf', replace=True
    )

    assert appointment.attachments == ['uploads/rx-3.pdf']
    billing = appointment_db.query(Billing).filter(Billing.appointment_id == appointment.id).one()
    assert billing.amount == Decimal('40.00')
    assert billing.attachments == ['uploads/bill.pdf']
    kinds = [n.document_kind for n in sent_notifications if n.event == AppointmentEvent.DOCUMENT_ADDED]
    assert kinds[:3] == [DocumentKind.PRESCRIPTION, DocumentKind.REPORT, DocumentKind.BILL]


def test_notification_failure_does_not_block_transition(appointment_db, doctor, patient_a, caplog) -> None:
    def broken_dispatcher(notification):
        raise ConnectionError('smtp down')

    notifications.set_dispatcher(broken_dispatcher)
    try:
        appointment = book(appointment_db, patient_a, doctor)
    finally:
        notifications.set_dispatcher(None)

    assert appointment_db.query(Appointment).filter(Appointment.id == appointment.id).one().status == 'pending'
    assert 'Failed to dispatch appointment.booked' in caplog.text
