"""Auto-rejection of pending appointments whose slot has already started."""

import logging
from datetime import datetime
from typing import Iterable

from sqlalchemy.orm import Session

from backend.models.appointment import Appointment, AppointmentStatus
from backend.scheduling.booking_policy import slot_has_started
from backend.scheduling.errors import InvalidTimeSlot
from backend.scheduling.lifecycle import AUTO_REJECT_NOTE, append_note, slot_of

logger = logging.getLogger(__name__)


def is_expired(appointment: Appointment, now: datetime) -> bool:
    if appointment.status != AppointmentStatus.PENDING.value:
        return False
    try:
        return slot_has_started(appointment.date, slot_of(appointment), now)
    except InvalidTimeSlot:
        logger.warning('Appointment %s has malformed time slot %r.', appointment.id, appointment.time_slot)
        return False


def reconcile_expired(db: Session, appointments: Iterable[Appointment], now: datetime) -> list[Appointment]:
    """Reject every pending appointment in ``appointments`` that the doctor let lapse.

    Safe to call on every list render: already-reconciled appointments are no
    longer pending, so a repeated call returns an empty list.
    """
    expired = [appointment for appointment in appointments if is_expired(appointment, now)]
    if not expired:
        return []

    for appointment in expired:
        appointment.status = AppointmentStatus.REJECTED.value
        appointment.status_updated_at = now
        appointment.rejected_at = now
        append_note(appointment, AUTO_REJECT_NOTE)
    db.commit()

    logger.info('Auto-rejected %d expired pending appointments.', len(expired))
    return expired
