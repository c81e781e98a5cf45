"""Viewer-relative bookability of a day's slots.

Slots are first classified by the appointment records that share their
``HH:MM-HH:MM`` key, then overridden by the same-day time rules. A slot can be
free of appointments and still unbookable because it is too soon.
"""

import enum
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Protocol, Sequence

from backend.models.appointment import AppointmentStatus
from backend.scheduling.booking_policy import slot_has_started, validate_time_buffer
from backend.scheduling.time_grid import Slot

logger = logging.getLogger(__name__)


class SlotStatus(str, enum.Enum):
    AVAILABLE = 'available'
    RESERVED = 'reserved'
    YOUR_PENDING = 'your_pending'
    CONFIRMED = 'confirmed'
    DISABLED = 'disabled'
    EXPIRED = 'expired'


class Audience(str, enum.Enum):
    PATIENT = 'patient'
    DOCTOR = 'doctor'


class SlotRecord(Protocol):
    id: int
    patient_id: int
    time_slot: str
    status: str


@dataclass(frozen=True)
class SlotView:
    slot: Slot
    status: SlotStatus
    disabled: bool
    message: str
    visible: bool
    appointment_id: int | None = None

    @property
    def bookable(self) -> bool:
        return self.visible and not self.disabled


@dataclass(frozen=True)
class SlotSummary:
    total_slots: int
    booked_count: int
    confirmed_count: int


MESSAGES = {
    SlotStatus.AVAILABLE: 'Available',
    SlotStatus.RESERVED: 'Reserved by another patient',
    SlotStatus.YOUR_PENDING: 'You have a pending booking for this slot',
    SlotStatus.CONFIRMED: 'Booked',
    SlotStatus.EXPIRED: 'This time slot has already passed',
}


def _group_by_key(appointments: Iterable[SlotRecord]) -> dict[str, list[SlotRecord]]:
    grouped: dict[str, list[SlotRecord]] = defaultdict(list)
    for appointment in appointments:
        grouped[appointment.time_slot].append(appointment)
    return grouped


def classify(
    slot: Slot,
    records: Sequence[SlotRecord],
    viewer_patient_id: int | None,
    audience: Audience = Audience.PATIENT,
) -> SlotView:
    """Classify one slot by the records sharing its key, ignoring the clock."""
    confirmed = [record for record in records if record.status == AppointmentStatus.CONFIRMED.value]
    pending = [record for record in records if record.status == AppointmentStatus.PENDING.value]

    if len(confirmed) + len(pending) > 1:
        logger.warning(
            'Slot %s on %s has %d active appointments (%s); resolving by priority.',
            slot.key,
            slot.date,
            len(confirmed) + len(pending),
            ', '.join(str(record.id) for record in confirmed + pending),
        )

    if confirmed:
        return SlotView(
            slot=slot,
            status=SlotStatus.CONFIRMED,
            disabled=True,
            message=MESSAGES[SlotStatus.CONFIRMED],
            visible=audience == Audience.DOCTOR,
            appointment_id=confirmed[0].id,
        )

    if pending:
        own = next((record for record in pending if record.patient_id == viewer_patient_id), None)
        if own is not None:
            return SlotView(slot, SlotStatus.YOUR_PENDING, True, MESSAGES[SlotStatus.YOUR_PENDING], True, own.id)
        return SlotView(slot, SlotStatus.RESERVED, True, MESSAGES[SlotStatus.RESERVED], True, pending[0].id)

    return SlotView(slot, SlotStatus.AVAILABLE, False, MESSAGES[SlotStatus.AVAILABLE], True)


def apply_time_rules(view: SlotView, now: datetime) -> SlotView:
    if not view.visible or view.status == SlotStatus.CONFIRMED:
        return view

    slot = view.slot
    if slot_has_started(slot.date, slot.time_slot, now):
        return SlotView(slot, SlotStatus.EXPIRED, True, MESSAGES[SlotStatus.EXPIRED], True, view.appointment_id)

    verdict = validate_time_buffer(slot.date, slot.time_slot, now)
    if not verdict.ok:
        return SlotView(slot, SlotStatus.DISABLED, True, verdict.message, True, view.appointment_id)
    return view


def resolve_slots(
    slots: Iterable[Slot],
    appointments: Iterable[SlotRecord],
    viewer_patient_id: int | None,
    now: datetime,
    audience: Audience = Audience.PATIENT,
) -> list[SlotView]:
    """Annotate every slot with its status for the given viewer.

    ``appointments`` must already be limited to one doctor and one date. Callers
    filter on ``visible`` for display and ``bookable`` for the selectable subset.
    """
    by_key = _group_by_key(appointments)
    return [
        apply_time_rules(classify(slot, by_key.get(slot.key, []), viewer_patient_id, audience), now)
        for slot in slots
    ]


def summarize(slots: Sequence[Slot], appointments: Iterable[SlotRecord]) -> SlotSummary:
    offered = {slot.key for slot in slots}
    booked: set[str] = set()
    confirmed: set[str] = set()

    for appointment in appointments:
        if appointment.time_slot not in offered:
            continue
        if appointment.status == AppointmentStatus.CONFIRMED.value:
            confirmed.add(appointment.time_slot)
            booked.add(appointment.time_slot)
        elif appointment.status == AppointmentStatus.PENDING.value:
            booked.add(appointment.time_slot)

    return SlotSummary(total_slots=len(slots), booked_count=len(booked), confirmed_count=len(confirmed))
