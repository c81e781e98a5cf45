"""Fire-and-forget appointment events.

Delivery (email, SMS, push) lives outside this service. The engine only hands an
event to the configured dispatcher; a failing dispatcher is logged and never
affects the transition that produced the event.
"""

import enum
import logging
from dataclasses import asdict, dataclass
from typing import Callable

logger = logging.getLogger(__name__)


class AppointmentEvent(str, enum.Enum):
    BOOKED = 'appointment.booked'
    CONFIRMED = 'appointment.confirmed'
    REJECTED = 'appointment.rejected'
    CANCELLED = 'appointment.cancelled'
    PATIENT_NOT_COME = 'appointment.patient_not_come'
    DOCUMENT_ADDED = 'appointment.document_added'


class DocumentKind(str, enum.Enum):
    PRESCRIPTION = 'prescription'
    REPORT = 'report'
    BILL = 'bill'


@dataclass(frozen=True)
class Notification:
    event: AppointmentEvent
    appointment_id: int
    patient_id: int
    doctor_id: int
    status: str
    document_kind: DocumentKind | None = None

    def as_payload(self) -> dict:
        payload = asdict(self)
        payload['event'] = self.event.value
        if self.document_kind is None:
            payload.pop('document_kind')
        else:
            payload['document_kind'] = self.document_kind.value
        return payload


Dispatcher = Callable[[Notification], None]


def log_dispatcher(notification: Notification) -> None:
    logger.info('Notification %s: %s', notification.event.value, notification.as_payload())


_dispatcher: Dispatcher = log_dispatcher


def set_dispatcher(dispatcher: Dispatcher | None) -> None:
    global _dispatcher
    _dispatcher = dispatcher or log_dispatcher


def get_dispatcher() -> Dispatcher:
    return _dispatcher


def emit(event: AppointmentEvent, appointment, document_kind: DocumentKind | None = None) -> bool:
    """Send ``event`` for ``appointment``; returns False if dispatch failed."""
    notification = Notification(
        event=event,
        appointment_id=appointment.id,
        patient_id=appointment.patient_id,
        doctor_id=appointment.doctor_id,
        status=appointment.status,
        document_kind=document_kind,
    )
    try:
        _dispatcher(notification)
    except Exception:
        logger.exception('Failed to dispatch %s for appointment %s.', event.value, appointment.id)
        return False
    return True
