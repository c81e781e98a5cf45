"""Booking window and same-day buffer rules.

Every function takes the evaluation moment as ``now`` instead of reading the
clock, and reports expected violations as a ``Verdict`` rather than raising.
"""

from dataclasses import dataclass
from datetime import date, datetime, timedelta

from backend.core import config
from backend.scheduling.errors import (
    BookingHorizonExceeded,
    InsufficientBuffer,
    PastDateError,
    SchedulingError,
)
from backend.scheduling.time_grid import TimeSlot, format_time_12h


@dataclass(frozen=True)
class Verdict:
    error: SchedulingError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        return self.error.message if self.error else ''

    def raise_for_error(self) -> None:
        if self.error is not None:
            raise self.error


ALLOWED = Verdict()


def booking_window(now: datetime, horizon_days: int | None = None) -> tuple[date, date]:
    horizon = config.BOOKING_HORIZON_DAYS if horizon_days is None else horizon_days
    today = now.date()
    return today, today + timedelta(days=horizon)


def validate_date(slot_date: date, now: datetime, horizon_days: int | None = None) -> Verdict:
    horizon = config.BOOKING_HORIZON_DAYS if horizon_days is None else horizon_days
    earliest, latest = booking_window(now, horizon)

    if slot_date < earliest:
        return Verdict(PastDateError())
    if slot_date > latest:
        return Verdict(BookingHorizonExceeded(horizon))
    return ALLOWED


def validate_time_buffer(
    slot_date: date,
    time_slot: TimeSlot,
    now: datetime,
    buffer_minutes: int | None = None,
) -> Verdict:
    if slot_date != now.date():
        return ALLOWED

    buffer = config.SAME_DAY_BUFFER_MINUTES if buffer_minutes is None else buffer_minutes
    lead_time = time_slot.start_on(slot_date) - now
    if lead_time < timedelta(minutes=buffer):
        return Verdict(InsufficientBuffer(format_time_12h(now.time()), time_slot.key, buffer))
    return ALLOWED


def slot_has_started(slot_date: date, time_slot: TimeSlot, now: datetime) -> bool:
    return now > time_slot.start_on(slot_date)


def within_slot(slot_date: date, time_slot: TimeSlot, now: datetime) -> bool:
    return time_slot.start_on(slot_date) <= now < time_slot.end_on(slot_date)
