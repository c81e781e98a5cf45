"""Expansion of a doctor's weekly availability into concrete calendar slots.

Everything here is pure: no database access and no clock reads.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from typing import Iterable, Protocol

from backend.scheduling.errors import InvalidConfiguration, InvalidTimeSlot

logger = logging.getLogger(__name__)

DAYS_OF_WEEK = ('Monday', 'Tuesday', 'Wednesday', 'Thursday', 'Friday', 'Saturday', 'Sunday')

_TIME_SLOT_PATTERN = re.compile(r'^([01]\d|2[0-3]):([0-5]\d)-([01]\d|2[0-3]):([0-5]\d)$')


class TemplateEntry(Protocol):
    day_of_week: str
    start_time: time
    end_time: time
    slot_duration_minutes: int
    is_available: bool


@dataclass(frozen=True)
class TimeSlot:
    start: time
    end: time

    @property
    def key(self) -> str:
        return f'{self.start:%H:%M}-{self.end:%H:%M}'

    def start_on(self, slot_date: date) -> datetime:
        return datetime.combine(slot_date, self.start)

    def end_on(self, slot_date: date) -> datetime:
        return datetime.combine(slot_date, self.end)


@dataclass(frozen=True)
class Slot:
    date: date
    start_time: time
    end_time: time
    duration_minutes: int
    day_of_week: str

    @property
    def key(self) -> str:
        return f'{self.start_time:%H:%M}-{self.end_time:%H:%M}'

    @property
    def time_slot(self) -> TimeSlot:
        return TimeSlot(self.start_time, self.end_time)


def day_name(value: date) -> str:
    return DAYS_OF_WEEK[value.weekday()]


def parse_time_slot(value: str) -> TimeSlot:
    """Parse an ``HH:MM-HH:MM`` key, rejecting empty or inverted ranges."""
    match = _TIME_SLOT_PATTERN.match((value or '').strip())
    if not match:
        raise InvalidTimeSlot()

    start_hour, start_minute, end_hour, end_minute = (int(part) for part in match.groups())
    slot = TimeSlot(time(start_hour, start_minute), time(end_hour, end_minute))
    if slot.start >= slot.end:
        raise InvalidTimeSlot()
    return slot


def format_time_12h(value: time) -> str:
    period = 'PM' if value.hour >= 12 else 'AM'
    hour = value.hour % 12 or 12
    return f'{hour}:{value.minute:02d} {period}'


def expand_entry(entry: TemplateEntry, slot_date: date) -> list[Slot]:
    duration = entry.slot_duration_minutes
    if duration is None or duration <= 0:
        raise InvalidConfiguration()

    step = timedelta(minutes=duration)
    # Slot keys are minute-precision.
    window_end = datetime.combine(slot_date, entry.end_time.replace(second=0, microsecond=0))
    current = datetime.combine(slot_date, entry.start_time.replace(second=0, microsecond=0))
    slots: list[Slot] = []

    while current + step <= window_end:
        slots.append(
            Slot(
                date=slot_date,
                start_time=current.time(),
                end_time=(current + step).time(),
                duration_minutes=duration,
                day_of_week=entry.day_of_week,
            )
        )
        current += step

    return slots


def slots_for_date(template: Iterable[TemplateEntry], slot_date: date) -> list[Slot]:
    """Generate the slots a template offers on ``slot_date``.

    Entries for the same weekday are expanded independently and concatenated in
    template order; overlapping entries are passed through as-is. An entry with a
    non-positive slot duration is skipped so it cannot blank the rest of the day.
    """
    weekday = day_name(slot_date)
    slots: list[Slot] = []

    for entry in template:
        if entry.day_of_week != weekday or not entry.is_available:
            continue
        try:
            slots.extend(expand_entry(entry, slot_date))
        except InvalidConfiguration:
            logger.warning(
                'Skipping %s availability entry %s-%s with slot duration %r.',
                entry.day_of_week,
                entry.start_time,
                entry.end_time,
                entry.slot_duration_minutes,
            )

    return slots


def find_slot(template: Iterable[TemplateEntry], slot_date: date, time_slot: TimeSlot) -> Slot | None:
    """Return the generated slot matching ``time_slot``, or None if it is not offered."""
    return next((slot for slot in slots_for_date(template, slot_date) if slot.key == time_slot.key), None)
