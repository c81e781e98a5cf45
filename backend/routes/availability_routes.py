from datetime import date, datetime, time

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, require_doctor
from backend.core import config
from backend.models.user import PATIENT_ROLE, User
from backend.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    get_now,
    scheduling_http_error,
)
from backend.scheduling import booking
from backend.scheduling.booking_policy import booking_window
from backend.scheduling.errors import SchedulingError
from backend.scheduling.slot_state import SlotView
from backend.scheduling.time_grid import DAYS_OF_WEEK

router = APIRouter(tags=['availability'])

MAX_TEMPLATE_ENTRIES = 100


class AvailabilityEntryPayload(BaseModel):
    day_of_week: str
    start_time: time
    end_time: time
    slot_duration_minutes: int = Field(default=config.DEFAULT_SLOT_DURATION_MINUTES)
    is_available: bool = True

    @field_validator('day_of_week')
    @classmethod
    def validate_day_of_week(cls, value: str) -> str:
        normalized = value.strip().capitalize()
        if normalized not in DAYS_OF_WEEK:
            raise ValueError('Day must be one of Monday through Sunday.')
        return normalized

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_whole_minutes(cls, value: time) -> time:
        if value.second or value.microsecond:
            raise ValueError('Times must be whole minutes (HH:MM).')
        return value

    @field_validator('slot_duration_minutes')
    @classmethod
    def validate_slot_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Slot duration must be a positive number of minutes.')
        return value

    @model_validator(mode='after')
    def validate_time_range(self) -> 'AvailabilityEntryPayload':
        if self.start_time >= self.end_time:
            raise ValueError('Start time must be before end time.')
        return self


class UpdateAvailabilityRequest(BaseModel):
    entries: list[AvailabilityEntryPayload]

    @field_validator('entries')
    @classmethod
    def validate_entries(cls, value: list[AvailabilityEntryPayload]) -> list[AvailabilityEntryPayload]:
        if len(value) > MAX_TEMPLATE_ENTRIES:
            raise ValueError(f'A weekly template can have at most {MAX_TEMPLATE_ENTRIES} entries.')
        return value


class AvailabilityEntryResponse(BaseModel):
    id: int
    day_of_week: str
    start_time: time
    end_time: time
    slot_duration_minutes: int
    is_available: bool

    class Config:
        from_attributes = True


class SlotViewResponse(BaseModel):
    date: date
    time_slot: str
    start_time: time
    end_time: time
    duration_minutes: int
    day_of_week: str
    status: str
    disabled: bool
    message: str
    appointment_id: int | None = None


class SlotListingResponse(BaseModel):
    slots: list[SlotViewResponse]
    total_slots: int
    booked_count: int
    confirmed_count: int


class BookingWindowResponse(BaseModel):
    min_date: date
    max_date: date
    same_day_buffer_minutes: int


def to_slot_view_response(view: SlotView) -> SlotViewResponse:
    return SlotViewResponse(
        date=view.slot.date,
        time_slot=view.slot.key,
        start_time=view.slot.start_time,
        end_time=view.slot.end_time,
        duration_minutes=view.slot.duration_minutes,
        day_of_week=view.slot.day_of_week,
        status=view.status.value,
        disabled=view.disabled,
        message=view.message,
        appointment_id=view.appointment_id,
    )


def to_listing_response(listing: booking.SlotListing) -> SlotListingResponse:
    return SlotListingResponse(
        slots=[to_slot_view_response(view) for view in listing.slots],
        total_slots=listing.total_slots,
        booked_count=listing.booked_count,
        confirmed_count=listing.confirmed_count,
    )


@router.get('/booking-window', response_model=BookingWindowResponse)
def get_booking_window(now: datetime = Depends(get_now)):
    min_date, max_date = booking_window(now)
    return BookingWindowResponse(
        min_date=min_date,
        max_date=max_date,
        same_day_buffer_minutes=config.SAME_DAY_BUFFER_MINUTES,
    )


@router.get('/doctors/{doctor_id}/template', response_model=list[AvailabilityEntryResponse])
def get_availability_template(doctor_id: int, db: Session = Depends(get_db)):
    ensure_database_ready()

    try:
        booking.get_doctor(db, doctor_id)
        return booking.load_template(db, doctor_id)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/doctors/{doctor_id}/template', response_model=list[AvailabilityEntryResponse])
def update_availability_template(
    doctor_id: int,
    data: UpdateAvailabilityRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_doctor(current_user)
    if current_user.id != doctor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Doctors can only change their own availability.',
        )

    ensure_database_ready()

    try:
        return booking.update_availability(db, doctor_id, data.entries)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/doctors/{doctor_id}/slots', response_model=SlotListingResponse)
def list_available_slots(
    doctor_id: int,
    slot_date: date = Query(..., alias='date'),
    current_user: User = Depends(get_current_user),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    viewer_patient_id = current_user.id if current_user.role == PATIENT_ROLE else None
    try:
        listing = booking.get_available_slots(db, doctor_id, slot_date, viewer_patient_id, now)
        return to_listing_response(listing)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/doctors/{doctor_id}/schedule', response_model=SlotListingResponse)
def get_doctor_schedule(
    doctor_id: int,
    slot_date: date = Query(..., alias='date'),
    current_user: User = Depends(get_current_user),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
):
    require_doctor(current_user)
    if current_user.id != doctor_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail='Doctors can only view their own schedule.',
        )

    ensure_database_ready()

    try:
        listing = booking.get_doctor_schedule(db, doctor_id, slot_date, now)
        return to_listing_response(listing)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
