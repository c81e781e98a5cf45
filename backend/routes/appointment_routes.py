import enum
import logging
from datetime import date, datetime
from decimal import Decimal

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.auth.dependencies import get_current_user, require_doctor, require_patient
from backend.core import config
from backend.models.appointment import Appointment
from backend.models.user import User
from backend.routes.common import (
    database_unavailable,
    ensure_database_ready,
    get_db,
    get_now,
    scheduling_http_error,
)
from backend.scheduling import booking, lifecycle
from backend.scheduling.booking import TransitionAction
from backend.scheduling.errors import SchedulingError
from backend.scheduling.expiry import reconcile_expired
from backend.scheduling.time_grid import parse_time_slot

router = APIRouter(tags=['appointments'])

logger = logging.getLogger(__name__)


class AppointmentScope(str, enum.Enum):
    TODAY = 'today'
    UPCOMING = 'upcoming'
    PAST = 'past'
    ALL = 'all'


class CreateAppointmentRequest(BaseModel):
    doctor_id: int
    date: date
    time_slot: str
    reason: str

    @field_validator('time_slot')
    @classmethod
    def validate_time_slot(cls, value: str) -> str:
        try:
            return parse_time_slot(value).key
        except SchedulingError as exc:
            raise ValueError(exc.message) from exc

    @field_validator('reason')
    @classmethod
    def validate_reason(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Reason for the visit is required.')
        if len(normalized) > config.MAX_REASON_LENGTH:
            raise ValueError(f'Reason must be {config.MAX_REASON_LENGTH} characters or fewer.')
        return normalized


class VisitDetailsRequest(BaseModel):
    disease: str
    summary: str
    prescription: str | None = None
    reports: list[str] = []
    bill: str | None = None
    bill_amount: Decimal | None = None
    replace: bool = False

    @field_validator('disease', 'summary')
    @classmethod
    def validate_required_text(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError('Disease and symptoms are required.')
        return normalized

    @field_validator('bill_amount')
    @classmethod
    def validate_bill_amount(cls, value: Decimal | None) -> Decimal | None:
        if value is not None and value < 0:
            raise ValueError('Bill amount cannot be negative.')
        return value


class AppointmentResponse(BaseModel):
    id: int
    patient_id: int
    doctor_id: int
    date: date
    time_slot: str
    start_time: datetime
    end_time: datetime
    status: str
    reason: str
    notes: str | None = None
    disease: str | None = None
    summary: str | None = None
    attachments: list[str] = []
    status_updated_at: datetime | None = None
    confirmed_at: datetime | None = None
    rejected_at: datetime | None = None
    cancelled_at: datetime | None = None
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class AppointmentListResponse(BaseModel):
    appointments: list[AppointmentResponse]
    auto_rejected_count: int


def _in_scope(query, scope: AppointmentScope, now: datetime):
    today = now.date()
    if scope == AppointmentScope.TODAY:
        return query.filter(Appointment.date == today)
    if scope == AppointmentScope.UPCOMING:
        return query.filter(Appointment.start_time >= now)
    if scope == AppointmentScope.PAST:
        return query.filter(Appointment.start_time < now)
    return query


def _list_with_reconciliation(db: Session, appointments: list[Appointment], now: datetime) -> AppointmentListResponse:
    expired = reconcile_expired(db, appointments, now)
    if expired:
        logger.info('%d expired appointments were auto-rejected while listing.', len(expired))
    return AppointmentListResponse(
        appointments=[AppointmentResponse.model_validate(appointment) for appointment in appointments],
        auto_rejected_count=len(expired),
    )


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
):
    require_patient(current_user)
    ensure_database_ready()

    try:
        return booking.book_appointment(
            db,
            patient_id=current_user.id,
            doctor_id=data.doctor_id,
            slot_date=data.date,
            time_slot=data.time_slot,
            reason=data.reason,
            now=now,
        )
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/mine', response_model=AppointmentListResponse)
def list_my_appointments(
    scope: AppointmentScope = Query(default=AppointmentScope.ALL),
    current_user: User = Depends(get_current_user),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
):
    require_patient(current_user)
    ensure_database_ready()

    try:
        query = db.query(Appointment).filter(Appointment.patient_id == current_user.id)
        appointments = _in_scope(query, scope, now).order_by(Appointment.start_time.asc()).all()
        return _list_with_reconciliation(db, appointments, now)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/doctor', response_model=AppointmentListResponse)
def list_doctor_appointments(
    scope: AppointmentScope = Query(default=AppointmentScope.UPCOMING),
    current_user: User = Depends(get_current_user),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
):
    require_doctor(current_user)
    ensure_database_ready()

    try:
        query = db.query(Appointment).filter(Appointment.doctor_id == current_user.id)
        appointments = _in_scope(query, scope, now).order_by(Appointment.start_time.asc()).all()
        return _list_with_reconciliation(db, appointments, now)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/doctor/counts', response_model=dict[str, int])
def count_doctor_appointments(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_doctor(current_user)
    ensure_database_ready()

    try:
        return booking.count_by_status(db, current_user.id, start_date, end_date)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/{appointment_id}/{action}', response_model=AppointmentResponse)
def transition_appointment(
    appointment_id: int,
    action: TransitionAction,
    current_user: User = Depends(get_current_user),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking.transition_appointment(db, appointment_id, current_user.id, current_user.role, action, now)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{appointment_id}', response_model=AppointmentResponse)
def cancel_my_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    now: datetime = Depends(get_now),
    db: Session = Depends(get_db),
):
    require_patient(current_user)
    ensure_database_ready()

    try:
        return booking.cancel_appointment(db, appointment_id, current_user.id, now)
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/{appointment_id}/details', response_model=AppointmentResponse)
def record_visit_details(
    appointment_id: int,
    data: VisitDetailsRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    require_doctor(current_user)
    ensure_database_ready()

    try:
        appointment = booking.get_appointment(db, appointment_id)
        return lifecycle.record_visit_details(
            db,
            appointment,
            current_user.id,
            disease=data.disease,
            summary=data.summary,
            prescription=data.prescription,
            reports=data.reports,
            bill=data.bill,
            bill_amount=data.bill_amount,
            replace=data.replace,
        )
    except SchedulingError as exc:
        raise scheduling_http_error(exc) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
