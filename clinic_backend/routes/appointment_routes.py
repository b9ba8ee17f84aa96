from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import get_current_user, require_roles
from clinic_backend.database import get_db
from clinic_backend.models.appointment import APPOINTMENT_TYPES, AppointmentStatus, PaymentStatus
from clinic_backend.models.user import User, UserRole
from clinic_backend.routes.common import database_unavailable, ensure_database_ready, validate_time_value
from clinic_backend.services import booking_service
from clinic_backend.services.notifications import NotificationTrigger, get_notifier

router = APIRouter(tags=['appointments'])

MAX_APPOINTMENT_NOTES_LENGTH = 600
MAX_APPOINTMENT_DURATION_MINUTES = 240


def _normalize_appointment_type(value: str | None) -> str | None:
    if value is None:
        return None
    normalized = value.strip().lower()
    for appointment_type in APPOINTMENT_TYPES:
        if appointment_type.lower() == normalized:
            return appointment_type
    raise ValueError('Invalid appointment type.')


def _normalize_notes(value: str | None) -> str | None:
    if value is None:
        return None

    normalized = value.strip()
    if not normalized:
        return None

    if len(normalized) > MAX_APPOINTMENT_NOTES_LENGTH:
        raise ValueError(f'Notes must be {MAX_APPOINTMENT_NOTES_LENGTH} characters or fewer.')

    return normalized


def _validate_duration(value: int | None) -> int | None:
    if value is not None and not 0 < value <= MAX_APPOINTMENT_DURATION_MINUTES:
        raise ValueError(f'Duration must be between 1 and {MAX_APPOINTMENT_DURATION_MINUTES} minutes.')
    return value


class CreateAppointmentRequest(BaseModel):
    doctor_id: int | None = None
    patient_id: int | None = None
    appointment_date: date
    appointment_time: str
    duration: int | None = None
    appointment_type: str | None = None
    notes: str | None = None
    reason: str | None = None

    @field_validator('appointment_time')
    @classmethod
    def validate_appointment_time(cls, value: str) -> str:
        return validate_time_value(value)

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str | None) -> str | None:
        return _normalize_appointment_type(value)

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)

    @field_validator('duration')
    @classmethod
    def validate_duration(cls, value: int | None) -> int | None:
        return _validate_duration(value)


class UpdateAppointmentRequest(BaseModel):
    appointment_date: date | None = None
    appointment_time: str | None = None
    duration: int | None = None
    appointment_type: str | None = None
    status: str | None = None
    payment_status: str | None = None
    receptionist_id: int | None = None
    arrived: bool | None = None
    notes: str | None = None
    reason: str | None = None

    @field_validator('appointment_time')
    @classmethod
    def validate_appointment_time(cls, value: str | None) -> str | None:
        return validate_time_value(value)

    @field_validator('appointment_type')
    @classmethod
    def validate_appointment_type(cls, value: str | None) -> str | None:
        return _normalize_appointment_type(value)

    @field_validator('status')
    @classmethod
    def validate_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized not in AppointmentStatus.ALL:
            raise ValueError('Invalid appointment status.')
        return normalized

    @field_validator('payment_status')
    @classmethod
    def validate_payment_status(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip().lower()
        if normalized not in (PaymentStatus.PENDING, PaymentStatus.NOT_PAID, PaymentStatus.PAID):
            raise ValueError('Invalid payment status.')
        return normalized

    @field_validator('notes')
    @classmethod
    def validate_notes(cls, value: str | None) -> str | None:
        return _normalize_notes(value)

    @field_validator('duration')
    @classmethod
    def validate_duration(cls, value: int | None) -> int | None:
        return _validate_duration(value)


class AppointmentResponse(BaseModel):
    id: int
    doctor_id: int
    patient_id: int
    receptionist_id: int | None = None
    appointment_date: date
    appointment_time: str
    duration: int
    appointment_type: str
    status: str
    payment_status: str | None = None
    arrived: bool = False
    notes: str | None = None
    reason: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    class Config:
        from_attributes = True


class PendingCountResponse(BaseModel):
    count: int


def _resolve_patient_id(current_user: User, patient_id: int | None) -> int:
    if current_user.role == UserRole.PATIENT:
        if patient_id is not None and patient_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Patients can only book appointments for themselves.',
            )
        return current_user.id

    if patient_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='patient_id is required.')
    return patient_id


@router.post('', response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment(
    data: CreateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    notifier: NotificationTrigger = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    patient_id = _resolve_patient_id(current_user, data.patient_id)
    ensure_database_ready()

    try:
        return booking_service.create_appointment(
            db,
            data.model_dump(exclude={'patient_id'}),
            patient_id=patient_id,
            requestor_role=current_user.role,
            notifier=notifier,
            requestor_id=current_user.id,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/my-appointments', response_model=list[AppointmentResponse])
def list_my_appointments(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_service.list_appointments_for_user(db, current_user)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/pending-count', response_model=PendingCountResponse)
def get_pending_count(
    current_user: User = Depends(require_roles(UserRole.DOCTOR)),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return PendingCountResponse(count=booking_service.get_pending_count(db, current_user.id))
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/{appointment_id}', response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_service.get_appointment_for_user(db, appointment_id, current_user)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.patch('/{appointment_id}', response_model=AppointmentResponse)
def update_appointment(
    appointment_id: int,
    data: UpdateAppointmentRequest,
    current_user: User = Depends(get_current_user),
    notifier: NotificationTrigger = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_service.update_appointment(
            db,
            appointment_id,
            data.model_dump(exclude_unset=True),
            acting_user=current_user,
            notifier=notifier,
        )
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.patch('/{appointment_id}/confirm', response_model=AppointmentResponse)
def confirm_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    notifier: NotificationTrigger = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_service.confirm_appointment(db, appointment_id, current_user, notifier)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.patch('/{appointment_id}/cancel', response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    notifier: NotificationTrigger = Depends(get_notifier),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_service.cancel_appointment(db, appointment_id, current_user, notifier)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.patch('/{appointment_id}/arrived', response_model=AppointmentResponse)
def mark_arrived(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        return booking_service.mark_arrived(db, appointment_id, current_user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{appointment_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_appointment(
    appointment_id: int,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    ensure_database_ready()

    try:
        booking_service.delete_appointment(db, appointment_id, current_user)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
