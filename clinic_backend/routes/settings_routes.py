from datetime import date
from decimal import Decimal

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import get_current_user
from clinic_backend.core.days import indices_from_day_names, parse_weekday
from clinic_backend.core.timeslots import time_to_minutes
from clinic_backend.database import get_db
from clinic_backend.models.user import User
from clinic_backend.routes.common import (
    database_unavailable,
    ensure_database_ready,
    resolve_doctor_id,
    validate_time_value,
)
from clinic_backend.services import settings_service

router = APIRouter(tags=['settings'])


class SettingsUpdateRequest(BaseModel):
    available_days: list[str] | None = None
    working_days: list[int] | None = None
    start_time: str | None = None
    end_time: str | None = None
    appointment_duration: int | None = None
    consultation_fee: Decimal | None = None
    buffer_minutes: int | None = None
    valid_from: date | None = None
    valid_to: date | None = None
    default_template_id: int | None = None
    doctor_id: int | None = None

    @field_validator('available_days')
    @classmethod
    def validate_available_days(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        days = []
        for name in value:
            day = parse_weekday(name)
            if day is None:
                raise ValueError(f'Unknown day name: {name}')
            if day.label not in days:
                days.append(day.label)
        return days

    @field_validator('working_days')
    @classmethod
    def validate_working_days(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        if any(day < 0 or day > 6 for day in value):
            raise ValueError('Working days must be weekday indices between 0 (Sunday) and 6 (Saturday).')
        return sorted(set(value))

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: str | None) -> str | None:
        return validate_time_value(value)

    @field_validator('appointment_duration')
    @classmethod
    def validate_appointment_duration(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError('Appointment duration must be positive.')
        return value

    @model_validator(mode='after')
    def validate_ranges(self):
        if self.start_time and self.end_time and time_to_minutes(self.start_time) >= time_to_minutes(self.end_time):
            raise ValueError('Start time must be before end time.')
        if self.valid_from and self.valid_to and self.valid_from > self.valid_to:
            raise ValueError('valid_from must be on or before valid_to.')
        return self


class SettingsResponse(BaseModel):
    doctor_id: int
    available_days: list[str]
    working_days: list[int]
    start_time: str | None = None
    end_time: str | None = None
    appointment_duration: int | None = None
    consultation_fee: Decimal | None = None
    buffer_minutes: int
    valid_from: date | None = None
    valid_to: date | None = None
    default_template_id: int | None = None


def _settings_response(settings) -> SettingsResponse:
    return SettingsResponse(
        doctor_id=settings.doctor_id,
        available_days=list(settings.available_days or []),
        working_days=indices_from_day_names(settings.available_days),
        start_time=settings.start_time,
        end_time=settings.end_time,
        appointment_duration=settings.appointment_duration,
        consultation_fee=settings.consultation_fee,
        buffer_minutes=settings.buffer_minutes or 0,
        valid_from=settings.valid_from,
        valid_to=settings.valid_to,
        default_template_id=settings.default_template_id,
    )


@router.get('', response_model=SettingsResponse)
def get_settings(
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, doctor_id)
    ensure_database_ready()

    try:
        return _settings_response(settings_service.get_settings(db, target_id))
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.patch('', response_model=SettingsResponse)
def update_settings(
    data: SettingsUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, data.doctor_id)
    ensure_database_ready()

    try:
        patch = data.model_dump(exclude_unset=True, exclude={'doctor_id'})
        return _settings_response(settings_service.update_settings(db, target_id, patch))
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
