from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator, model_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import get_current_user
from clinic_backend.core.timeslots import time_to_minutes
from clinic_backend.database import get_db
from clinic_backend.models.user import User
from clinic_backend.routes.common import (
    database_unavailable,
    ensure_database_ready,
    resolve_doctor_id,
    validate_time_value,
)
from clinic_backend.services import availability_template_service

router = APIRouter(tags=['templates'])


class TemplateBreak(BaseModel):
    start_time: str
    end_time: str
    label: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: str) -> str:
        return validate_time_value(value)


class TemplateRequest(BaseModel):
    name: str | None = None
    working_days: list[int] | None = None
    start_time: str | None = None
    end_time: str | None = None
    slot_duration: int | None = None
    buffer_minutes: int | None = None
    breaks: list[TemplateBreak] | None = None
    valid_from: date | None = None
    valid_to: date | None = None
    description: str | None = None
    is_default: bool | None = None
    doctor_id: int | None = None

    @field_validator('name')
    @classmethod
    def validate_name(cls, value: str | None) -> str | None:
        if value is None:
            return None
        normalized = value.strip()
        if not normalized:
            raise ValueError('Template name is required.')
        return normalized

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

    @field_validator('slot_duration')
    @classmethod
    def validate_slot_duration(cls, value: int | None) -> int | None:
        if value is not None and value <= 0:
            raise ValueError('Slot duration must be positive.')
        return value

    @field_validator('buffer_minutes')
    @classmethod
    def validate_buffer_minutes(cls, value: int | None) -> int | None:
        if value is not None and value < 0:
            raise ValueError('Buffer minutes cannot be negative.')
        return value

    @model_validator(mode='after')
    def validate_ranges(self):
        if self.start_time and self.end_time and time_to_minutes(self.start_time) >= time_to_minutes(self.end_time):
            raise ValueError('Start time must be before end time.')
        if self.valid_from and self.valid_to and self.valid_from > self.valid_to:
            raise ValueError('valid_from must be on or before valid_to.')
        return self

    def to_fields(self) -> dict:
        fields = self.model_dump(exclude_unset=True, exclude={'doctor_id'})
        if self.breaks is not None:
            fields['breaks'] = [item.model_dump() for item in self.breaks]
        return fields


class ApplyTemplateRequest(BaseModel):
    template_id: int
    start_date: date
    end_date: date | None = None
    doctor_id: int | None = None


class TemplateResponse(BaseModel):
    id: int
    doctor_id: int
    name: str
    working_days: list[int]
    start_time: str
    end_time: str
    slot_duration: int
    buffer_minutes: int
    breaks: list[dict]
    valid_from: date | None = None
    valid_to: date | None = None
    description: str | None = None
    is_default: bool
    created_at: datetime | None = None

    class Config:
        from_attributes = True


class ApplyTemplateResponse(BaseModel):
    template_id: int
    applied_dates: list[str]


@router.get('', response_model=list[TemplateResponse])
def list_templates(
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, doctor_id)
    ensure_database_ready()

    try:
        return availability_template_service.get_templates(db, target_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/default', response_model=TemplateResponse | None)
def get_default_template(
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, doctor_id)
    ensure_database_ready()

    try:
        return availability_template_service.get_default_template(db, target_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.post('/presets', response_model=list[TemplateResponse], status_code=status.HTTP_201_CREATED)
def create_preset_templates(
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, doctor_id)
    ensure_database_ready()

    try:
        return availability_template_service.create_preset_templates(db, target_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/apply', response_model=ApplyTemplateResponse)
def apply_template(
    data: ApplyTemplateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, data.doctor_id)
    ensure_database_ready()

    try:
        applied = availability_template_service.apply_template(
            db,
            target_id,
            data.template_id,
            data.start_date,
            data.end_date,
        )
        return ApplyTemplateResponse(template_id=data.template_id, applied_dates=applied)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('', response_model=TemplateResponse, status_code=status.HTTP_201_CREATED)
def create_template(
    data: TemplateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, data.doctor_id)
    if not data.name or not data.start_time or not data.end_time:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Template name, start_time and end_time are required.',
        )

    ensure_database_ready()

    try:
        return availability_template_service.create_template(db, target_id, data.to_fields())
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/{template_id}', response_model=TemplateResponse)
def get_template(
    template_id: int,
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, doctor_id)
    ensure_database_ready()

    try:
        return availability_template_service.get_template(db, template_id, target_id)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.put('/{template_id}', response_model=TemplateResponse)
def update_template(
    template_id: int,
    data: TemplateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, data.doctor_id)
    ensure_database_ready()

    try:
        return availability_template_service.update_template(db, template_id, target_id, data.to_fields())
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.delete('/{template_id}', status_code=status.HTTP_204_NO_CONTENT)
def delete_template(
    template_id: int,
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, doctor_id)
    ensure_database_ready()

    try:
        availability_template_service.delete_template(db, template_id, target_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
