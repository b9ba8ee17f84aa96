from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from clinic_backend.auth.dependencies import get_current_user
from clinic_backend.database import get_db
from clinic_backend.models.schedule import SHIFT_TYPES, SlotStatus
from clinic_backend.models.user import User
from clinic_backend.routes.common import (
    database_unavailable,
    ensure_database_ready,
    resolve_doctor_id,
    validate_time_value,
)
from clinic_backend.services import schedule_service

router = APIRouter(tags=['schedule'])


class ShiftModel(BaseModel):
    type: str = 'custom'
    start_time: str
    end_time: str
    slot_duration: int = 30
    buffer_minutes: int = 0
    enabled: bool = True

    @field_validator('type')
    @classmethod
    def validate_type(cls, value: str) -> str:
        normalized = value.strip().lower()
        if normalized not in SHIFT_TYPES:
            raise ValueError('Invalid shift type.')
        return normalized

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: str) -> str:
        return validate_time_value(value)

    @field_validator('slot_duration')
    @classmethod
    def validate_slot_duration(cls, value: int) -> int:
        if value <= 0:
            raise ValueError('Slot duration must be positive.')
        return value


class BreakModel(BaseModel):
    start_time: str
    end_time: str
    reason: str | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: str) -> str:
        return validate_time_value(value)


class SlotModel(BaseModel):
    start_time: str
    end_time: str
    status: str
    appointment_id: int | None = None
    blocked_reason: str | None = None


class DayScheduleResponse(BaseModel):
    doctor_id: int
    date: date
    shifts: list[dict]
    breaks: list[dict]
    slots: list[SlotModel]


class SlotChangeRequest(BaseModel):
    date: date
    start_time: str
    end_time: str | None = None
    reason: str | None = None
    doctor_id: int | None = None

    @field_validator('start_time', 'end_time')
    @classmethod
    def validate_times(cls, value: str | None) -> str | None:
        return validate_time_value(value)


class DayScheduleUpdateRequest(BaseModel):
    date: date
    shifts: list[ShiftModel]
    breaks: list[BreakModel] = []
    doctor_id: int | None = None


class WorkingDaysRequest(BaseModel):
    working_days: list[int]
    doctor_id: int | None = None

    @field_validator('working_days')
    @classmethod
    def validate_working_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError('Working days must be weekday indices between 0 (Sunday) and 6 (Saturday).')
        return sorted(set(value))


class MonthlyOverviewResponse(BaseModel):
    blocked_days: list[str]
    count: int


def _day_response(view: dict) -> DayScheduleResponse:
    return DayScheduleResponse(**view)


@router.get('/overview', response_model=MonthlyOverviewResponse)
def get_monthly_overview(
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, doctor_id)
    ensure_database_ready()

    try:
        return schedule_service.get_monthly_overview(db, target_id, year, month)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/blocked-days', response_model=list[str])
def get_blocked_days(
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, doctor_id)
    ensure_database_ready()

    try:
        return schedule_service.get_blocked_days(db, target_id, year, month)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/working-days', response_model=list[int])
def get_working_days(
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, doctor_id)
    ensure_database_ready()

    try:
        return schedule_service.get_doctor_working_days(db, target_id)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/working-days', response_model=list[int])
def update_working_days(
    data: WorkingDaysRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, data.doctor_id)
    ensure_database_ready()

    try:
        return schedule_service.update_doctor_working_days(db, target_id, data.working_days)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/public/{doctor_id}/week/{start_date}', response_model=list[DayScheduleResponse])
def get_public_week_schedule(
    doctor_id: int,
    start_date: date,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        return [_day_response(view) for view in schedule_service.get_week_schedule(db, doctor_id, start_date)]
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/public/{doctor_id}/available-dates', response_model=list[str])
def get_public_available_dates(
    doctor_id: int,
    start_date: date | None = Query(default=None),
    days: int = Query(default=30, ge=1, le=schedule_service.MAX_AVAILABLE_DATES_RANGE),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        return schedule_service.get_available_dates(db, doctor_id, start_date or date.today(), days)
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


@router.get('/public/{doctor_id}/{schedule_date}', response_model=DayScheduleResponse)
def get_public_day_schedule(
    doctor_id: int,
    schedule_date: date,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    del current_user
    ensure_database_ready()

    try:
        schedule = schedule_service.get_day_schedule(db, doctor_id, schedule_date)
        return _day_response(schedule_service.build_day_view(schedule))
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


def _change_slot(db: Session, current_user: User, data: SlotChangeRequest, slot_status: str) -> SlotModel:
    target_id = resolve_doctor_id(current_user, data.doctor_id)
    ensure_database_ready()

    try:
        slot = schedule_service.change_slot_availability(
            db,
            target_id,
            data.date,
            data.start_time,
            data.end_time,
            slot_status,
            reason=data.reason,
        )
        return SlotModel(**slot)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.post('/available', response_model=SlotModel)
def mark_slot_available(
    data: SlotChangeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _change_slot(db, current_user, data, SlotStatus.AVAILABLE)


@router.post('/block', response_model=SlotModel)
def block_slot(
    data: SlotChangeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not data.reason or not data.reason.strip():
        data.reason = 'Blocked'
    return _change_slot(db, current_user, data, SlotStatus.BLOCKED)


@router.post('/unblock', response_model=SlotModel)
def unblock_slot(
    data: SlotChangeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return _change_slot(db, current_user, data, SlotStatus.AVAILABLE)


@router.post('/remove')
def remove_slot(
    data: SlotChangeRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, data.doctor_id)
    ensure_database_ready()

    try:
        return schedule_service.remove_slot(db, target_id, data.date, data.start_time, data.end_time)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.put('/day', response_model=DayScheduleResponse)
def update_day_schedule(
    data: DayScheduleUpdateRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, data.doctor_id)
    if data.date < date.today():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Past schedules cannot be changed.',
        )

    ensure_database_ready()

    try:
        view = schedule_service.update_day_schedule(
            db,
            target_id,
            data.date,
            [shift.model_dump() for shift in data.shifts],
            [item.model_dump() for item in data.breaks],
        )
        return _day_response(view)
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc


@router.get('/{schedule_date}', response_model=DayScheduleResponse)
def get_my_day_schedule(
    schedule_date: date,
    doctor_id: int | None = Query(default=None),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    target_id = resolve_doctor_id(current_user, doctor_id)
    ensure_database_ready()

    try:
        schedule = schedule_service.get_day_schedule(db, target_id, schedule_date)
        return _day_response(schedule_service.build_day_view(schedule))
    except SQLAlchemyError as exc:
        db.rollback()
        raise database_unavailable() from exc
