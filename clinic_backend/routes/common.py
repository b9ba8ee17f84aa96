from fastapi import HTTPException, status
from sqlalchemy.exc import SQLAlchemyError

from clinic_backend.core.timeslots import normalize_time
from clinic_backend.database import ensure_appointment_schema, ensure_schedule_schema
from clinic_backend.models.user import User, UserRole

DATABASE_UNAVAILABLE_DETAIL = 'Database unavailable. Verify DATABASE_URL and Postgres credentials.'


def ensure_database_ready() -> None:
    try:
        ensure_schedule_schema()
        ensure_appointment_schema()
    except SQLAlchemyError as exc:
        raise database_unavailable() from exc


def database_unavailable() -> HTTPException:
    return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=DATABASE_UNAVAILABLE_DETAIL)


def validate_time_value(value: str | None) -> str | None:
    if value is None:
        return None
    try:
        return normalize_time(value)
    except ValueError as exc:
        raise ValueError('Times must use the HH:MM format.') from exc


def resolve_doctor_id(current_user: User, doctor_id: int | None = None) -> int:
    """Doctors act on their own schedule; staff must name the doctor."""
    if current_user.role == UserRole.DOCTOR:
        if doctor_id is not None and doctor_id != current_user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail='Doctors can only manage their own schedule.',
            )
        return current_user.id

    if current_user.role in UserRole.STAFF:
        if doctor_id is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='doctor_id is required.')
        return doctor_id

    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail='Only doctors and staff can manage schedules.',
    )
