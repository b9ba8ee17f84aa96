import logging
from datetime import date
from typing import NamedTuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_backend.core.days import day_names_from_indices
from clinic_backend.models.doctor_settings import DoctorSettings
from clinic_backend.models.user import User

logger = logging.getLogger(__name__)

SETTINGS_FIELDS = (
    'available_days',
    'start_time',
    'end_time',
    'appointment_duration',
    'consultation_fee',
    'buffer_minutes',
    'valid_from',
    'valid_to',
    'default_template_id',
)
USER_MIRRORED_FIELDS = ('available_days', 'start_time', 'end_time')


class DoctorAvailability(NamedTuple):
    available_days: list[str]
    start_time: str | None
    end_time: str | None
    appointment_duration: int | None


def find_settings(db: Session, doctor_id: int) -> DoctorSettings | None:
    return db.query(DoctorSettings).filter(DoctorSettings.doctor_id == doctor_id).first()


def get_settings(db: Session, doctor_id: int) -> DoctorSettings:
    """Return the doctor's settings row, creating a default one on first read."""
    settings = find_settings(db, doctor_id)
    if settings is not None:
        return settings

    settings = DoctorSettings(doctor_id=doctor_id, buffer_minutes=0)
    try:
        with db.begin_nested():
            db.add(settings)
        db.commit()
    except IntegrityError:
        # another request created it first
        settings = find_settings(db, doctor_id)
    db.refresh(settings)
    return settings


def update_settings(db: Session, doctor_id: int, patch: dict) -> DoctorSettings:
    settings = get_settings(db, doctor_id)
    updates = dict(patch)

    working_days = updates.pop('working_days', None)
    if working_days is not None:
        updates['available_days'] = day_names_from_indices(working_days)

    for field_name, value in updates.items():
        if field_name in SETTINGS_FIELDS:
            setattr(settings, field_name, value)

    doctor = db.query(User).filter(User.id == doctor_id).first()
    if doctor is not None:
        for field_name in USER_MIRRORED_FIELDS:
            if field_name in updates:
                setattr(doctor, field_name, updates[field_name])

    db.commit()
    db.refresh(settings)
    logger.info('Updated settings for doctor %s: %s', doctor_id, sorted(updates))
    return settings


def _settings_apply_on(settings: DoctorSettings, day: date | None) -> bool:
    if day is None:
        return True
    if settings.valid_from and day < settings.valid_from:
        return False
    if settings.valid_to and day > settings.valid_to:
        return False
    return True


def get_effective_availability(db: Session, doctor: User, day: date | None = None) -> DoctorAvailability:
    """Settings win over the per-doctor user fields when they declare anything for ``day``."""
    settings = find_settings(db, doctor.id)

    if settings is not None and _settings_apply_on(settings, day):
        return DoctorAvailability(
            available_days=list(settings.available_days or doctor.available_days or []),
            start_time=settings.start_time or doctor.start_time,
            end_time=settings.end_time or doctor.end_time,
            appointment_duration=settings.appointment_duration,
        )

    return DoctorAvailability(
        available_days=list(doctor.available_days or []),
        start_time=doctor.start_time,
        end_time=doctor.end_time,
        appointment_duration=None,
    )
