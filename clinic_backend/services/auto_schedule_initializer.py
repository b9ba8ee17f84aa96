"""Lazy materialization of a doctor's daily schedule.

A schedule row is only created the first time a (doctor, date) pair is looked
at. The shifts of the new row come from the best source available, in order:

1. the most recent same-weekday schedule among the last
   ``SCHEDULE_LOOKBACK_ROWS`` rows that has shifts,
2. the most recent schedule that has shifts at all,
3. the doctor's default availability template,
4. the doctor's effective working hours (settings, else the user row),
5. three standard shifts, Monday through Friday only.

Slots are not pre-expanded: the row is stored with ``slots = []``.
"""

import copy
import logging
from datetime import date

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from clinic_backend.core import config
from clinic_backend.core.days import Weekday, normalize_days
from clinic_backend.models.availability_template import AvailabilityTemplate
from clinic_backend.models.schedule import DailySchedule
from clinic_backend.services.directory import find_user_or_none
from clinic_backend.services.settings_service import DoctorAvailability, get_effective_availability

logger = logging.getLogger(__name__)

STANDARD_SHIFTS = (
    {'type': 'morning', 'start_time': '08:00', 'end_time': '12:00', 'slot_duration': 30, 'enabled': True},
    {'type': 'afternoon', 'start_time': '13:00', 'end_time': '17:00', 'slot_duration': 30, 'enabled': True},
    {'type': 'evening', 'start_time': '17:00', 'end_time': '20:00', 'slot_duration': 30, 'enabled': True},
)
FALLBACK_WORKING_DAYS = {Weekday.MONDAY, Weekday.TUESDAY, Weekday.WEDNESDAY, Weekday.THURSDAY, Weekday.FRIDAY}


def find_schedule(db: Session, doctor_id: int, day: date) -> DailySchedule | None:
    return db.query(DailySchedule).filter(
        DailySchedule.doctor_id == doctor_id,
        DailySchedule.date == day,
    ).first()


def _recent_schedules(db: Session, doctor_id: int, limit: int) -> list[DailySchedule]:
    return db.query(DailySchedule).filter(
        DailySchedule.doctor_id == doctor_id,
    ).order_by(DailySchedule.date.desc()).limit(limit).all()


def _latest_schedule_with_shifts(db: Session, doctor_id: int) -> DailySchedule | None:
    # JSON columns cannot be filtered portably, so walk newest first
    query = db.query(DailySchedule).filter(
        DailySchedule.doctor_id == doctor_id,
    ).order_by(DailySchedule.date.desc())
    for schedule in query.yield_per(50):
        if schedule.shifts:
            return schedule
    return None


def _default_template(db: Session, doctor_id: int, day: date) -> AvailabilityTemplate | None:
    template = db.query(AvailabilityTemplate).filter(
        AvailabilityTemplate.doctor_id == doctor_id,
        AvailabilityTemplate.is_default.is_(True),
    ).first()
    if template is None:
        return None
    if template.valid_from and day < template.valid_from:
        return None
    if template.valid_to and day > template.valid_to:
        return None
    if Weekday.from_date(day).sunday_index not in set(template.working_days or []):
        return None
    return template


def shifts_from_template(template: AvailabilityTemplate) -> tuple[list[dict], list[dict]]:
    shifts = [{
        'type': 'custom',
        'start_time': template.start_time,
        'end_time': template.end_time,
        'slot_duration': template.slot_duration or config.DEFAULT_SLOT_DURATION_MINUTES,
        'buffer_minutes': template.buffer_minutes or 0,
        'enabled': True,
    }]
    breaks = [
        {
            'start_time': item['start_time'],
            'end_time': item['end_time'],
            'reason': item.get('label') or 'Break',
        }
        for item in (template.breaks or [])
    ]
    return shifts, breaks


def find_availability(db: Session, doctor_id: int, day: date) -> DoctorAvailability | None:
    """The doctor's working days and hours for ``day``, merged the same way the booking engine sees them."""
    doctor = find_user_or_none(db, doctor_id)
    if doctor is None:
        return None
    return get_effective_availability(db, doctor, day)


def works_on(availability: DoctorAvailability | None, day: date) -> bool:
    if availability is None or not availability.available_days:
        return True
    return Weekday.from_date(day) in normalize_days(availability.available_days)


def resolve_shifts(
    db: Session,
    doctor_id: int,
    day: date,
    availability: DoctorAvailability | None = None,
) -> tuple[list[dict], list[dict]] | None:
    """Pick shifts and breaks for a new schedule row, or None when the day is not worked."""
    weekday = Weekday.from_date(day)
    recent = _recent_schedules(db, doctor_id, config.SCHEDULE_LOOKBACK_ROWS)

    for schedule in recent:
        if schedule.shifts and Weekday.from_date(schedule.date) == weekday:
            return copy.deepcopy(schedule.shifts), copy.deepcopy(schedule.breaks or [])

    latest = next((schedule for schedule in recent if schedule.shifts), None)
    if latest is None and len(recent) >= config.SCHEDULE_LOOKBACK_ROWS:
        latest = _latest_schedule_with_shifts(db, doctor_id)
    if latest is not None:
        return copy.deepcopy(latest.shifts), copy.deepcopy(latest.breaks or [])

    template = _default_template(db, doctor_id, day)
    if template is not None:
        return shifts_from_template(template)

    if availability is not None and availability.start_time and availability.end_time:
        return [{
            'type': 'custom',
            'start_time': availability.start_time,
            'end_time': availability.end_time,
            'slot_duration': availability.appointment_duration or config.DEFAULT_SLOT_DURATION_MINUTES,
            'enabled': True,
        }], []

    has_declared_days = availability is not None and bool(availability.available_days)
    if not has_declared_days and weekday not in FALLBACK_WORKING_DAYS:
        return None

    return [dict(shift) for shift in STANDARD_SHIFTS], []


def auto_initialize_schedule_if_needed(
    db: Session,
    doctor_id: int,
    day: date,
    today: date | None = None,
    commit: bool = True,
) -> bool:
    """Create the (doctor, day) schedule row if it is missing. Returns True when a row was created."""
    today = today or date.today()

    if find_schedule(db, doctor_id, day) is not None:
        return False

    if day < today:
        return False

    availability = find_availability(db, doctor_id, day)
    if not works_on(availability, day):
        return False

    resolved = resolve_shifts(db, doctor_id, day, availability)
    if resolved is None:
        return False

    shifts, breaks = resolved
    schedule = DailySchedule(
        doctor_id=doctor_id,
        date=day,
        shifts=shifts,
        breaks=breaks,
        slots=[],
        slot_duration=shifts[0].get('slot_duration') if shifts else config.DEFAULT_SLOT_DURATION_MINUTES,
    )

    try:
        with db.begin_nested():
            db.add(schedule)
    except IntegrityError:
        logger.info('Schedule for doctor %s on %s was created concurrently', doctor_id, day)
        return False

    if commit:
        db.commit()
    logger.info('Initialized schedule for doctor %s on %s with %d shift(s)', doctor_id, day, len(shifts))
    return True
