import logging
from datetime import date, timedelta

from fastapi import HTTPException, status
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from clinic_backend.core.days import Weekday
from clinic_backend.models.availability_template import AvailabilityTemplate
from clinic_backend.models.doctor_settings import DoctorSettings
from clinic_backend.models.schedule import DailySchedule, SlotStatus
from clinic_backend.services.auto_schedule_initializer import find_schedule, shifts_from_template
from clinic_backend.services.conflict_detection import validate_date_range

logger = logging.getLogger(__name__)

MAX_APPLY_RANGE_DAYS = 90
TEMPLATE_FIELDS = (
    'name',
    'working_days',
    'start_time',
    'end_time',
    'slot_duration',
    'buffer_minutes',
    'breaks',
    'valid_from',
    'valid_to',
    'description',
    'is_default',
)

PRESET_TEMPLATES = (
    {
        'name': 'Weekdays 9-5',
        'working_days': [1, 2, 3, 4, 5],
        'start_time': '09:00',
        'end_time': '17:00',
        'slot_duration': 30,
        'buffer_minutes': 5,
        'breaks': [{'start_time': '12:00', 'end_time': '13:00', 'label': 'Lunch Break'}],
        'description': 'Standard weekday schedule with lunch break',
    },
    {
        'name': 'Morning Clinic',
        'working_days': [1, 2, 3, 4, 5],
        'start_time': '08:00',
        'end_time': '12:00',
        'slot_duration': 20,
        'buffer_minutes': 5,
        'description': 'Morning-only clinic hours',
    },
    {
        'name': 'Evening Clinic',
        'working_days': [1, 2, 3, 4, 5],
        'start_time': '16:00',
        'end_time': '20:00',
        'slot_duration': 30,
        'buffer_minutes': 5,
        'description': 'Evening clinic hours for working patients',
    },
    {
        'name': 'Mon-Wed-Fri',
        'working_days': [1, 3, 5],
        'start_time': '09:00',
        'end_time': '17:00',
        'slot_duration': 30,
        'buffer_minutes': 5,
        'breaks': [{'start_time': '12:30', 'end_time': '13:30', 'label': 'Lunch'}],
        'description': 'Alternate weekday schedule',
    },
)


def _clear_default(db: Session, doctor_id: int) -> None:
    db.query(AvailabilityTemplate).filter(
        AvailabilityTemplate.doctor_id == doctor_id,
        AvailabilityTemplate.is_default.is_(True),
    ).update({AvailabilityTemplate.is_default: False}, synchronize_session='fetch')


def _point_settings_at(db: Session, doctor_id: int, template_id: int | None) -> None:
    db.query(DoctorSettings).filter(DoctorSettings.doctor_id == doctor_id).update(
        {DoctorSettings.default_template_id: template_id}, synchronize_session='fetch'
    )


def create_template(db: Session, doctor_id: int, data: dict) -> AvailabilityTemplate:
    if data.get('is_default'):
        _clear_default(db, doctor_id)

    template = AvailabilityTemplate(
        doctor_id=doctor_id,
        name=data['name'],
        working_days=list(data.get('working_days') or []),
        start_time=data['start_time'],
        end_time=data['end_time'],
        slot_duration=data.get('slot_duration') or 30,
        buffer_minutes=data.get('buffer_minutes') or 0,
        breaks=list(data.get('breaks') or []),
        valid_from=data.get('valid_from'),
        valid_to=data.get('valid_to'),
        description=data.get('description'),
        is_default=bool(data.get('is_default')),
    )
    db.add(template)
    db.flush()
    if template.is_default:
        _point_settings_at(db, doctor_id, template.id)
    db.commit()
    db.refresh(template)
    return template


def get_templates(db: Session, doctor_id: int) -> list[AvailabilityTemplate]:
    return db.query(AvailabilityTemplate).filter(
        AvailabilityTemplate.doctor_id == doctor_id,
    ).order_by(
        AvailabilityTemplate.is_default.desc(),
        AvailabilityTemplate.created_at.asc(),
        AvailabilityTemplate.id.asc(),
    ).all()


def get_template(db: Session, template_id: int, doctor_id: int) -> AvailabilityTemplate:
    template = db.query(AvailabilityTemplate).filter(
        AvailabilityTemplate.id == template_id,
        AvailabilityTemplate.doctor_id == doctor_id,
    ).first()
    if template is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Template not found')
    return template


def get_default_template(db: Session, doctor_id: int) -> AvailabilityTemplate | None:
    return db.query(AvailabilityTemplate).filter(
        AvailabilityTemplate.doctor_id == doctor_id,
        AvailabilityTemplate.is_default.is_(True),
    ).first()


def update_template(db: Session, template_id: int, doctor_id: int, data: dict) -> AvailabilityTemplate:
    template = get_template(db, template_id, doctor_id)

    if data.get('is_default') and not template.is_default:
        _clear_default(db, doctor_id)

    for field_name, value in data.items():
        if field_name in TEMPLATE_FIELDS and value is not None:
            setattr(template, field_name, value)

    if data.get('is_default'):
        _point_settings_at(db, doctor_id, template.id)

    db.commit()
    db.refresh(template)
    return template


def delete_template(db: Session, template_id: int, doctor_id: int) -> None:
    template = get_template(db, template_id, doctor_id)
    db.query(DoctorSettings).filter(DoctorSettings.default_template_id == template.id).update(
        {DoctorSettings.default_template_id: None}, synchronize_session='fetch'
    )
    db.delete(template)
    db.commit()


def create_preset_templates(db: Session, doctor_id: int) -> list[AvailabilityTemplate]:
    existing_names = {
        name for (name,) in db.query(AvailabilityTemplate.name).filter(AvailabilityTemplate.doctor_id == doctor_id)
    }

    created = []
    for preset in PRESET_TEMPLATES:
        if preset['name'] not in existing_names:
            created.append(create_template(db, doctor_id, preset))
    return created


def _template_applies(template: AvailabilityTemplate, day: date) -> bool:
    if template.valid_from and day < template.valid_from:
        return False
    if template.valid_to and day > template.valid_to:
        return False
    return Weekday.from_date(day).sunday_index in set(template.working_days or [])


def apply_template(
    db: Session,
    doctor_id: int,
    template_id: int,
    start_date: date,
    end_date: date | None = None,
    today: date | None = None,
) -> list[str]:
    """Write the template's shifts and breaks onto each matching day. Booked and blocked slots are kept."""
    today = today or date.today()
    end_date = end_date or start_date

    result = validate_date_range(start_date, end_date, today=today)
    if result.has_conflict:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='; '.join(result.conflicts))
    if (end_date - start_date).days >= MAX_APPLY_RANGE_DAYS:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f'Templates can be applied to at most {MAX_APPLY_RANGE_DAYS} days at once.',
        )

    template = get_template(db, template_id, doctor_id)
    shifts, breaks = shifts_from_template(template)

    applied: list[str] = []
    day = max(start_date, today)
    while day <= end_date:
        if _template_applies(template, day):
            schedule = find_schedule(db, doctor_id, day)
            if schedule is None:
                db.add(DailySchedule(
                    doctor_id=doctor_id,
                    date=day,
                    shifts=[dict(shift) for shift in shifts],
                    breaks=[dict(item) for item in breaks],
                    slots=[],
                    slot_duration=template.slot_duration,
                ))
            else:
                schedule.shifts = [dict(shift) for shift in shifts]
                schedule.breaks = [dict(item) for item in breaks]
                schedule.slots = [
                    slot for slot in schedule.slots or []
                    if slot.get('status') in (SlotStatus.BOOKED, SlotStatus.BLOCKED)
                ]
                schedule.slot_duration = template.slot_duration
                flag_modified(schedule, 'shifts')
                flag_modified(schedule, 'breaks')
                flag_modified(schedule, 'slots')
            applied.append(day.isoformat())
        day += timedelta(days=1)

    db.commit()
    logger.info('Applied template %s for doctor %s to %d day(s)', template.id, doctor_id, len(applied))
    return applied
