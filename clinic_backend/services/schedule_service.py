import calendar
import copy
import logging
from datetime import date, datetime, timedelta

from fastapi import HTTPException, status
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.attributes import flag_modified

from clinic_backend.core import config
from clinic_backend.core.days import indices_from_day_names
from clinic_backend.core.timeslots import add_minutes, generate_time_slots, time_to_minutes
from clinic_backend.models.appointment import Appointment, AppointmentStatus
from clinic_backend.models.schedule import DailySchedule, SlotStatus
from clinic_backend.services.auto_schedule_initializer import (
    auto_initialize_schedule_if_needed,
    find_availability,
    find_schedule,
    resolve_shifts,
    works_on,
)
from clinic_backend.services.conflict_detection import TimeRange, check_multiple_slot_conflicts, times_overlap
from clinic_backend.services.settings_service import get_settings, update_settings

logger = logging.getLogger(__name__)

DEFAULT_SLOT_STEP_MINUTES = 60
MAX_AVAILABLE_DATES_RANGE = 90


def make_slot(
    start_time: str,
    end_time: str,
    slot_status: str = SlotStatus.AVAILABLE,
    appointment_id: int | None = None,
    blocked_reason: str | None = None,
) -> dict:
    return {
        'start_time': start_time,
        'end_time': end_time,
        'status': slot_status,
        'appointment_id': appointment_id,
        'blocked_reason': blocked_reason,
    }


def default_hourly_slots() -> list[dict]:
    return [
        make_slot(start, end)
        for start, end in generate_time_slots(
            time_to_minutes(config.DEFAULT_DAY_START),
            time_to_minutes(config.DEFAULT_DAY_END),
            DEFAULT_SLOT_STEP_MINUTES,
        )
    ]


def derive_slots(shifts: list[dict] | None, breaks: list[dict] | None) -> list[dict]:
    """Expand enabled shifts into slots, marking the ones that fall in a break."""
    derived: list[dict] = []
    for shift in shifts or []:
        if not shift.get('enabled', True):
            continue
        duration = int(shift.get('slot_duration') or config.DEFAULT_SLOT_DURATION_MINUTES)
        for start, end in generate_time_slots(
            time_to_minutes(shift['start_time']),
            time_to_minutes(shift['end_time']),
            duration,
            int(shift.get('buffer_minutes') or 0),
        ):
            in_break = any(
                times_overlap(start, end, item['start_time'], item['end_time'])
                for item in breaks or []
            )
            derived.append(make_slot(start, end, SlotStatus.BREAK if in_break else SlotStatus.AVAILABLE))
    return derived


def merge_slots(stored: list[dict], derived: list[dict]) -> list[dict]:
    """Stored slots win; derived slots that overlap any stored slot are dropped."""
    merged = list(stored)
    for slot in derived:
        if not any(
            times_overlap(slot['start_time'], slot['end_time'], other['start_time'], other['end_time'])
            or slot['start_time'] == other['start_time']
            for other in stored
        ):
            merged.append(slot)
    return sorted(merged, key=lambda slot: slot['start_time'])


def build_day_view(schedule: DailySchedule) -> dict:
    return {
        'doctor_id': schedule.doctor_id,
        'date': schedule.date.isoformat(),
        'shifts': schedule.shifts or [],
        'breaks': schedule.breaks or [],
        'slots': merge_slots(schedule.slots or [], derive_slots(schedule.shifts, schedule.breaks)),
    }


def get_day_schedule(
    db: Session,
    doctor_id: int,
    day: date,
    today: date | None = None,
    commit: bool = True,
) -> DailySchedule:
    """Read-or-create the schedule row for (doctor, day)."""
    schedule = find_schedule(db, doctor_id, day)
    if schedule is not None:
        return schedule

    auto_initialize_schedule_if_needed(db, doctor_id, day, today=today, commit=commit)
    schedule = find_schedule(db, doctor_id, day)
    if schedule is not None:
        return schedule

    schedule = DailySchedule(
        doctor_id=doctor_id,
        date=day,
        shifts=[],
        breaks=[],
        slots=default_hourly_slots(),
        slot_duration=DEFAULT_SLOT_STEP_MINUTES,
    )
    try:
        with db.begin_nested():
            db.add(schedule)
    except IntegrityError:
        logger.info('Schedule for doctor %s on %s was created concurrently, re-reading', doctor_id, day)
        return find_schedule(db, doctor_id, day)

    if commit:
        db.commit()
    return schedule


def preview_day(db: Session, doctor_id: int, day: date) -> dict | None:
    """Day view without materializing anything. None when the doctor does not work that day."""
    schedule = find_schedule(db, doctor_id, day)
    if schedule is not None:
        return build_day_view(schedule)

    availability = find_availability(db, doctor_id, day)
    if not works_on(availability, day):
        return None

    resolved = resolve_shifts(db, doctor_id, day, availability)
    if resolved is None:
        return None

    shifts, breaks = resolved
    return {
        'doctor_id': doctor_id,
        'date': day.isoformat(),
        'shifts': shifts,
        'breaks': breaks,
        'slots': derive_slots(shifts, breaks),
    }


def _save_slots(schedule: DailySchedule, slots: list[dict]) -> None:
    schedule.slots = sorted(slots, key=lambda slot: slot['start_time'])
    flag_modified(schedule, 'slots')


def set_slot_status(
    db: Session,
    doctor_id: int,
    day: date,
    start_time: str,
    end_time: str | None,
    slot_status: str,
    reason: str | None = None,
    appointment_id: int | None = None,
    commit: bool = True,
) -> dict:
    """Claim, release or block the slot starting at ``start_time``. Returns the mutated slot."""
    if slot_status not in SlotStatus.ALL:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail='Invalid slot status.')

    end_time = end_time or start_time
    schedule = get_day_schedule(db, doctor_id, day, commit=commit)
    slots = copy.deepcopy(schedule.slots or [])

    if slot_status == SlotStatus.BOOKED and appointment_id is not None:
        # an appointment can own a single slot only
        for other in slots:
            if other.get('appointment_id') == appointment_id and other['start_time'] != start_time:
                other['status'] = SlotStatus.AVAILABLE
                other['appointment_id'] = None

    slot = next((item for item in slots if item['start_time'] == start_time), None)
    if slot is None:
        derived = next(
            (item for item in derive_slots(schedule.shifts, schedule.breaks) if item['start_time'] == start_time),
            None,
        )
        if end_time == start_time and derived is not None:
            end_time = derived['end_time']
        slot = make_slot(start_time, end_time, slot_status)
        slots.append(slot)
    elif end_time != start_time:
        slot['end_time'] = end_time

    slot['status'] = slot_status
    slot['blocked_reason'] = reason if slot_status == SlotStatus.BLOCKED else None
    if slot_status == SlotStatus.BOOKED:
        slot['appointment_id'] = appointment_id
    else:
        slot['appointment_id'] = None

    _save_slots(schedule, slots)
    if commit:
        db.commit()
    else:
        db.flush()
    return slot


def change_slot_availability(
    db: Session,
    doctor_id: int,
    day: date,
    start_time: str,
    end_time: str | None,
    slot_status: str,
    reason: str | None = None,
) -> dict:
    """Open, block or unblock a slot by hand. Booked slots are owned by their appointment."""
    if slot_status == SlotStatus.BOOKED:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail='Slots are booked by creating an appointment.',
        )

    schedule = get_day_schedule(db, doctor_id, day)
    current = next((item for item in schedule.slots or [] if item['start_time'] == start_time), None)
    if current is not None and current['status'] == SlotStatus.BOOKED:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail='This slot is booked. Cancel or reschedule the appointment first.',
        )

    slot = set_slot_status(db, doctor_id, day, start_time, end_time, slot_status, reason=reason)
    logger.info('Doctor %s slot %s %s set to %s', doctor_id, day, start_time, slot_status)
    return slot


def claim_appointment_slot(db: Session, appointment: Appointment, commit: bool = True) -> dict:
    return set_slot_status(
        db,
        appointment.doctor_id,
        appointment.appointment_date,
        appointment.appointment_time,
        add_minutes(appointment.appointment_time, appointment.duration or config.DEFAULT_SLOT_DURATION_MINUTES),
        SlotStatus.BOOKED,
        appointment_id=appointment.id,
        commit=commit,
    )


def release_appointment_slot(
    db: Session,
    doctor_id: int,
    day: date,
    start_time: str,
    appointment_id: int | None = None,
    commit: bool = True,
) -> dict | None:
    """Put the slot back to available, unless it now belongs to a different appointment."""
    schedule = find_schedule(db, doctor_id, day)
    if schedule is None:
        return None

    slot = next((item for item in schedule.slots or [] if item['start_time'] == start_time), None)
    if slot is None:
        return None
    if appointment_id is not None and slot.get('appointment_id') not in (None, appointment_id):
        return slot

    return set_slot_status(db, doctor_id, day, start_time, slot['end_time'], SlotStatus.AVAILABLE, commit=commit)


def remove_slot(db: Session, doctor_id: int, day: date, start_time: str, end_time: str | None = None) -> dict:
    schedule = find_schedule(db, doctor_id, day)
    if schedule is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Schedule not found.')

    slots = copy.deepcopy(schedule.slots or [])
    slot = next(
        (
            item for item in slots
            if item['start_time'] == start_time and (end_time in (None, start_time) or item['end_time'] == end_time)
        ),
        None,
    )
    if slot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail='Slot not found.')
    if slot['status'] == SlotStatus.BOOKED:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='Booked slots cannot be removed.')

    slots.remove(slot)
    _save_slots(schedule, slots)
    db.commit()
    return {'success': True, 'slot': slot}


def update_day_schedule(
    db: Session,
    doctor_id: int,
    day: date,
    shifts: list[dict],
    breaks: list[dict],
) -> dict:
    """Replace the day's shifts and breaks, keeping booked and blocked slots."""
    enabled = [TimeRange(shift['start_time'], shift['end_time']) for shift in shifts if shift.get('enabled', True)]
    result = check_multiple_slot_conflicts(enabled)
    if result.has_conflict:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail='; '.join(result.conflicts))

    schedule = get_day_schedule(db, doctor_id, day)
    schedule.shifts = shifts
    schedule.breaks = breaks
    flag_modified(schedule, 'shifts')
    flag_modified(schedule, 'breaks')

    kept = [slot for slot in schedule.slots or [] if slot['status'] in (SlotStatus.BOOKED, SlotStatus.BLOCKED)]
    _save_slots(schedule, kept)
    db.commit()
    db.refresh(schedule)
    return build_day_view(schedule)


def get_week_schedule(db: Session, doctor_id: int, start_date: date) -> list[dict]:
    week = []
    for offset in range(7):
        day = start_date + timedelta(days=offset)
        view = preview_day(db, doctor_id, day)
        week.append(view or {'doctor_id': doctor_id, 'date': day.isoformat(), 'shifts': [], 'breaks': [], 'slots': []})
    return week


def get_available_dates(
    db: Session,
    doctor_id: int,
    start_date: date,
    days: int = 30,
    now: datetime | None = None,
) -> list[str]:
    now = now or datetime.now()
    days = max(1, min(days, MAX_AVAILABLE_DATES_RANGE))
    current_time = now.strftime('%H:%M')

    available: list[str] = []
    for offset in range(days):
        day = start_date + timedelta(days=offset)
        if day < now.date():
            continue
        view = preview_day(db, doctor_id, day)
        if view is None:
            continue
        if any(
            slot['status'] == SlotStatus.AVAILABLE and (day > now.date() or slot['start_time'] > current_time)
            for slot in view['slots']
        ):
            available.append(day.isoformat())
    return available


def get_monthly_overview(db: Session, doctor_id: int, year: int, month: int) -> dict:
    last_day = calendar.monthrange(year, month)[1]
    start = date(year, month, 1)
    end = date(year, month, last_day)

    schedules = db.query(DailySchedule).filter(
        DailySchedule.doctor_id == doctor_id,
        DailySchedule.date >= start,
        DailySchedule.date <= end,
    ).order_by(DailySchedule.date.asc()).all()

    blocked_days = [
        schedule.date.isoformat()
        for schedule in schedules
        if any(slot.get('status') == SlotStatus.BLOCKED for slot in schedule.slots or [])
    ]

    return {'blocked_days': blocked_days, 'count': len(schedules)}


def get_blocked_days(db: Session, doctor_id: int, year: int, month: int) -> list[str]:
    return get_monthly_overview(db, doctor_id, year, month)['blocked_days']


def get_doctor_working_days(db: Session, doctor_id: int) -> list[int]:
    settings = get_settings(db, doctor_id)
    return indices_from_day_names(settings.available_days)


def update_doctor_working_days(db: Session, doctor_id: int, days: list[int]) -> list[int]:
    settings = update_settings(db, doctor_id, {'working_days': days})
    return indices_from_day_names(settings.available_days)


def reconcile_day_slots(db: Session, doctor_id: int, day: date) -> int:
    """Re-derive slot ownership for one day from the appointment table. Returns the number of slots fixed.

    A booked slot is released only when its appointment is gone or terminal;
    checked-in (waiting, in_progress) appointments keep theirs.
    """
    schedule = find_schedule(db, doctor_id, day)
    active = db.query(Appointment).filter(
        Appointment.doctor_id == doctor_id,
        Appointment.appointment_date == day,
        Appointment.status.in_(AppointmentStatus.OCCUPYING),
    ).all()
    if schedule is None and not active:
        return 0

    active_by_id = {appointment.id: appointment for appointment in active}
    fixed = 0

    if schedule is not None:
        slots = copy.deepcopy(schedule.slots or [])
        for slot in slots:
            owner = slot.get('appointment_id')
            if slot['status'] == SlotStatus.BOOKED and owner not in active_by_id:
                slot['status'] = SlotStatus.AVAILABLE
                slot['appointment_id'] = None
                fixed += 1
        if fixed:
            _save_slots(schedule, slots)
            db.flush()

    owned = {slot.get('appointment_id') for slot in (schedule.slots if schedule is not None else []) or []}
    for appointment in active:
        if appointment.id not in owned:
            claim_appointment_slot(db, appointment, commit=False)
            fixed += 1

    db.commit()
    if fixed:
        logger.warning('Reconciled %d slot(s) for doctor %s on %s', fixed, doctor_id, day)
    return fixed


def reconcile_upcoming_slots(db: Session, today: date | None = None, days_ahead: int | None = None) -> int:
    """Run :func:`reconcile_day_slots` for every (doctor, day) in the upcoming window that has bookings."""
    today = today or date.today()
    days_ahead = config.RECONCILE_DAYS_AHEAD if days_ahead is None else days_ahead
    window_end = today + timedelta(days=days_ahead)

    pairs = {
        tuple(row) for row in db.query(Appointment.doctor_id, Appointment.appointment_date).filter(
            Appointment.appointment_date >= today,
            Appointment.appointment_date <= window_end,
            Appointment.status.in_(AppointmentStatus.OCCUPYING),
        ).distinct().all()
    }
    for schedule in db.query(DailySchedule).filter(
        DailySchedule.date >= today,
        DailySchedule.date <= window_end,
    ).all():
        if any(slot.get('status') == SlotStatus.BOOKED for slot in schedule.slots or []):
            pairs.add((schedule.doctor_id, schedule.date))

    fixed = 0
    for doctor_id, day in sorted(pairs):
        fixed += reconcile_day_slots(db, doctor_id, day)
    return fixed
