from datetime import date, datetime

import pytest
from fastapi import HTTPException

from clinic_backend.models.appointment import Appointment
from clinic_backend.models.schedule import DailySchedule, SlotStatus
from clinic_backend.services import schedule_service
from clinic_backend.services.auto_schedule_initializer import find_schedule

TODAY = date(2030, 1, 7)
MONDAY = date(2030, 1, 14)
SATURDAY = date(2030, 1, 12)


def _slot(view: dict, start_time: str) -> dict:
    return next(slot for slot in view['slots'] if slot['start_time'] == start_time)


def test_derive_slots_marks_breaks() -> None:
    shifts = [{'type': 'custom', 'start_time': '11:00', 'end_time': '13:00', 'slot_duration': 30, 'enabled': True}]
    breaks = [{'start_time': '12:00', 'end_time': '12:30', 'reason': 'Lunch'}]

    slots = schedule_service.derive_slots(shifts, breaks)

    assert [(slot['start_time'], slot['status']) for slot in slots] == [
        ('11:00', 'available'),
        ('11:30', 'available'),
        ('12:00', 'break'),
        ('12:30', 'available'),
    ]


def test_disabled_shifts_produce_no_slots() -> None:
    shifts = [{'type': 'morning', 'start_time': '08:00', 'end_time': '12:00', 'slot_duration': 30, 'enabled': False}]

    assert schedule_service.derive_slots(shifts, []) == []


def test_day_view_prefers_stored_slots() -> None:
    schedule = DailySchedule(
        doctor_id=1,
        date=MONDAY,
        shifts=[{'type': 'custom', 'start_time': '09:00', 'end_time': '10:00', 'slot_duration': 30, 'enabled': True}],
        breaks=[],
        slots=[schedule_service.make_slot('09:00', '09:30', SlotStatus.BLOCKED, blocked_reason='Training')],
    )

    view = schedule_service.build_day_view(schedule)

    assert [(slot['start_time'], slot['status']) for slot in view['slots']] == [
        ('09:00', 'blocked'),
        ('09:30', 'available'),
    ]


def test_get_day_schedule_auto_initializes_within_working_hours(db, doctor) -> None:
    schedule = schedule_service.get_day_schedule(db, doctor.id, MONDAY, today=TODAY)

    assert schedule.id is not None
    assert [(shift['start_time'], shift['end_time']) for shift in schedule.shifts] == [('09:00', '17:00')]


def test_get_day_schedule_falls_back_to_hourly_slots(db, doctor) -> None:
    schedule = schedule_service.get_day_schedule(db, doctor.id, SATURDAY, today=TODAY)

    assert schedule.shifts == []
    assert [slot['start_time'] for slot in schedule.slots][:2] == ['08:00', '09:00']
    assert len(schedule.slots) == 10


def test_block_and_unblock_slot(db, doctor) -> None:
    schedule_service.get_day_schedule(db, doctor.id, MONDAY, today=TODAY)

    blocked = schedule_service.set_slot_status(db, doctor.id, MONDAY, '09:00', None, SlotStatus.BLOCKED, reason='Surgery')
    assert blocked == {
        'start_time': '09:00',
        'end_time': '09:30',
        'status': 'blocked',
        'appointment_id': None,
        'blocked_reason': 'Surgery',
    }

    reopened = schedule_service.set_slot_status(db, doctor.id, MONDAY, '09:00', None, SlotStatus.AVAILABLE)
    assert reopened['status'] == 'available'
    assert reopened['blocked_reason'] is None


def test_set_slot_status_rejects_unknown_status(db, doctor) -> None:
    with pytest.raises(HTTPException) as exception_info:
        schedule_service.set_slot_status(db, doctor.id, MONDAY, '09:00', None, 'maybe')

    assert exception_info.value.status_code == 400


def test_an_appointment_owns_at_most_one_slot(db, doctor) -> None:
    schedule_service.set_slot_status(db, doctor.id, MONDAY, '09:00', '09:30', SlotStatus.BOOKED, appointment_id=5)
    schedule_service.set_slot_status(db, doctor.id, MONDAY, '10:00', '10:30', SlotStatus.BOOKED, appointment_id=5)

    slots = find_schedule(db, doctor.id, MONDAY).slots
    owned = [slot['start_time'] for slot in slots if slot['appointment_id'] == 5]
    assert owned == ['10:00']


def test_booked_slots_cannot_be_changed_by_hand(db, doctor) -> None:
    schedule_service.set_slot_status(db, doctor.id, MONDAY, '09:00', '09:30', SlotStatus.BOOKED, appointment_id=5)

    with pytest.raises(HTTPException) as blocked:
        schedule_service.change_slot_availability(db, doctor.id, MONDAY, '09:00', None, SlotStatus.BLOCKED)
    with pytest.raises(HTTPException) as removed:
        schedule_service.remove_slot(db, doctor.id, MONDAY, '09:00')

    assert blocked.value.status_code == 409
    assert removed.value.status_code == 409


def test_remove_slot_deletes_stored_slot(db, doctor) -> None:
    schedule_service.set_slot_status(db, doctor.id, MONDAY, '09:00', '09:30', SlotStatus.BLOCKED, reason='Meeting')

    result = schedule_service.remove_slot(db, doctor.id, MONDAY, '09:00', '09:30')

    assert result['success'] is True
    assert find_schedule(db, doctor.id, MONDAY).slots == []


def test_update_day_schedule_rejects_overlapping_shifts(db, doctor) -> None:
    shifts = [
        {'type': 'morning', 'start_time': '08:00', 'end_time': '12:00', 'slot_duration': 30, 'enabled': True},
        {'type': 'afternoon', 'start_time': '11:00', 'end_time': '15:00', 'slot_duration': 30, 'enabled': True},
    ]

    with pytest.raises(HTTPException) as exception_info:
        schedule_service.update_day_schedule(db, doctor.id, MONDAY, shifts, [])

    assert exception_info.value.status_code == 409


def test_update_day_schedule_keeps_booked_slots(db, doctor) -> None:
    schedule_service.set_slot_status(db, doctor.id, MONDAY, '09:00', '09:30', SlotStatus.BOOKED, appointment_id=3)
    shifts = [{'type': 'afternoon', 'start_time': '13:00', 'end_time': '14:00', 'slot_duration': 30, 'enabled': True}]

    view = schedule_service.update_day_schedule(db, doctor.id, MONDAY, shifts, [])

    assert _slot(view, '09:00')['appointment_id'] == 3
    assert [slot['start_time'] for slot in view['slots']] == ['09:00', '13:00', '13:30']


def test_week_schedule_has_seven_days(db, doctor) -> None:
    week = schedule_service.get_week_schedule(db, doctor.id, MONDAY)

    assert [day['date'] for day in week][0] == '2030-01-14'
    assert len(week) == 7
    # Dr. Smith only works Monday, Wednesday and Friday
    assert [bool(day['slots']) for day in week] == [True, False, True, False, True, False, False]


def test_available_dates_follow_working_days(db, doctor) -> None:
    dates = schedule_service.get_available_dates(db, doctor.id, MONDAY, days=7, now=datetime(2030, 1, 7, 8, 0))

    assert dates == ['2030-01-14', '2030-01-16', '2030-01-18']


def test_monthly_overview_lists_blocked_days(db, doctor) -> None:
    schedule_service.set_slot_status(db, doctor.id, MONDAY, '09:00', None, SlotStatus.BLOCKED, reason='Leave')
    schedule_service.get_day_schedule(db, doctor.id, date(2030, 1, 15), today=TODAY)

    overview = schedule_service.get_monthly_overview(db, doctor.id, 2030, 1)

    assert overview == {'blocked_days': ['2030-01-14'], 'count': 2}
    assert schedule_service.get_blocked_days(db, doctor.id, 2030, 1) == ['2030-01-14']


def test_working_days_round_trip_through_settings(db, doctor) -> None:
    assert schedule_service.update_doctor_working_days(db, doctor.id, [1, 3, 5]) == [1, 3, 5]
    assert schedule_service.get_doctor_working_days(db, doctor.id) == [1, 3, 5]


def test_reconcile_day_slots_repairs_drift(db, doctor, patient) -> None:
    active = Appointment(
        doctor_id=doctor.id,
        patient_id=patient.id,
        appointment_date=MONDAY,
        appointment_time='10:00',
        duration=30,
        status='confirmed',
    )
    cancelled = Appointment(
        doctor_id=doctor.id,
        patient_id=patient.id,
        appointment_date=MONDAY,
        appointment_time='11:00',
        duration=30,
        status='cancelled',
    )
    db.add_all([active, cancelled])
    db.commit()
    schedule_service.set_slot_status(
        db, doctor.id, MONDAY, '11:00', '11:30', SlotStatus.BOOKED, appointment_id=cancelled.id
    )

    fixed = schedule_service.reconcile_day_slots(db, doctor.id, MONDAY)

    view = schedule_service.build_day_view(find_schedule(db, doctor.id, MONDAY))
    assert fixed == 2
    assert _slot(view, '10:00')['appointment_id'] == active.id
    assert _slot(view, '11:00')['status'] == 'available'
    assert schedule_service.reconcile_day_slots(db, doctor.id, MONDAY) == 0
