from datetime import date, datetime

import pytest

from clinic_backend.services.conflict_detection import (
    TimeRange,
    check_multiple_slot_conflicts,
    check_reschedule_conflicts,
    check_slot_conflicts,
    is_past_time,
    times_overlap,
    validate_date_range,
)

DAY = date(2030, 1, 7)
NOW = datetime(2030, 1, 7, 8, 0)


@pytest.mark.parametrize(
    ('first', 'second', 'expected'),
    [
        (('09:00', '10:00'), ('09:30', '10:30'), True),
        (('09:00', '10:00'), ('10:00', '11:00'), False),
        (('09:00', '12:00'), ('10:00', '11:00'), True),
        (('09:00', '09:00'), ('09:00', '09:00'), True),
        (('09:00', '09:00'), ('08:30', '09:30'), False),
    ],
)
def test_times_overlap_is_half_open(first, second, expected) -> None:
    assert times_overlap(*first, *second) is expected


def test_is_past_time_compares_against_now() -> None:
    assert is_past_time(DAY, '07:59', NOW) is True
    assert is_past_time(DAY, '08:00', NOW) is False
    assert is_past_time(date(2030, 1, 6), '23:00', NOW) is True


def test_booked_and_blocked_slots_are_conflicts() -> None:
    slots = [
        {'start_time': '09:00', 'end_time': '09:30', 'status': 'booked', 'appointment_id': 1},
        {'start_time': '09:30', 'end_time': '10:00', 'status': 'blocked'},
    ]

    result = check_slot_conflicts(TimeRange('09:15', '09:45'), slots, DAY, now=NOW)

    assert result.has_conflict is True
    assert result.conflicts == [
        'Overlaps with booked appointment at 09:00-09:30',
        'Overlaps with blocked time at 09:30-10:00',
    ]


def test_available_slot_overlap_is_only_a_warning() -> None:
    slots = [{'start_time': '10:00', 'end_time': '10:30', 'status': 'available'}]

    result = check_slot_conflicts(TimeRange('10:00', '10:30'), slots, DAY, now=NOW)

    assert result.has_conflict is False
    assert result.warnings == ['Overlaps with available slot at 10:00-10:30']


def test_break_overlap_is_a_conflict() -> None:
    breaks = [{'start_time': '12:00', 'end_time': '13:00'}]

    result = check_slot_conflicts(TimeRange('12:30', '13:00'), [], DAY, breaks=breaks, now=NOW)

    assert result.conflicts == ['Overlaps with break time 12:00-13:00']


def test_past_candidate_is_a_conflict() -> None:
    result = check_slot_conflicts(TimeRange('07:00', '07:30'), [], DAY, now=NOW)

    assert result.conflicts == ['Cannot schedule appointments in the past']


def test_reschedule_ignores_the_appointments_own_slot() -> None:
    slots = [
        {'start_time': '09:00', 'end_time': '09:30', 'status': 'booked', 'appointment_id': 7},
        {'start_time': '09:30', 'end_time': '10:00', 'status': 'booked', 'appointment_id': 8},
    ]

    own = check_reschedule_conflicts(7, DAY, '09:00', 30, slots, now=NOW)
    other = check_reschedule_conflicts(7, DAY, '09:30', 30, slots, now=NOW)

    assert own.has_conflict is False
    assert other.has_conflict is True


def test_multiple_slot_conflicts_report_each_pair() -> None:
    result = check_multiple_slot_conflicts([
        TimeRange('08:00', '12:00'),
        TimeRange('11:00', '13:00'),
        TimeRange('13:00', '17:00'),
    ])

    assert result.has_conflict is True
    assert result.conflicts == ['Slot 1 (08:00-12:00) overlaps with Slot 2 (11:00-13:00)']


def test_validate_date_range() -> None:
    today = date(2030, 1, 7)

    reversed_range = validate_date_range(date(2030, 1, 10), date(2030, 1, 8), today=today)
    past_start = validate_date_range(date(2030, 1, 1), date(2030, 1, 8), today=today)

    assert reversed_range.conflicts == ['Start date must be before end date']
    assert past_start.has_conflict is False
    assert past_start.warnings == ['Start date is in the past']
