"""Pure conflict checks over ``HH:MM`` time ranges.

Nothing in here touches the database: callers pass in the slots and breaks of
the day they care about and get back a :class:`ConflictResult`. Conflicts are
hard failures, warnings are informational (overlapping an ``available`` slot
is normal since slots can be finer-grained than the requested range).
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, NamedTuple

from clinic_backend.core.timeslots import add_minutes, combine
from clinic_backend.models.schedule import SlotStatus


class TimeRange(NamedTuple):
    start_time: str
    end_time: str


@dataclass
class ConflictResult:
    has_conflict: bool = False
    conflicts: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @classmethod
    def build(cls, conflicts: list[str], warnings: list[str]) -> 'ConflictResult':
        return cls(has_conflict=bool(conflicts), conflicts=conflicts, warnings=warnings)


def times_overlap(start1: str, end1: str, start2: str, end2: str) -> bool:
    """Half-open overlap test. A zero-length range only overlaps the identical point."""
    if start1 == end1 or start2 == end2:
        return start1 == start2 and end1 == end2
    return start1 < end2 and start2 < end1


def is_past_time(day: date, time_of_day: str, now: datetime | None = None) -> bool:
    now = now or datetime.now()
    return combine(day, time_of_day) < now


def _slot_bounds(slot: dict) -> tuple[str, str]:
    start = slot.get('start_time') or slot.get('time') or ''
    end = slot.get('end_time') or start
    return start, end


def check_slot_conflicts(
    candidate: TimeRange,
    existing_slots: Iterable[dict],
    day: date,
    breaks: Iterable[dict] | None = None,
    now: datetime | None = None,
) -> ConflictResult:
    conflicts: list[str] = []
    warnings: list[str] = []

    if is_past_time(day, candidate.end_time, now):
        conflicts.append('Cannot schedule appointments in the past')

    for slot in existing_slots:
        slot_start, slot_end = _slot_bounds(slot)
        if not times_overlap(candidate.start_time, candidate.end_time, slot_start, slot_end):
            continue

        slot_status = slot.get('status')
        if slot_status == SlotStatus.BOOKED:
            conflicts.append(f'Overlaps with booked appointment at {slot_start}-{slot_end}')
        elif slot_status == SlotStatus.BLOCKED:
            conflicts.append(f'Overlaps with blocked time at {slot_start}-{slot_end}')
        elif slot_status == SlotStatus.BREAK:
            conflicts.append(f'Overlaps with break time {slot_start}-{slot_end}')
        else:
            warnings.append(f'Overlaps with available slot at {slot_start}-{slot_end}')

    for break_period in breaks or []:
        break_start = break_period.get('start_time', '')
        break_end = break_period.get('end_time', break_start)
        if times_overlap(candidate.start_time, candidate.end_time, break_start, break_end):
            conflicts.append(f'Overlaps with break time {break_start}-{break_end}')

    return ConflictResult.build(conflicts, warnings)


def check_reschedule_conflicts(
    appointment_id: int,
    new_date: date,
    new_time: str,
    duration: int,
    existing_slots: Iterable[dict],
    breaks: Iterable[dict] | None = None,
    now: datetime | None = None,
) -> ConflictResult:
    end_time = add_minutes(new_time, duration)
    other_slots = [slot for slot in existing_slots if slot.get('appointment_id') != appointment_id]

    return check_slot_conflicts(TimeRange(new_time, end_time), other_slots, new_date, breaks, now)


def check_multiple_slot_conflicts(slots: list[TimeRange]) -> ConflictResult:
    conflicts: list[str] = []

    for i, first in enumerate(slots):
        for j in range(i + 1, len(slots)):
            second = slots[j]
            if times_overlap(first.start_time, first.end_time, second.start_time, second.end_time):
                conflicts.append(
                    f'Slot {i + 1} ({first.start_time}-{first.end_time}) overlaps with '
                    f'Slot {j + 1} ({second.start_time}-{second.end_time})'
                )

    return ConflictResult.build(conflicts, [])


def validate_date_range(
    start_date: date | None,
    end_date: date | None,
    today: date | None = None,
) -> ConflictResult:
    conflicts: list[str] = []
    warnings: list[str] = []
    today = today or date.today()

    if start_date and end_date and start_date > end_date:
        conflicts.append('Start date must be before end date')

    if start_date and start_date < today:
        warnings.append('Start date is in the past')

    return ConflictResult.build(conflicts, warnings)
