"""Weekday normalization shared by booking, schedules and settings."""

from datetime import date
from enum import IntEnum
from typing import Iterable


class Weekday(IntEnum):
    """Weekday numbered like ``date.weekday()`` (Monday is 0)."""

    MONDAY = 0
    TUESDAY = 1
    WEDNESDAY = 2
    THURSDAY = 3
    FRIDAY = 4
    SATURDAY = 5
    SUNDAY = 6

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @property
    def short_label(self) -> str:
        return self.label[:3]

    @property
    def sunday_index(self) -> int:
        """Index in the 0 = Sunday numbering used by template working days."""
        return (self.value + 1) % 7

    @classmethod
    def from_date(cls, value: date) -> 'Weekday':
        return cls(value.weekday())

    @classmethod
    def from_sunday_index(cls, index: int) -> 'Weekday':
        if not 0 <= index <= 6:
            raise ValueError(f'Invalid weekday index: {index}')
        return cls((index - 1) % 7)


_NAME_LOOKUP = {}
for _day in Weekday:
    _NAME_LOOKUP[_day.label.lower()] = _day
    _NAME_LOOKUP[_day.short_label.lower()] = _day


def parse_weekday(name: str) -> Weekday | None:
    """Accept full ("Monday") or three-letter ("mon") names, any case."""
    if name is None:
        return None
    return _NAME_LOOKUP.get(str(name).strip().lower())


def normalize_days(names: Iterable[str] | None) -> set[Weekday]:
    if not names:
        return set()
    days = set()
    for name in names:
        day = parse_weekday(name)
        if day is not None:
            days.add(day)
    return days


def is_day_available(value: date, available_days: Iterable[str] | None) -> bool:
    return Weekday.from_date(value) in normalize_days(available_days)


def day_names_from_indices(indices: Iterable[int]) -> list[str]:
    return [Weekday.from_sunday_index(int(index)).label for index in indices]


def indices_from_day_names(names: Iterable[str] | None) -> list[int]:
    return sorted(day.sunday_index for day in normalize_days(names))
