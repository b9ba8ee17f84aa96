from datetime import date

import pytest

from clinic_backend.core.days import (
    Weekday,
    day_names_from_indices,
    indices_from_day_names,
    is_day_available,
    normalize_days,
    parse_weekday,
)

MONDAY = date(2030, 1, 7)
SUNDAY = date(2030, 1, 13)


@pytest.mark.parametrize('names', [['Monday'], ['Mon'], ['monday'], ['MON'], [' mon ']])
def test_short_and_full_day_names_are_interchangeable(names: list[str]) -> None:
    assert is_day_available(MONDAY, names) is True


def test_day_not_listed_is_unavailable() -> None:
    assert is_day_available(MONDAY, ['Tue', 'Wednesday']) is False
    assert is_day_available(MONDAY, []) is False
    assert is_day_available(MONDAY, None) is False


def test_unknown_names_are_ignored() -> None:
    assert normalize_days(['Funday', 'Fri']) == {Weekday.FRIDAY}
    assert parse_weekday('Funday') is None


def test_sunday_index_round_trip() -> None:
    assert Weekday.from_date(SUNDAY) == Weekday.SUNDAY
    assert Weekday.SUNDAY.sunday_index == 0
    assert Weekday.MONDAY.sunday_index == 1
    assert Weekday.from_sunday_index(6) == Weekday.SATURDAY


def test_from_sunday_index_rejects_out_of_range() -> None:
    with pytest.raises(ValueError):
        Weekday.from_sunday_index(7)


def test_indices_and_names_translate_both_ways() -> None:
    assert day_names_from_indices([1, 3, 5]) == ['Monday', 'Wednesday', 'Friday']
    assert indices_from_day_names(['Fri', 'monday', 'Sun']) == [0, 1, 5]
