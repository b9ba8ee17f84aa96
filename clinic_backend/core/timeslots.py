from datetime import date, datetime

MINUTES_PER_DAY = 24 * 60


def normalize_time(value: str) -> str:
    """Accept "9:00", "09:00" or "09:00:00" and return zero-padded HH:MM."""
    parts = str(value).strip().split(':')
    if len(parts) < 2:
        raise ValueError(f'Invalid time: {value!r}')
    hours, minutes = int(parts[0]), int(parts[1])
    if not (0 <= hours < 24 and 0 <= minutes < 60):
        raise ValueError(f'Invalid time: {value!r}')
    return f'{hours:02d}:{minutes:02d}'


def time_to_minutes(value: str) -> int:
    hours, minutes = value.split(':')[:2]
    return int(hours) * 60 + int(minutes)


def minutes_to_time(minutes: int) -> str:
    minutes = minutes % MINUTES_PER_DAY
    return f'{minutes // 60:02d}:{minutes % 60:02d}'


def add_minutes(value: str, minutes: int) -> str:
    return minutes_to_time(time_to_minutes(value) + minutes)


def current_time_string(now: datetime) -> str:
    return now.strftime('%H:%M')


def combine(day: date, value: str) -> datetime:
    hours, minutes = value.split(':')[:2]
    return datetime(day.year, day.month, day.day, int(hours), int(minutes))


def generate_time_slots(
    start_minutes: int,
    end_minutes: int,
    slot_duration: int,
    buffer_minutes: int = 0,
) -> list[tuple[str, str]]:
    slots: list[tuple[str, str]] = []
    if slot_duration <= 0:
        return slots

    current = start_minutes
    while current + slot_duration <= end_minutes:
        slots.append((minutes_to_time(current), minutes_to_time(current + slot_duration)))
        current += slot_duration + buffer_minutes

    return slots

