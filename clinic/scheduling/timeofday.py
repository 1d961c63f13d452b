"""Time-of-day conversions.

Every comparison in the scheduling code happens on minutes since midnight.
Values arrive as ``datetime.time`` objects, 24-hour strings (``"13:00"``) or
12-hour calendar labels (``"1:00 PM"``) and are normalized here.
"""

from datetime import datetime, time

MINUTES_PER_DAY = 24 * 60


def parse_time_of_day(value: str) -> int:
    normalized = value.strip().upper()
    if not normalized:
        raise ValueError('Time of day is required.')

    for pattern in ('%I:%M %p', '%I:%M%p', '%H:%M', '%H:%M:%S'):
        try:
            parsed = datetime.strptime(normalized, pattern)
        except ValueError:
            continue
        return parsed.hour * 60 + parsed.minute

    raise ValueError(f'Unrecognized time of day: {value!r}')


def to_minutes(value: time | str | int) -> int:
    if isinstance(value, bool):
        raise TypeError('Time of day cannot be a boolean.')
    if isinstance(value, int):
        if not 0 <= value < MINUTES_PER_DAY:
            raise ValueError(f'Minutes since midnight out of range: {value}')
        return value
    if isinstance(value, datetime):
        return value.hour * 60 + value.minute
    if isinstance(value, time):
        return value.hour * 60 + value.minute
    if isinstance(value, str):
        return parse_time_of_day(value)
    raise TypeError(f'Unsupported time of day type: {type(value).__name__}')


def minutes_to_time(minutes: int) -> time:
    hours, mins = divmod(minutes, 60)
    return time(hours, mins)


def minutes_to_label(minutes: int) -> str:
    """Render minutes since midnight as a calendar label, e.g. ``9:20 AM``."""
    hours, mins = divmod(minutes, 60)
    period = 'PM' if hours >= 12 else 'AM'
    display_hours = hours % 12 or 12
    return f'{display_hours}:{mins:02d} {period}'


def minutes_to_24h(minutes: int) -> str:
    hours, mins = divmod(minutes, 60)
    return f'{hours:02d}:{mins:02d}'
