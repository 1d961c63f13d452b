from datetime import datetime, time

import pytest

from clinic.scheduling.timeofday import (
    minutes_to_24h,
    minutes_to_label,
    minutes_to_time,
    to_minutes,
)


@pytest.mark.parametrize(
    ('value', 'expected'),
    [
        ('12:00 AM', 0),
        ('00:00', 0),
        ('12:00 PM', 12 * 60),
        ('12:00', 12 * 60),
        ('1:00 PM', 13 * 60),
        ('13:00', 13 * 60),
        ('9:20 am', 9 * 60 + 20),
        ('09:20', 9 * 60 + 20),
        ('11:59 PM', 23 * 60 + 59),
        (time(14, 40), 14 * 60 + 40),
        (datetime(2024, 6, 10, 10, 0, 45), 10 * 60),
        (615, 615),
    ],
)
def test_to_minutes_normalizes_supported_inputs(value, expected: int) -> None:
    assert to_minutes(value) == expected


def test_to_minutes_rejects_unparseable_string() -> None:
    with pytest.raises(ValueError):
        to_minutes('lunchtime')


def test_to_minutes_rejects_out_of_range_minutes() -> None:
    with pytest.raises(ValueError):
        to_minutes(24 * 60)


@pytest.mark.parametrize('value', [None, 9.5, True])
def test_to_minutes_rejects_unsupported_types(value) -> None:
    with pytest.raises(TypeError):
        to_minutes(value)


@pytest.mark.parametrize(
    ('minutes', 'label'),
    [
        (0, '12:00 AM'),
        (9 * 60, '9:00 AM'),
        (12 * 60, '12:00 PM'),
        (12 * 60 + 40, '12:40 PM'),
        (14 * 60, '2:00 PM'),
        (23 * 60 + 5, '11:05 PM'),
    ],
)
def test_minutes_to_label(minutes: int, label: str) -> None:
    assert minutes_to_label(minutes) == label


def test_labels_and_24_hour_strings_convert_both_ways() -> None:
    for minutes in range(0, 24 * 60, 7):
        assert to_minutes(minutes_to_label(minutes)) == minutes
        assert to_minutes(minutes_to_24h(minutes)) == minutes


def test_minutes_to_time_and_24h() -> None:
    assert minutes_to_time(13 * 60 + 20) == time(13, 20)
    assert minutes_to_24h(13 * 60) == '13:00'
    assert minutes_to_24h(5) == '00:05'
