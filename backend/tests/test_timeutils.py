from datetime import date, datetime

import pytest

from agenda.services.scheduling import ValidationError
from agenda.services.scheduling.timeutils import (
    add_months_to_date,
    calculate_end_time,
    combine_local,
    date_range,
    day_of_week,
    minutes_to_time_str,
    parse_date,
    parse_time,
    time_str_to_minutes,
    to_display_date,
    to_iso_date,
    validate_duration,
    week_end,
    week_start,
)


@pytest.mark.parametrize("start, minutes, expected", [
    ("23:30", 60, "00:30"),
    ("10:45", 30, "11:15"),
    ("08:00", 50, "08:50"),
    ("", 60, None),
    ("10:00", None, None),
    ("10h00", 30, None),
])
def test_calculate_end_time(start, minutes, expected):
    assert calculate_end_time(start, minutes) == expected


def test_time_minutes_round_trip():
    assert time_str_to_minutes("07:30") == 450
    assert minutes_to_time_str(540) == "09:00"


@pytest.mark.parametrize("value", ["24:00", "12:60", "noon", ""])
def test_parse_time_rejects_malformed(value):
    with pytest.raises(ValidationError):
        parse_time(value)


@pytest.mark.parametrize("value, months, expected", [
    (date(2026, 1, 31), 1, date(2026, 2, 28)),
    (date(2028, 1, 31), 1, date(2028, 2, 29)),
    (date(2026, 1, 31), 2, date(2026, 3, 31)),
    (date(2026, 11, 15), 3, date(2027, 2, 15)),
])
def test_add_months_clamps_to_month_end(value, months, expected):
    assert add_months_to_date(value, months) == expected


def test_add_months_keeps_datetime_type():
    assert add_months_to_date(datetime(2026, 8, 31, 10, 0), 1) == datetime(2026, 9, 30, 10, 0)


def test_parse_date_accepts_both_formats():
    assert parse_date("06/03/2026") == date(2026, 3, 6)
    assert parse_date("2026-03-06") == date(2026, 3, 6)
    assert to_iso_date("06/03/2026") == "2026-03-06"
    assert to_display_date("2026-03-06") == "06/03/2026"


@pytest.mark.parametrize("value", ["31/02/2026", "2026-13-01", "6/3/2026", "amanha"])
def test_parse_date_rejects_impossible_dates(value):
    with pytest.raises(ValidationError):
        parse_date(value)


def test_day_of_week_starts_on_sunday():
    assert day_of_week(date(2026, 3, 1)) == 0  # Sunday
    assert day_of_week(date(2026, 3, 2)) == 1
    assert day_of_week(date(2026, 3, 7)) == 6


def test_weeks_are_monday_based():
    assert week_start(date(2026, 3, 8)) == date(2026, 3, 2)
    assert week_end(date(2026, 3, 2)) == date(2026, 3, 8)


def test_date_range_is_inclusive_and_orders_bounds():
    assert date_range(date(2026, 3, 3), date(2026, 3, 1)) == [
        date(2026, 3, 1), date(2026, 3, 2), date(2026, 3, 3),
    ]


def test_combine_local():
    assert combine_local("06/03/2026", "10:00") == datetime(2026, 3, 6, 10, 0)


@pytest.mark.parametrize("minutes, patient_visit, ok", [
    (50, True, True),
    (15, True, True),
    (10, True, False),
    (10, False, True),
    (5, False, True),
    (4, False, False),
    (480, True, True),
    (481, True, False),
])
def test_validate_duration_bounds(minutes, patient_visit, ok):
    if ok:
        assert validate_duration(minutes, patient_visit=patient_visit) == minutes
    else:
        with pytest.raises(ValidationError):
            validate_duration(minutes, patient_visit=patient_visit)
