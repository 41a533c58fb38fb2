from datetime import datetime, timedelta, timezone

import pytest

from wohub.services.time_rules import (
    add_hours,
    ensure_utc,
    format_hours,
    format_hours_detailed,
    hours_between,
    utc_to_local,
)


T0 = datetime(2024, 3, 4, 9, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    "delta, expected",
    [
        (timedelta(0), 0.0),
        (timedelta(minutes=30), 0.5),
        (timedelta(hours=2, minutes=15), 2.25),
        (timedelta(hours=26), 26.0),
    ],
)
def test_hours_between(delta, expected):
    assert hours_between(T0, T0 + delta) == pytest.approx(expected)


def test_hours_between_is_not_clamped():
    assert hours_between(T0, T0 - timedelta(hours=1)) == pytest.approx(-1.0)


def test_naive_datetimes_are_treated_as_utc():
    naive = datetime(2024, 3, 4, 11, 0)
    assert hours_between(T0, naive) == pytest.approx(2.0)
    assert ensure_utc(naive).tzinfo is not None


def test_add_hours_round_trips_with_hours_between():
    end = add_hours(T0, 3.5)
    assert end == T0 + timedelta(hours=3, minutes=30)


@pytest.mark.parametrize(
    "hours, expected",
    [
        (None, "0 min"),
        (0, "0 min"),
        (0.75, "45 min"),
        (1, "1h 00min"),
        (2 + 5 / 60, "2h 05min"),
        (7, "7h 00min"),
        (12.5, "12h 30min"),
    ],
)
def test_format_hours_detailed(hours, expected):
    assert format_hours_detailed(hours) == expected


@pytest.mark.parametrize(
    "hours, expected",
    [
        (0, "0 min"),
        (0.5, "30 min"),
        (2, "2h"),
        (2.5, "2.5h"),
    ],
)
def test_format_hours(hours, expected):
    assert format_hours(hours) == expected


def test_utc_to_local_uses_configured_timezone():
    summer = datetime(2024, 7, 1, 12, 0, tzinfo=timezone.utc)
    local = utc_to_local(summer, "Europe/Lisbon")
    assert local.hour == 13


def test_utc_to_local_unknown_timezone_falls_back_to_utc():
    local = utc_to_local(T0, "Nowhere/Invalid")
    assert local.hour == 9
