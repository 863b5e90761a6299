from __future__ import annotations

from types import SimpleNamespace

import pytest

from cycle_meds.time_keys import (
    MALFORMED_TIME_KEY,
    format_time,
    group_by_time_period,
    is_canonical_time,
    parse_time,
    time_key,
    time_period,
)


def test_time_key_uses_twelve_hour_clock_semantics() -> None:
    assert time_key(12, 0, "AM") == 0
    assert time_key(8, 0, "AM") == 480
    assert time_key(12, 0, "PM") == 720
    assert time_key(11, 30, "PM") == 1410


def test_time_key_accepts_numeric_strings_and_lowercase_meridiem() -> None:
    assert time_key("08", "15", "am") == 495
    assert time_key("12", "45", "pm") == 765


@pytest.mark.parametrize(
    ("hour", "minute", "meridiem"),
    [("x", "00", "AM"), ("8", "", "PM"), (8, 0, "noon"), (None, 0, "AM")],
)
def test_malformed_time_sorts_first(hour, minute, meridiem) -> None:
    key = time_key(hour, minute, meridiem)
    assert key == MALFORMED_TIME_KEY
    assert key < time_key(12, 0, "AM")


def test_format_time_zero_pads() -> None:
    assert format_time(8, 0, "pm") == "08:00 PM"
    assert format_time("12", "5", "AM") == "12:05 AM"


def test_format_time_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        format_time("eight", 0, "PM")
    with pytest.raises(ValueError):
        format_time(8, 0, "XM")


def test_parse_time_handles_loose_and_24_hour_forms() -> None:
    assert parse_time("8:00 pm") == (8, 0, "PM")
    assert parse_time("08:30 AM") == (8, 30, "AM")
    assert parse_time("20:15") == (8, 15, "PM")
    assert parse_time("00:00") == (12, 0, "AM")
    assert parse_time("12:00") == (12, 0, "PM")


@pytest.mark.parametrize("text", ["", "noon", "25:00", "13:00 PM", "8:75 AM"])
def test_parse_time_rejects_invalid_text(text: str) -> None:
    with pytest.raises(ValueError):
        parse_time(text)


def test_canonical_time_shape() -> None:
    assert is_canonical_time("08:00 AM")
    assert not is_canonical_time("8:00 AM")
    assert not is_canonical_time("08:00")
    assert not is_canonical_time(None)


def test_time_periods_split_day_into_three_buckets() -> None:
    assert time_period(8, "AM") == "morning"
    assert time_period(12, "PM") == "morning"
    assert time_period(3, "PM") == "afternoon"
    assert time_period(8, "PM") == "evening"

    entries = [
        SimpleNamespace(name="a", hour=7, meridiem="AM"),
        SimpleNamespace(name="b", hour=2, meridiem="PM"),
        SimpleNamespace(name="c", hour=9, meridiem="PM"),
    ]
    groups = group_by_time_period(entries)
    assert [e.name for e in groups["morning"]] == ["a"]
    assert [e.name for e in groups["afternoon"]] == ["b"]
    assert [e.name for e in groups["evening"]] == ["c"]
