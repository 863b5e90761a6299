"""12-hour clock helpers.

Every ordering in the engine goes through ``time_key``: minutes since
midnight for an (hour, minute, meridiem) triple, with 12 AM as 0 and
12 PM as 720.
"""

from __future__ import annotations

import re
from collections.abc import Iterable
from typing import Any, Literal, TypeVar

Meridiem = Literal["AM", "PM"]
TimePeriod = Literal["morning", "afternoon", "evening"]

MERIDIEMS: tuple[str, ...] = ("AM", "PM")
MINUTE_STEPS: tuple[int, ...] = (0, 15, 30, 45)

# Sorts ahead of every valid key (valid keys are 0..1439).
MALFORMED_TIME_KEY = -1

_CANONICAL_TIME_RE = re.compile(r"^\d{2}:\d{2} (AM|PM)$")
_LOOSE_12H_RE = re.compile(r"^(\d{1,2}):(\d{2})\s*([AaPp][Mm])$")
_24H_RE = re.compile(r"^(\d{1,2}):(\d{2})$")

T = TypeVar("T")


def _to_int(raw: Any) -> int | None:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, int):
        return raw
    if isinstance(raw, str):
        text = raw.strip()
        if text.isdigit():
            return int(text)
    return None


def normalize_meridiem(raw: Any) -> str | None:
    if not isinstance(raw, str):
        return None
    normalized = raw.strip().upper()
    return normalized if normalized in MERIDIEMS else None


def time_key(hour: int | str, minute: int | str, meridiem: str) -> int:
    """Minutes since midnight; malformed input yields MALFORMED_TIME_KEY."""
    parsed_hour = _to_int(hour)
    parsed_minute = _to_int(minute)
    parsed_meridiem = normalize_meridiem(meridiem)
    if parsed_hour is None or parsed_minute is None or parsed_meridiem is None:
        return MALFORMED_TIME_KEY

    hour_of_day = parsed_hour % 12
    if parsed_meridiem == "PM":
        hour_of_day += 12
    return hour_of_day * 60 + parsed_minute


def format_time(hour: int | str, minute: int | str, meridiem: str) -> str:
    """Render the canonical "HH:MM AM" form.

    Raises ValueError when any component is not numeric or the meridiem is unknown.
    """
    parsed_hour = _to_int(hour)
    parsed_minute = _to_int(minute)
    parsed_meridiem = normalize_meridiem(meridiem)
    if parsed_hour is None or parsed_minute is None:
        raise ValueError(f"Non-numeric time components: hour={hour!r} minute={minute!r}")
    if parsed_meridiem is None:
        raise ValueError(f"Unknown meridiem: {meridiem!r}")
    return f"{parsed_hour:02d}:{parsed_minute:02d} {parsed_meridiem}"


def parse_time(text: str) -> tuple[int, int, str]:
    """Parse "8:00 pm", "08:00 PM" or 24-hour "20:00" into (hour, minute, meridiem)."""
    raw = text.strip() if isinstance(text, str) else ""
    match = _LOOSE_12H_RE.match(raw)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if not 1 <= hour <= 12 or minute > 59:
            raise ValueError(f"Time out of range: {text!r}")
        return hour, minute, match.group(3).upper()

    match = _24H_RE.match(raw)
    if match:
        hour, minute = int(match.group(1)), int(match.group(2))
        if hour > 23 or minute > 59:
            raise ValueError(f"Time out of range: {text!r}")
        meridiem = "PM" if hour >= 12 else "AM"
        return (hour % 12) or 12, minute, meridiem

    raise ValueError(f"Unrecognized time: {text!r}")


def is_canonical_time(text: Any) -> bool:
    return isinstance(text, str) and bool(_CANONICAL_TIME_RE.match(text))


def time_period(hour: int | str, meridiem: str) -> TimePeriod:
    parsed_hour = _to_int(hour) or 0
    if normalize_meridiem(meridiem) != "PM" or parsed_hour == 12:
        return "morning"
    if parsed_hour < 6:
        return "afternoon"
    return "evening"


def group_by_time_period(entries: Iterable[T]) -> dict[str, list[T]]:
    """Bucket entries exposing ``hour``/``meridiem`` into morning/afternoon/evening."""
    groups: dict[str, list[T]] = {"morning": [], "afternoon": [], "evening": []}
    for entry in entries:
        groups[time_period(getattr(entry, "hour"), getattr(entry, "meridiem"))].append(entry)
    return groups
