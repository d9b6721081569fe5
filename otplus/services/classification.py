from __future__ import annotations

import math
import re

from otplus.domain import EntryClassification, TimeEntry

_BREAK_TYPES = frozenset({"BREAK"})
_HOLIDAY_TYPES = frozenset({"HOLIDAY"})
_TIME_OFF_TYPES = frozenset({"TIME_OFF"})

_ISO_DURATION_RE = re.compile(
    r"^PT(?:(\d+(?:\.\d+)?)H)?(?:(\d+(?:\.\d+)?)M)?(?:(\d+(?:\.\d+)?)S)?$"
)


def classify_entry(entry: TimeEntry | None) -> EntryClassification:
    if entry is None or not entry.type:
        return EntryClassification.WORK
    if entry.type in _BREAK_TYPES:
        return EntryClassification.BREAK
    if entry.type in _HOLIDAY_TYPES or entry.type in _TIME_OFF_TYPES:
        return EntryClassification.PTO
    return EntryClassification.WORK


def is_holiday_entry(entry: TimeEntry) -> bool:
    return entry.type in _HOLIDAY_TYPES


def is_time_off_entry(entry: TimeEntry) -> bool:
    return entry.type in _TIME_OFF_TYPES


def duration_from_iso(value: str | None) -> float:
    """Parse an ISO-8601 ``PT#H#M#S`` duration into hours; malformed input is 0."""
    if not value:
        return 0.0
    match = _ISO_DURATION_RE.match(value.strip())
    if match is None:
        return 0.0
    hours, minutes, seconds = (float(part or 0) for part in match.groups())
    return hours + minutes / 60 + seconds / 3600


def entry_duration_hours(entry: TimeEntry) -> float:
    duration = entry.interval.duration_hours
    if duration is None or not math.isfinite(duration) or duration < 0:
        return 0.0
    return float(duration)


def _rate_units(rate: int | float | None) -> float:
    # Rates arrive in minor units (cents).
    if rate is None:
        return 0.0
    value = float(rate)
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value / 100


def hourly_rate_units(entry: TimeEntry) -> float:
    return _rate_units(entry.hourly_rate)


def cost_rate_units(entry: TimeEntry) -> float:
    return _rate_units(entry.cost_rate)
