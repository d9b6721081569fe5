"""Per-user, per-day resolution of capacity, multipliers and tier-2 parameters.

Every configurable value is resolved from an ordered list of candidate
sources.  The first source that carries a value wins:

    per-day override > weekday override > global user override
        > profile (capacity only) > configuration default

Holiday, time-off and non-working days then force the day capacity to zero
when the matching configuration toggle is enabled.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from datetime import date
from typing import Union

from otplus.domain import (
    CalculationSnapshot,
    DayOverride,
    EffectiveDayConfig,
    Holiday,
    OverrideMode,
    TimeOffInfo,
    UserOverride,
)
from otplus.services.calendar import weekday_name


@dataclass(frozen=True, slots=True)
class PerDayOverrideSource:
    value: float
    kind: str = "PER_DAY_OVERRIDE"


@dataclass(frozen=True, slots=True)
class PerWeekdayOverrideSource:
    value: float
    kind: str = "WEEKDAY_OVERRIDE"


@dataclass(frozen=True, slots=True)
class GlobalOverrideSource:
    value: float
    kind: str = "GLOBAL_OVERRIDE"


@dataclass(frozen=True, slots=True)
class ProfileSource:
    value: float
    kind: str = "PROFILE"


@dataclass(frozen=True, slots=True)
class DefaultSource:
    value: float
    kind: str = "DEFAULT"


ValueSource = Union[
    PerDayOverrideSource,
    PerWeekdayOverrideSource,
    GlobalOverrideSource,
    ProfileSource,
    DefaultSource,
]


def first_source(candidates: Iterable[ValueSource]) -> ValueSource:
    for candidate in candidates:
        return candidate
    raise ValueError("No value source available")


def _override_sources(
    override: UserOverride | None,
    day: date,
    field_name: str,
) -> Iterator[ValueSource]:
    if override is None:
        return
    if override.mode is OverrideMode.PER_DAY:
        day_override: DayOverride | None = override.per_day.get(day)
        value = getattr(day_override, field_name) if day_override is not None else None
        if value is not None:
            yield PerDayOverrideSource(float(value))
    if override.mode is OverrideMode.WEEKDAY:
        weekday_override: DayOverride | None = override.weekday.get(weekday_name(day))
        value = getattr(weekday_override, field_name) if weekday_override is not None else None
        if value is not None:
            yield PerWeekdayOverrideSource(float(value))
    value = getattr(override, field_name)
    if value is not None:
        yield GlobalOverrideSource(float(value))


def capacity_sources(user_id: str, day: date, snapshot: CalculationSnapshot) -> Iterator[ValueSource]:
    yield from _override_sources(snapshot.overrides.get(user_id), day, "capacity")
    if snapshot.config.use_profile_capacity:
        profile = snapshot.profiles.get(user_id)
        if profile is not None and profile.work_capacity_hours is not None:
            yield ProfileSource(float(profile.work_capacity_hours))
    yield DefaultSource(snapshot.params.daily_threshold)


def multiplier_sources(user_id: str, day: date, snapshot: CalculationSnapshot) -> Iterator[ValueSource]:
    yield from _override_sources(snapshot.overrides.get(user_id), day, "multiplier")
    yield DefaultSource(snapshot.params.overtime_multiplier)


def tier2_threshold_sources(user_id: str, day: date, snapshot: CalculationSnapshot) -> Iterator[ValueSource]:
    yield from _override_sources(snapshot.overrides.get(user_id), day, "tier2_threshold")
    yield DefaultSource(snapshot.params.tier2_threshold_hours or 0.0)


def tier2_multiplier_sources(user_id: str, day: date, snapshot: CalculationSnapshot) -> Iterator[ValueSource]:
    yield from _override_sources(snapshot.overrides.get(user_id), day, "tier2_multiplier")
    yield DefaultSource(snapshot.params.tier2_multiplier or 2.0)


def is_working_day(user_id: str, day: date, snapshot: CalculationSnapshot) -> bool:
    if not snapshot.config.use_profile_working_days:
        return True
    profile = snapshot.profiles.get(user_id)
    if profile is None or profile.working_days is None:
        return True
    return weekday_name(day) in profile.working_days


def lookup_holiday(user_id: str, day: date, snapshot: CalculationSnapshot) -> Holiday | None:
    if not snapshot.config.apply_holidays:
        return None
    return snapshot.holidays.get(user_id, {}).get(day)


def lookup_time_off(user_id: str, day: date, snapshot: CalculationSnapshot) -> TimeOffInfo | None:
    if not snapshot.config.apply_time_off:
        return None
    return snapshot.time_off.get(user_id, {}).get(day)


def resolve_day(
    user_id: str,
    day: date,
    snapshot: CalculationSnapshot,
    *,
    holiday_entry: bool = False,
    time_off_entry_hours: float = 0.0,
    has_time_off_entry: bool = False,
) -> EffectiveDayConfig:
    config = snapshot.config
    capacity_source = first_source(capacity_sources(user_id, day, snapshot))
    base_capacity = max(0.0, capacity_source.value)

    holiday = lookup_holiday(user_id, day, snapshot)
    time_off = lookup_time_off(user_id, day, snapshot)
    is_holiday = holiday is not None or holiday_entry
    is_time_off = time_off is not None or has_time_off_entry
    is_non_working = not is_working_day(user_id, day, snapshot)

    capacity = base_capacity
    if (is_holiday and config.apply_holidays) or is_non_working:
        capacity = 0.0
    elif time_off is not None and not time_off.is_full_day and time_off.hours > 0:
        # A partial day off only shortens the day.
        capacity = max(0.0, base_capacity - time_off.hours)
    elif is_time_off and config.apply_time_off:
        capacity = 0.0

    if time_off is not None:
        time_off_hours = time_off.hours if time_off.hours else (base_capacity if time_off.is_full_day else 0.0)
    else:
        time_off_hours = time_off_entry_hours

    return EffectiveDayConfig(
        day=day,
        capacity=capacity,
        base_capacity=base_capacity,
        multiplier=first_source(multiplier_sources(user_id, day, snapshot)).value,
        tier2_threshold=max(0.0, first_source(tier2_threshold_sources(user_id, day, snapshot)).value),
        tier2_multiplier=first_source(tier2_multiplier_sources(user_id, day, snapshot)).value,
        capacity_source=capacity_source.kind,
        is_holiday=is_holiday,
        holiday_name=holiday.name if holiday is not None else "",
        holiday_project_id=holiday.project_id if holiday is not None else None,
        is_non_working_day=is_non_working,
        is_time_off=is_time_off,
        time_off_hours=time_off_hours,
    )
