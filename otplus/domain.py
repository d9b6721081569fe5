"""Immutable value types shared by the calculation engine and its adapters."""

from __future__ import annotations

import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime


WEEKDAY_NAMES = (
    "MONDAY",
    "TUESDAY",
    "WEDNESDAY",
    "THURSDAY",
    "FRIDAY",
    "SATURDAY",
    "SUNDAY",
)


class EntryClassification(str, enum.Enum):
    WORK = "WORK"
    BREAK = "BREAK"
    PTO = "PTO"


class OverrideMode(str, enum.Enum):
    GLOBAL = "global"
    PER_DAY = "per_day"
    WEEKDAY = "weekday"


class OvertimeBasis(str, enum.Enum):
    DAILY = "daily"
    WEEKLY = "weekly"


class AmountDisplay(str, enum.Enum):
    EARNED = "earned"
    COST = "cost"
    PROFIT = "profit"


@dataclass(frozen=True, slots=True)
class TimeInterval:
    start: datetime
    duration_hours: float
    end: datetime | None = None


@dataclass(frozen=True, slots=True)
class TimeEntry:
    id: str
    user_id: str
    user_name: str
    interval: TimeInterval
    billable: bool = True
    hourly_rate: int | None = None
    cost_rate: int | None = None
    type: str | None = None
    project_id: str | None = None
    description: str | None = None


@dataclass(frozen=True, slots=True)
class DateRange:
    start: date
    end: date


@dataclass(frozen=True, slots=True)
class User:
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class UserProfile:
    work_capacity_hours: float | None = None
    working_days: tuple[str, ...] | None = None


@dataclass(frozen=True, slots=True)
class Holiday:
    name: str
    project_id: str | None = None


@dataclass(frozen=True, slots=True)
class TimeOffInfo:
    is_full_day: bool = True
    hours: float = 0.0


@dataclass(frozen=True, slots=True)
class CalculationParams:
    """Engine defaults, used wherever no override or profile value applies.

    With the default ``tier2_threshold_hours=0`` and tiered overtime enabled,
    every overtime hour is already past the threshold and earns the tier-2
    premium as well.  Set a positive threshold, or turn off
    ``OvertimeConfig.enable_tiered_ot``, to keep overtime at tier 1.
    """

    daily_threshold: float = 8.0
    weekly_threshold: float = 40.0
    overtime_multiplier: float = 1.5
    tier2_threshold_hours: float = 0.0
    tier2_multiplier: float = 2.0


@dataclass(frozen=True, slots=True)
class OvertimeConfig:
    use_profile_capacity: bool = True
    use_profile_working_days: bool = True
    apply_holidays: bool = True
    apply_time_off: bool = True
    show_billable_breakdown: bool = True
    enable_tiered_ot: bool = True
    overtime_basis: OvertimeBasis = OvertimeBasis.DAILY
    time_zone: str = "UTC"
    amount_display: AmountDisplay = AmountDisplay.EARNED


@dataclass(frozen=True, slots=True)
class DayOverride:
    capacity: float | None = None
    multiplier: float | None = None
    tier2_threshold: float | None = None
    tier2_multiplier: float | None = None


@dataclass(frozen=True, slots=True)
class UserOverride:
    mode: OverrideMode = OverrideMode.GLOBAL
    capacity: float | None = None
    multiplier: float | None = None
    tier2_threshold: float | None = None
    tier2_multiplier: float | None = None
    per_day: Mapping[date, DayOverride] = field(default_factory=dict)
    weekday: Mapping[str, DayOverride] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class CalculationSnapshot:
    """Read-only view of everything the engine needs besides the entries."""

    users: tuple[User, ...] = ()
    profiles: Mapping[str, UserProfile] = field(default_factory=dict)
    holidays: Mapping[str, Mapping[date, Holiday]] = field(default_factory=dict)
    time_off: Mapping[str, Mapping[date, TimeOffInfo]] = field(default_factory=dict)
    overrides: Mapping[str, UserOverride] = field(default_factory=dict)
    config: OvertimeConfig = field(default_factory=OvertimeConfig)
    params: CalculationParams = field(default_factory=CalculationParams)


@dataclass(frozen=True, slots=True)
class EffectiveDayConfig:
    day: date
    capacity: float
    base_capacity: float
    multiplier: float
    tier2_threshold: float
    tier2_multiplier: float
    capacity_source: str
    is_holiday: bool = False
    holiday_name: str = ""
    holiday_project_id: str | None = None
    is_non_working_day: bool = False
    is_time_off: bool = False
    time_off_hours: float = 0.0

    def tier2_active(self, enabled: bool) -> bool:
        return enabled and self.tier2_multiplier > self.multiplier

    def tags(self) -> tuple[str, ...]:
        tags: list[str] = []
        if self.is_holiday:
            tags.append("HOLIDAY")
        if self.is_non_working_day:
            tags.append("OFF-DAY")
        if self.is_time_off:
            tags.append("TIME-OFF")
        return tuple(tags)


@dataclass(frozen=True, slots=True)
class AmountBreakdown:
    base_amount: float = 0.0
    tier1_premium: float = 0.0
    tier2_premium: float = 0.0
    total_amount: float = 0.0


@dataclass(frozen=True, slots=True)
class AmountSet:
    """One entry priced at its earned rate, its cost rate and their difference."""

    earned: AmountBreakdown = field(default_factory=AmountBreakdown)
    cost: AmountBreakdown = field(default_factory=AmountBreakdown)
    profit: AmountBreakdown = field(default_factory=AmountBreakdown)

    def select(self, display: AmountDisplay) -> AmountBreakdown:
        if display is AmountDisplay.COST:
            return self.cost
        if display is AmountDisplay.PROFIT:
            return self.profit
        return self.earned


@dataclass(frozen=True, slots=True)
class EntryAnalysis:
    classification: EntryClassification
    duration: float
    regular: float
    overtime: float
    tier1_hours: float
    tier2_hours: float
    is_billable: bool
    hourly_rate: float
    multiplier: float
    tier2_multiplier: float
    base_amount: float
    tier1_premium: float
    tier2_premium: float
    total_amount: float
    tags: tuple[str, ...] = ()
    cost_rate: float = 0.0
    amounts: AmountSet = field(default_factory=AmountSet)

    @property
    def is_break(self) -> bool:
        return self.classification is EntryClassification.BREAK

    @property
    def counts_as_worked(self) -> bool:
        return self.classification is not EntryClassification.PTO

    @property
    def billable_worked(self) -> float:
        return self.regular if self.counts_as_worked and self.is_billable else 0.0

    @property
    def billable_overtime(self) -> float:
        return self.overtime if self.counts_as_worked and self.is_billable else 0.0

    @property
    def non_billable_worked(self) -> float:
        return self.regular if self.counts_as_worked and not self.is_billable else 0.0

    @property
    def non_billable_overtime(self) -> float:
        return self.overtime if self.counts_as_worked and not self.is_billable else 0.0


@dataclass(frozen=True, slots=True)
class AnalyzedEntry:
    entry: TimeEntry
    analysis: EntryAnalysis


@dataclass(frozen=True, slots=True)
class PeriodTotals:
    total: float = 0.0
    regular: float = 0.0
    overtime: float = 0.0
    breaks: float = 0.0
    pto_hours: float = 0.0
    tier1_hours: float = 0.0
    tier2_hours: float = 0.0
    ot_premium: float = 0.0
    ot_premium_tier2: float = 0.0
    amount_base: float = 0.0
    amount: float = 0.0
    billable_worked: float = 0.0
    billable_ot: float = 0.0
    non_billable_worked: float = 0.0
    non_billable_ot: float = 0.0
    amount_earned: float = 0.0
    amount_earned_base: float = 0.0
    amount_cost: float = 0.0
    amount_cost_base: float = 0.0
    amount_profit: float = 0.0
    amount_profit_base: float = 0.0
    ot_premium_earned: float = 0.0
    ot_premium_cost: float = 0.0
    ot_premium_profit: float = 0.0
    ot_premium_tier2_earned: float = 0.0
    ot_premium_tier2_cost: float = 0.0
    ot_premium_tier2_profit: float = 0.0


@dataclass(frozen=True, slots=True)
class UserTotals(PeriodTotals):
    break_count: int = 0
    holiday_count: int = 0
    holiday_hours: float = 0.0
    time_off_count: int = 0
    time_off_hours: float = 0.0
    expected_capacity: float = 0.0


@dataclass(frozen=True, slots=True)
class DayData:
    day: date
    week_key: str
    meta: EffectiveDayConfig
    entries: tuple[AnalyzedEntry, ...]
    totals: PeriodTotals


@dataclass(frozen=True, slots=True)
class UserAnalysisResult:
    user_id: str
    user_name: str
    days: Mapping[date, DayData]
    weeks: Mapping[str, PeriodTotals]
    totals: UserTotals
