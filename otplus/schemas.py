from __future__ import annotations

from collections.abc import Mapping
from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from otplus.domain import (
    WEEKDAY_NAMES,
    AmountBreakdown,
    AmountDisplay,
    AnalyzedEntry,
    CalculationParams,
    CalculationSnapshot,
    DateRange,
    DayData,
    DayOverride,
    Holiday,
    OverrideMode,
    OvertimeBasis,
    OvertimeConfig,
    TimeEntry,
    TimeInterval,
    TimeOffInfo,
    User,
    UserAnalysisResult,
    UserOverride,
    UserProfile,
)
from otplus.services.classification import duration_from_iso
from otplus.services.overtime_calc import round_hours, round_money
from otplus.settings import Settings


class TimeIntervalIn(BaseModel):
    start: datetime
    end: datetime | None = None
    duration_hours: float | None = Field(default=None, ge=0)
    duration: str | None = Field(default=None, description="ISO-8601 duration such as PT8H30M")

    @model_validator(mode="after")
    def _validate_duration(self) -> "TimeIntervalIn":
        if self.duration_hours is None and self.duration is None:
            raise ValueError("Either duration_hours or duration is required.")
        return self

    def hours(self) -> float:
        if self.duration_hours is not None:
            return self.duration_hours
        return duration_from_iso(self.duration)

    def to_domain(self) -> TimeInterval:
        return TimeInterval(start=self.start, end=self.end, duration_hours=self.hours())


class TimeEntryIn(BaseModel):
    id: str = Field(min_length=1)
    user_id: str = Field(min_length=1)
    user_name: str = ""
    time_interval: TimeIntervalIn
    billable: bool = True
    hourly_rate: int | None = Field(default=None, ge=0, description="Minor currency units (cents).")
    cost_rate: int | None = Field(default=None, ge=0, description="Minor currency units (cents).")
    type: str | None = None
    project_id: str | None = None
    description: str | None = None

    def to_domain(self) -> TimeEntry:
        return TimeEntry(
            id=self.id,
            user_id=self.user_id,
            user_name=self.user_name,
            interval=self.time_interval.to_domain(),
            billable=self.billable,
            hourly_rate=self.hourly_rate,
            cost_rate=self.cost_rate,
            type=self.type,
            project_id=self.project_id,
            description=self.description,
        )


class UserIn(BaseModel):
    id: str = Field(min_length=1)
    name: str = ""


class UserProfileIn(BaseModel):
    work_capacity_hours: float | None = Field(default=None, ge=0)
    working_days: list[str] | None = None

    @field_validator("working_days")
    @classmethod
    def _normalize_working_days(cls, value: list[str] | None) -> list[str] | None:
        if value is None:
            return None
        normalized = [item.strip().upper() for item in value]
        unknown = [item for item in normalized if item not in WEEKDAY_NAMES]
        if unknown:
            raise ValueError(f"Unknown weekday names: {', '.join(unknown)}")
        return normalized

    def to_domain(self) -> UserProfile:
        working_days = tuple(self.working_days) if self.working_days is not None else None
        return UserProfile(work_capacity_hours=self.work_capacity_hours, working_days=working_days)


class HolidayIn(BaseModel):
    name: str = ""
    project_id: str | None = None


class TimeOffIn(BaseModel):
    is_full_day: bool = True
    hours: float = Field(default=0.0, ge=0)


class CalculationParamsIn(BaseModel):
    daily_threshold: float | None = Field(default=None, ge=0)
    weekly_threshold: float | None = Field(default=None, ge=0)
    overtime_multiplier: float | None = Field(default=None, ge=1)
    tier2_threshold_hours: float | None = Field(
        default=None,
        ge=0,
        description="Cumulative overtime hours before tier 2 starts; 0 sends all overtime to tier 2.",
    )
    tier2_multiplier: float | None = Field(default=None, ge=1)

    def to_domain(self, settings: Settings) -> CalculationParams:
        def pick(value: float | None, fallback: float) -> float:
            return fallback if value is None else value

        return CalculationParams(
            daily_threshold=pick(self.daily_threshold, settings.default_daily_threshold),
            weekly_threshold=pick(self.weekly_threshold, settings.default_weekly_threshold),
            overtime_multiplier=pick(self.overtime_multiplier, settings.default_overtime_multiplier),
            tier2_threshold_hours=pick(self.tier2_threshold_hours, settings.default_tier2_threshold_hours),
            tier2_multiplier=pick(self.tier2_multiplier, settings.default_tier2_multiplier),
        )


class OvertimeConfigIn(BaseModel):
    use_profile_capacity: bool = True
    use_profile_working_days: bool = True
    apply_holidays: bool = True
    apply_time_off: bool = True
    show_billable_breakdown: bool = True
    enable_tiered_ot: bool = Field(
        default=True,
        description="Pay the tier-2 premium past tier2_threshold_hours; switch off for a single overtime rate.",
    )
    overtime_basis: OvertimeBasis = OvertimeBasis.DAILY
    time_zone: str | None = None
    amount_display: AmountDisplay = AmountDisplay.EARNED

    def to_domain(self, settings: Settings) -> OvertimeConfig:
        return OvertimeConfig(
            use_profile_capacity=self.use_profile_capacity,
            use_profile_working_days=self.use_profile_working_days,
            apply_holidays=self.apply_holidays,
            apply_time_off=self.apply_time_off,
            show_billable_breakdown=self.show_billable_breakdown,
            enable_tiered_ot=self.enable_tiered_ot,
            overtime_basis=self.overtime_basis,
            time_zone=self.time_zone or settings.report_timezone,
            amount_display=self.amount_display,
        )


class DayOverrideIn(BaseModel):
    capacity: float | None = Field(default=None, ge=0)
    multiplier: float | None = Field(default=None, ge=1)
    tier2_threshold: float | None = Field(default=None, ge=0)
    tier2_multiplier: float | None = Field(default=None, ge=1)

    def to_domain(self) -> DayOverride:
        return DayOverride(
            capacity=self.capacity,
            multiplier=self.multiplier,
            tier2_threshold=self.tier2_threshold,
            tier2_multiplier=self.tier2_multiplier,
        )


class UserOverrideIn(DayOverrideIn):
    mode: OverrideMode = OverrideMode.GLOBAL
    per_day: dict[date, DayOverrideIn] = Field(default_factory=dict)
    weekday: dict[str, DayOverrideIn] = Field(default_factory=dict)

    @field_validator("weekday")
    @classmethod
    def _normalize_weekday_keys(cls, value: dict[str, DayOverrideIn]) -> dict[str, DayOverrideIn]:
        normalized = {key.strip().upper(): item for key, item in value.items()}
        unknown = [key for key in normalized if key not in WEEKDAY_NAMES]
        if unknown:
            raise ValueError(f"Unknown weekday names: {', '.join(unknown)}")
        return normalized

    def to_user_override(self) -> UserOverride:
        return UserOverride(
            mode=self.mode,
            capacity=self.capacity,
            multiplier=self.multiplier,
            tier2_threshold=self.tier2_threshold,
            tier2_multiplier=self.tier2_multiplier,
            per_day={day: item.to_domain() for day, item in self.per_day.items()},
            weekday={name: item.to_domain() for name, item in self.weekday.items()},
        )


class CalculateRequest(BaseModel):
    entries: list[TimeEntryIn] = Field(default_factory=list)
    start: date | None = None
    end: date | None = None
    users: list[UserIn] = Field(default_factory=list)
    profiles: dict[str, UserProfileIn] = Field(default_factory=dict)
    holidays: dict[str, dict[date, HolidayIn]] = Field(default_factory=dict)
    time_off: dict[str, dict[date, TimeOffIn]] = Field(default_factory=dict)
    overrides: dict[str, UserOverrideIn] = Field(default_factory=dict)
    workspace_id: str | None = Field(default=None, min_length=1, max_length=255)
    config: OvertimeConfigIn = Field(default_factory=OvertimeConfigIn)
    params: CalculationParamsIn = Field(default_factory=CalculationParamsIn)

    @model_validator(mode="after")
    def _validate_range(self) -> "CalculateRequest":
        if (self.start is None) != (self.end is None):
            raise ValueError("Provide both start and end, or neither.")
        if self.start is not None and self.end is not None and self.end < self.start:
            raise ValueError("end must not be before start.")
        return self

    def date_range(self) -> DateRange | None:
        if self.start is None or self.end is None:
            return None
        return DateRange(start=self.start, end=self.end)

    def to_entries(self) -> list[TimeEntry]:
        return [entry.to_domain() for entry in self.entries]

    def to_snapshot(
        self,
        settings: Settings,
        persisted_overrides: Mapping[str, UserOverride] | None = None,
    ) -> CalculationSnapshot:
        """Inline overrides replace persisted ones for the same user."""
        overrides = dict(persisted_overrides or {})
        overrides.update({user_id: item.to_user_override() for user_id, item in self.overrides.items()})
        return CalculationSnapshot(
            users=tuple(User(id=user.id, name=user.name) for user in self.users),
            profiles={user_id: profile.to_domain() for user_id, profile in self.profiles.items()},
            holidays={
                user_id: {day: Holiday(name=item.name, project_id=item.project_id) for day, item in days.items()}
                for user_id, days in self.holidays.items()
            },
            time_off={
                user_id: {day: TimeOffInfo(is_full_day=item.is_full_day, hours=item.hours) for day, item in days.items()}
                for user_id, days in self.time_off.items()
            },
            overrides=overrides,
            config=self.config.to_domain(settings),
            params=self.params.to_domain(settings),
        )


class EffectiveDayRead(BaseModel):
    capacity: float
    base_capacity: float
    multiplier: float
    tier2_threshold: float
    tier2_multiplier: float
    capacity_source: str
    is_holiday: bool
    holiday_name: str
    holiday_project_id: str | None
    is_non_working_day: bool
    is_time_off: bool
    time_off_hours: float

    model_config = ConfigDict(from_attributes=True)


class AmountBreakdownRead(BaseModel):
    base_amount: float
    tier1_premium: float
    tier2_premium: float
    total_amount: float

    @classmethod
    def from_domain(cls, breakdown: AmountBreakdown) -> "AmountBreakdownRead":
        return cls(
            base_amount=round_money(breakdown.base_amount),
            tier1_premium=round_money(breakdown.tier1_premium),
            tier2_premium=round_money(breakdown.tier2_premium),
            total_amount=round_money(breakdown.total_amount),
        )


class EntryAnalysisRead(BaseModel):
    classification: str
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
    tags: list[str]
    cost_rate: float
    earned: AmountBreakdownRead
    cost: AmountBreakdownRead
    profit: AmountBreakdownRead


class AnalyzedEntryRead(BaseModel):
    id: str
    user_id: str
    start: datetime
    end: datetime | None
    duration_hours: float
    type: str | None
    project_id: str | None
    description: str | None
    analysis: EntryAnalysisRead

    @classmethod
    def from_domain(cls, item: AnalyzedEntry) -> "AnalyzedEntryRead":
        entry, analysis = item.entry, item.analysis
        return cls(
            id=entry.id,
            user_id=entry.user_id,
            start=entry.interval.start,
            end=entry.interval.end,
            duration_hours=round_hours(analysis.duration),
            type=entry.type,
            project_id=entry.project_id,
            description=entry.description,
            analysis=EntryAnalysisRead(
                classification=analysis.classification.value,
                regular=round_hours(analysis.regular),
                overtime=round_hours(analysis.overtime),
                tier1_hours=round_hours(analysis.tier1_hours),
                tier2_hours=round_hours(analysis.tier2_hours),
                is_billable=analysis.is_billable,
                hourly_rate=round_money(analysis.hourly_rate),
                multiplier=analysis.multiplier,
                tier2_multiplier=analysis.tier2_multiplier,
                base_amount=round_money(analysis.base_amount),
                tier1_premium=round_money(analysis.tier1_premium),
                tier2_premium=round_money(analysis.tier2_premium),
                total_amount=round_money(analysis.total_amount),
                tags=list(analysis.tags),
                cost_rate=round_money(analysis.cost_rate),
                earned=AmountBreakdownRead.from_domain(analysis.amounts.earned),
                cost=AmountBreakdownRead.from_domain(analysis.amounts.cost),
                profit=AmountBreakdownRead.from_domain(analysis.amounts.profit),
            ),
        )


class PeriodTotalsRead(BaseModel):
    total: float
    regular: float
    overtime: float
    breaks: float
    pto_hours: float
    tier1_hours: float
    tier2_hours: float
    ot_premium: float
    ot_premium_tier2: float
    amount_base: float
    amount: float
    billable_worked: float
    billable_ot: float
    non_billable_worked: float
    non_billable_ot: float
    amount_earned: float
    amount_earned_base: float
    amount_cost: float
    amount_cost_base: float
    amount_profit: float
    amount_profit_base: float
    ot_premium_earned: float
    ot_premium_cost: float
    ot_premium_profit: float
    ot_premium_tier2_earned: float
    ot_premium_tier2_cost: float
    ot_premium_tier2_profit: float

    model_config = ConfigDict(from_attributes=True)


class UserTotalsRead(PeriodTotalsRead):
    break_count: int
    holiday_count: int
    holiday_hours: float
    time_off_count: int
    time_off_hours: float
    expected_capacity: float


class DayRead(BaseModel):
    day: date
    week_key: str
    meta: EffectiveDayRead
    entries: list[AnalyzedEntryRead]
    totals: PeriodTotalsRead

    @classmethod
    def from_domain(cls, day: DayData) -> "DayRead":
        return cls(
            day=day.day,
            week_key=day.week_key,
            meta=EffectiveDayRead.model_validate(day.meta),
            entries=[AnalyzedEntryRead.from_domain(item) for item in day.entries],
            totals=PeriodTotalsRead.model_validate(day.totals),
        )


class UserAnalysisRead(BaseModel):
    user_id: str
    user_name: str
    days: list[DayRead]
    weeks: dict[str, PeriodTotalsRead]
    totals: UserTotalsRead

    @classmethod
    def from_domain(cls, result: UserAnalysisResult) -> "UserAnalysisRead":
        return cls(
            user_id=result.user_id,
            user_name=result.user_name,
            days=[DayRead.from_domain(day) for day in result.days.values()],
            weeks={key: PeriodTotalsRead.model_validate(totals) for key, totals in result.weeks.items()},
            totals=UserTotalsRead.model_validate(result.totals),
        )


class CalculateResponse(BaseModel):
    mode: str
    start: date | None
    end: date | None
    results: list[UserAnalysisRead]


class OverrideModeUpdateRequest(BaseModel):
    mode: str = Field(min_length=1, max_length=32)


class OverrideFieldUpdateRequest(BaseModel):
    field: str = Field(min_length=1, max_length=64)
    value: float | str | None = None


class OverrideCopyGlobalRequest(BaseModel):
    target: Literal["per_day", "weekday"]
    days: list[date] = Field(default_factory=list)

    @model_validator(mode="after")
    def _validate_days(self) -> "OverrideCopyGlobalRequest":
        if self.target == "per_day" and not self.days:
            raise ValueError("days is required when target is per_day.")
        return self


class UserOverrideRead(BaseModel):
    workspace_id: str
    user_id: str
    override: dict[str, Any]


class WorkspaceOverridesRead(BaseModel):
    workspace_id: str
    overrides: dict[str, dict[str, Any]]
