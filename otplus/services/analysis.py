from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, tzinfo

from otplus.domain import (
    AnalyzedEntry,
    CalculationSnapshot,
    DateRange,
    DayData,
    EffectiveDayConfig,
    EntryAnalysis,
    EntryClassification,
    OvertimeBasis,
    PeriodTotals,
    TimeEntry,
    UserAnalysisResult,
    UserTotals,
)
from otplus.services.calendar import date_key, days_in_range, localize, resolve_timezone, week_key
from otplus.services.capacity import resolve_day
from otplus.services.classification import (
    classify_entry,
    cost_rate_units,
    entry_duration_hours,
    hourly_rate_units,
    is_holiday_entry,
    is_time_off_entry,
)
from otplus.services.overtime_calc import (
    AccumulatorArena,
    AccumulatorState,
    analyze_entry,
    round_hours,
    round_money,
)

logger = logging.getLogger("otplus.analysis")

UNKNOWN_USER_ID = "unknown"
UNKNOWN_USER_NAME = "Unknown"

_HOUR_FIELDS = (
    "total",
    "regular",
    "overtime",
    "breaks",
    "pto_hours",
    "tier1_hours",
    "tier2_hours",
    "billable_worked",
    "billable_ot",
    "non_billable_worked",
    "non_billable_ot",
)
_MONEY_FIELDS = (
    "ot_premium",
    "ot_premium_tier2",
    "amount_base",
    "amount",
    "amount_earned",
    "amount_earned_base",
    "amount_cost",
    "amount_cost_base",
    "amount_profit",
    "amount_profit_base",
    "ot_premium_earned",
    "ot_premium_cost",
    "ot_premium_profit",
    "ot_premium_tier2_earned",
    "ot_premium_tier2_cost",
    "ot_premium_tier2_profit",
)
_AMOUNT_KINDS = ("earned", "cost", "profit")


@dataclass
class _TotalsBuilder:
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
    break_count: int = 0
    holiday_count: int = 0
    holiday_hours: float = 0.0
    time_off_count: int = 0
    time_off_hours: float = 0.0
    expected_capacity: float = 0.0

    def add_entry(self, analysis: EntryAnalysis) -> None:
        if analysis.classification is EntryClassification.PTO:
            self.pto_hours += analysis.duration
            return

        self.total += analysis.duration
        self.regular += analysis.regular
        self.overtime += analysis.overtime
        if analysis.is_break:
            self.breaks += analysis.duration
            self.break_count += 1

        self.tier1_hours += analysis.tier1_hours
        self.tier2_hours += analysis.tier2_hours
        self.ot_premium += analysis.tier1_premium
        self.ot_premium_tier2 += analysis.tier2_premium
        self.amount_base += analysis.base_amount
        self.amount += analysis.total_amount
        for kind in _AMOUNT_KINDS:
            breakdown = getattr(analysis.amounts, kind)
            self._add(f"amount_{kind}", breakdown.total_amount)
            self._add(f"amount_{kind}_base", breakdown.base_amount)
            self._add(f"ot_premium_{kind}", breakdown.tier1_premium)
            self._add(f"ot_premium_tier2_{kind}", breakdown.tier2_premium)

        self.billable_worked += analysis.billable_worked
        self.billable_ot += analysis.billable_overtime
        self.non_billable_worked += analysis.non_billable_worked
        self.non_billable_ot += analysis.non_billable_overtime

    def _add(self, name: str, value: float) -> None:
        setattr(self, name, getattr(self, name) + value)

    def add_day(self, meta: EffectiveDayConfig) -> None:
        self.expected_capacity += meta.capacity
        if meta.is_holiday:
            self.holiday_count += 1
            self.holiday_hours += meta.base_capacity
        if meta.is_time_off:
            self.time_off_count += 1
            self.time_off_hours += meta.time_off_hours

    def _rounded_period_values(self) -> dict[str, float]:
        values = {name: round_hours(getattr(self, name)) for name in _HOUR_FIELDS}
        values.update({name: round_money(getattr(self, name)) for name in _MONEY_FIELDS})
        return values

    def freeze_period(self) -> PeriodTotals:
        return PeriodTotals(**self._rounded_period_values())

    def freeze_user(self) -> UserTotals:
        return UserTotals(
            **self._rounded_period_values(),
            break_count=self.break_count,
            holiday_count=self.holiday_count,
            holiday_hours=round_hours(self.holiday_hours),
            time_off_count=self.time_off_count,
            time_off_hours=round_hours(self.time_off_hours),
            expected_capacity=round_hours(self.expected_capacity),
        )


def _effective_range(date_range: DateRange | None, entry_days: list[date]) -> DateRange | None:
    if date_range is not None:
        return date_range
    if not entry_days:
        return None
    return DateRange(start=min(entry_days), end=max(entry_days))


def _resolve_entry_day(
    user_id: str,
    day: date,
    day_entries: list[TimeEntry],
    snapshot: CalculationSnapshot,
) -> EffectiveDayConfig:
    time_off_entries = [entry for entry in day_entries if is_time_off_entry(entry)]
    return resolve_day(
        user_id,
        day,
        snapshot,
        holiday_entry=any(is_holiday_entry(entry) for entry in day_entries),
        has_time_off_entry=bool(time_off_entries),
        time_off_entry_hours=sum(entry_duration_hours(entry) for entry in time_off_entries),
    )


def _analyze_user(
    user_id: str,
    user_name: str,
    keyed_entries: list[tuple[TimeEntry, date]],
    snapshot: CalculationSnapshot,
    report_days: list[date],
    tz: tzinfo,
    state: AccumulatorState,
) -> UserAnalysisResult:
    config = snapshot.config
    weekly = config.overtime_basis is OvertimeBasis.WEEKLY

    ordered = sorted(keyed_entries, key=lambda item: (localize(item[0].interval.start, tz), item[0].id))
    entries_by_day: dict[date, list[TimeEntry]] = defaultdict(list)
    for entry, day in ordered:
        entries_by_day[day].append(entry)

    in_range = set(report_days)
    days: dict[date, DayData] = {}
    week_builders: dict[str, _TotalsBuilder] = {}
    user_builder = _TotalsBuilder()

    # Out-of-range days are walked too so the running counters stay correct.
    for day in sorted(in_range.union(entries_by_day)):
        day_entries = entries_by_day.get(day, [])
        day_config = _resolve_entry_day(user_id, day, day_entries, snapshot)
        day_week_key = week_key(day)

        if weekly:
            state.enter_bucket(day_week_key)
            capacity = snapshot.params.weekly_threshold
            consume_capacity = day_config.capacity > 0
        else:
            state.enter_bucket(day.isoformat())
            capacity = day_config.capacity
            consume_capacity = True

        analyzed: list[AnalyzedEntry] = []
        for entry in day_entries:
            analysis = analyze_entry(
                state,
                classification=classify_entry(entry),
                duration=entry_duration_hours(entry),
                capacity=capacity,
                day_config=day_config,
                rate=hourly_rate_units(entry),
                cost_rate=cost_rate_units(entry),
                billable=entry.billable is not False,
                tier2_enabled=config.enable_tiered_ot,
                consume_capacity=consume_capacity,
                amount_display=config.amount_display,
            )
            analyzed.append(AnalyzedEntry(entry=entry, analysis=analysis))

        if day not in in_range:
            continue

        day_builder = _TotalsBuilder()
        week_builder = week_builders.setdefault(day_week_key, _TotalsBuilder())
        for item in analyzed:
            for builder in (day_builder, week_builder, user_builder):
                builder.add_entry(item.analysis)
        user_builder.add_day(day_config)

        days[day] = DayData(
            day=day,
            week_key=day_week_key,
            meta=day_config,
            entries=tuple(analyzed),
            totals=day_builder.freeze_period(),
        )

    return UserAnalysisResult(
        user_id=user_id,
        user_name=user_name,
        days=days,
        weeks={key: builder.freeze_period() for key, builder in week_builders.items()},
        totals=user_builder.freeze_user(),
    )


def calculate(
    entries: Iterable[TimeEntry | None] | None,
    snapshot: CalculationSnapshot,
    date_range: DateRange | None = None,
) -> list[UserAnalysisResult]:
    """Analyze a reporting period and return one result per user.

    The snapshot and entries are never mutated.  Users come from the
    snapshot roster first; users seen only in entries are appended.  Results
    are ordered by user name, then user id.
    """
    tz = resolve_timezone(snapshot.config.time_zone)
    keyed_entries = [
        (entry, date_key(entry.interval.start, tz))
        for entry in (entries or ())
        if entry is not None
    ]

    period = _effective_range(date_range, [day for _, day in keyed_entries])
    if period is None:
        return []
    report_days = days_in_range(period.start, period.end)

    roster: dict[str, str] = {}
    for user in snapshot.users:
        roster.setdefault(user.id, user.name)

    entries_by_user: dict[str, list[tuple[TimeEntry, date]]] = defaultdict(list)
    for entry, day in keyed_entries:
        user_id = entry.user_id or UNKNOWN_USER_ID
        entries_by_user[user_id].append((entry, day))
        roster.setdefault(user_id, entry.user_name or UNKNOWN_USER_NAME)

    arena = AccumulatorArena()
    results = [
        _analyze_user(
            user_id,
            user_name,
            entries_by_user.get(user_id, []),
            snapshot,
            report_days,
            tz,
            arena.for_user(user_id),
        )
        for user_id, user_name in roster.items()
    ]
    results.sort(key=lambda result: (result.user_name, result.user_id))

    logger.debug(
        "analysis_calculated",
        extra={
            "users": len(results),
            "entries": len(keyed_entries),
            "days": len(report_days),
            "overtime_basis": snapshot.config.overtime_basis.value,
        },
    )
    return results
