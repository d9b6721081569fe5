from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, localcontext

from otplus.domain import (
    AmountBreakdown,
    AmountDisplay,
    AmountSet,
    EffectiveDayConfig,
    EntryAnalysis,
    EntryClassification,
)

HOURS_DECIMALS = 4
MONEY_DECIMALS = 2


def round_to(value: float, decimals: int) -> float:
    if value is None or not math.isfinite(value):
        return 0.0
    quantum = Decimal(1).scaleb(-decimals)
    exact = Decimal(repr(float(value)))
    with localcontext() as ctx:
        # quantize needs every integer digit plus the kept decimals.
        ctx.prec = max(ctx.prec, exact.adjusted() + decimals + 2)
        return float(exact.quantize(quantum, rounding=ROUND_HALF_UP))


def round_hours(value: float) -> float:
    return round_to(value, HOURS_DECIMALS)


def round_money(value: float) -> float:
    return round_to(value, MONEY_DECIMALS)


@dataclass(frozen=True)
class CapacitySplit:
    regular: float
    overtime: float
    accumulated: float


@dataclass(frozen=True)
class TierSplit:
    tier1_hours: float
    tier2_hours: float


def split_capacity(accumulated: float, duration: float, capacity: float) -> CapacitySplit:
    if accumulated + duration <= capacity:
        return CapacitySplit(regular=duration, overtime=0.0, accumulated=accumulated + duration)
    if accumulated >= capacity:
        return CapacitySplit(regular=0.0, overtime=duration, accumulated=accumulated + duration)
    regular = capacity - accumulated
    return CapacitySplit(regular=regular, overtime=duration - regular, accumulated=capacity)


def split_tier2(period_overtime: float, overtime: float, threshold: float) -> TierSplit:
    if period_overtime + overtime <= threshold:
        return TierSplit(tier1_hours=overtime, tier2_hours=0.0)
    if period_overtime >= threshold:
        return TierSplit(tier1_hours=0.0, tier2_hours=overtime)
    tier1_hours = threshold - period_overtime
    return TierSplit(tier1_hours=tier1_hours, tier2_hours=overtime - tier1_hours)


def calculate_premiums(
    *,
    regular: float,
    overtime: float,
    tier2_hours: float,
    rate: float,
    multiplier: float,
    tier2_multiplier: float,
    billable: bool,
) -> AmountBreakdown:
    if not billable or rate == 0:
        return AmountBreakdown()

    base_amount = (regular + overtime) * rate
    # Tier-1 premium is earned by every overtime hour; tier-2 is paid on top.
    tier1_premium = overtime * rate * max(0.0, multiplier - 1)
    tier2_premium = tier2_hours * rate * max(0.0, tier2_multiplier - multiplier)
    return AmountBreakdown(
        base_amount=base_amount,
        tier1_premium=tier1_premium,
        tier2_premium=tier2_premium,
        total_amount=base_amount + tier1_premium + tier2_premium,
    )


def price_amounts(
    *,
    regular: float,
    overtime: float,
    tier2_hours: float,
    earned_rate: float,
    cost_rate: float,
    multiplier: float,
    tier2_multiplier: float,
) -> AmountSet:
    """Price the same hours at the earned, cost and profit rates.

    The profit rate is ``earned_rate - cost_rate`` and may be negative, for
    example on a non-billable entry that still has a cost.
    """

    def _priced(rate: float) -> AmountBreakdown:
        return calculate_premiums(
            regular=regular,
            overtime=overtime,
            tier2_hours=tier2_hours,
            rate=rate,
            multiplier=multiplier,
            tier2_multiplier=tier2_multiplier,
            billable=True,
        )

    return AmountSet(
        earned=_priced(earned_rate),
        cost=_priced(cost_rate),
        profit=_priced(earned_rate - cost_rate),
    )


@dataclass
class AccumulatorState:
    """Running counters for one user during one calculation run."""

    period_overtime_hours: float = 0.0
    bucket_key: str | None = None
    bucket_worked_hours: float = 0.0

    def enter_bucket(self, key: str) -> None:
        if key != self.bucket_key:
            self.bucket_key = key
            self.bucket_worked_hours = 0.0


class AccumulatorArena:
    def __init__(self) -> None:
        self._states: dict[str, AccumulatorState] = {}

    def for_user(self, user_id: str) -> AccumulatorState:
        state = self._states.get(user_id)
        if state is None:
            state = AccumulatorState()
            self._states[user_id] = state
        return state

    def __len__(self) -> int:
        return len(self._states)


def analyze_entry(
    state: AccumulatorState,
    *,
    classification: EntryClassification,
    duration: float,
    capacity: float,
    day_config: EffectiveDayConfig,
    rate: float,
    billable: bool,
    tier2_enabled: bool,
    consume_capacity: bool = True,
    cost_rate: float = 0.0,
    amount_display: AmountDisplay = AmountDisplay.EARNED,
) -> EntryAnalysis:
    """Split one entry into regular/overtime/tier hours and price it.

    ``capacity`` is the daily or weekly pool the state's bucket counter is
    measured against.  When ``consume_capacity`` is false the whole duration
    is overtime and the bucket counter is left untouched (zero-capacity days
    under the weekly basis).

    Earned money needs a billable entry; cost is tracked either way.  The
    ``amount_display`` breakdown fills the primary amount fields.
    """
    tags = list(day_config.tags())
    multiplier = day_config.multiplier
    tier2_multiplier = day_config.tier2_multiplier
    earned_rate = rate if billable else 0.0

    if classification is not EntryClassification.WORK:
        amounts = AmountSet()
        if classification is EntryClassification.BREAK:
            tags.append("BREAK")
            amounts = price_amounts(
                regular=duration,
                overtime=0.0,
                tier2_hours=0.0,
                earned_rate=earned_rate,
                cost_rate=cost_rate,
                multiplier=multiplier,
                tier2_multiplier=tier2_multiplier,
            )
        primary = amounts.select(amount_display)
        return EntryAnalysis(
            classification=classification,
            duration=duration,
            regular=duration,
            overtime=0.0,
            tier1_hours=0.0,
            tier2_hours=0.0,
            is_billable=billable,
            hourly_rate=rate,
            multiplier=multiplier,
            tier2_multiplier=tier2_multiplier,
            base_amount=primary.base_amount,
            tier1_premium=0.0,
            tier2_premium=0.0,
            total_amount=primary.total_amount,
            tags=tuple(tags),
            cost_rate=cost_rate,
            amounts=amounts,
        )

    if consume_capacity:
        split = split_capacity(state.bucket_worked_hours, duration, capacity)
        state.bucket_worked_hours = split.accumulated
    else:
        split = CapacitySplit(regular=0.0, overtime=duration, accumulated=state.bucket_worked_hours)

    overtime = split.overtime
    if day_config.tier2_active(tier2_enabled):
        tiers = split_tier2(state.period_overtime_hours, overtime, day_config.tier2_threshold)
    else:
        tiers = TierSplit(tier1_hours=overtime, tier2_hours=0.0)
    state.period_overtime_hours += overtime

    amounts = price_amounts(
        regular=split.regular,
        overtime=overtime,
        tier2_hours=tiers.tier2_hours,
        earned_rate=earned_rate,
        cost_rate=cost_rate,
        multiplier=multiplier,
        tier2_multiplier=tier2_multiplier,
    )
    primary = amounts.select(amount_display)
    return EntryAnalysis(
        classification=classification,
        duration=duration,
        regular=split.regular,
        overtime=overtime,
        tier1_hours=tiers.tier1_hours,
        tier2_hours=tiers.tier2_hours,
        is_billable=billable,
        hourly_rate=rate,
        multiplier=multiplier,
        tier2_multiplier=tier2_multiplier,
        base_amount=primary.base_amount,
        tier1_premium=primary.tier1_premium,
        tier2_premium=primary.tier2_premium,
        total_amount=primary.total_amount,
        tags=tuple(tags),
        cost_rate=cost_rate,
        amounts=amounts,
    )
