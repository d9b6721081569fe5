from __future__ import annotations

import math
import unittest
from datetime import date, datetime, timezone

from factories import make_entry, make_snapshot
from otplus.domain import AmountDisplay, EffectiveDayConfig, EntryClassification, TimeEntry, TimeInterval
from otplus.services.analysis import calculate
from otplus.services.overtime_calc import (
    AccumulatorArena,
    AccumulatorState,
    analyze_entry,
    calculate_premiums,
    price_amounts,
    round_hours,
    round_money,
    round_to,
    split_capacity,
    split_tier2,
)


def _day_config(**overrides) -> EffectiveDayConfig:
    values = {
        "day": date(2024, 3, 4),
        "capacity": 8.0,
        "base_capacity": 8.0,
        "multiplier": 1.5,
        "tier2_threshold": 0.0,
        "tier2_multiplier": 2.0,
        "capacity_source": "DEFAULT",
    }
    values.update(overrides)
    return EffectiveDayConfig(**values)


class SplitTests(unittest.TestCase):
    def test_capacity_equality_goes_to_regular(self) -> None:
        split = split_capacity(4, 4, 8)
        self.assertEqual((split.regular, split.overtime, split.accumulated), (4, 0, 8))

    def test_capacity_straddle(self) -> None:
        split = split_capacity(6, 4, 8)
        self.assertEqual((split.regular, split.overtime, split.accumulated), (2, 2, 8))

    def test_capacity_already_exhausted(self) -> None:
        split = split_capacity(8, 2, 8)
        self.assertEqual((split.regular, split.overtime), (0, 2))

    def test_zero_capacity_is_all_overtime(self) -> None:
        split = split_capacity(0, 3, 0)
        self.assertEqual((split.regular, split.overtime), (0, 3))

    def test_tier2_split(self) -> None:
        self.assertEqual(split_tier2(0, 6, 6).tier2_hours, 0)
        self.assertEqual(split_tier2(4, 4, 6).tier1_hours, 2)
        self.assertEqual(split_tier2(4, 4, 6).tier2_hours, 2)
        self.assertEqual(split_tier2(7, 1, 6).tier2_hours, 1)


class PremiumTests(unittest.TestCase):
    def test_tier1_premium_on_all_overtime(self) -> None:
        amounts = calculate_premiums(
            regular=8,
            overtime=2,
            tier2_hours=1,
            rate=100,
            multiplier=1.5,
            tier2_multiplier=2.0,
            billable=True,
        )
        self.assertEqual(amounts.base_amount, 1000)
        self.assertEqual(amounts.tier1_premium, 100)
        self.assertEqual(amounts.tier2_premium, 50)
        self.assertEqual(amounts.total_amount, 1150)

    def test_non_billable_zeroes_money(self) -> None:
        amounts = calculate_premiums(
            regular=8,
            overtime=2,
            tier2_hours=0,
            rate=100,
            multiplier=1.5,
            tier2_multiplier=2.0,
            billable=False,
        )
        self.assertEqual(amounts.total_amount, 0)
        self.assertEqual(amounts.tier1_premium, 0)

    def test_price_amounts_derives_profit_from_earned_minus_cost(self) -> None:
        amounts = price_amounts(
            regular=8,
            overtime=2,
            tier2_hours=0,
            earned_rate=0,
            cost_rate=50,
            multiplier=1.5,
            tier2_multiplier=2.0,
        )
        self.assertEqual(amounts.earned.total_amount, 0)
        self.assertEqual(amounts.cost.base_amount, 500)
        self.assertEqual(amounts.cost.tier1_premium, 50)
        self.assertEqual(amounts.profit.total_amount, -550)
        self.assertEqual(amounts.select(AmountDisplay.PROFIT), amounts.profit)


class RoundingTests(unittest.TestCase):
    def test_half_up(self) -> None:
        self.assertEqual(round_money(0.125), 0.13)
        self.assertEqual(round_money(1.005), 1.01)
        self.assertEqual(round_hours(1.00005), 1.0001)
        self.assertEqual(round_to(2.5, 0), 3)

    def test_non_finite_becomes_zero(self) -> None:
        self.assertEqual(round_hours(math.nan), 0)
        self.assertEqual(round_money(math.inf), 0)
        self.assertEqual(round_money(-math.inf), 0)

    def test_idempotent(self) -> None:
        for value in (1.23456789, 0.1 + 0.2, 7.77775, 1e-9):
            once = round_hours(value)
            self.assertEqual(round_hours(once), once)

    def test_large_finite_values_round_without_error(self) -> None:
        self.assertEqual(round_hours(1e24), 1e24)
        self.assertEqual(round_money(1e26), 1e26)
        self.assertEqual(round_hours(1e300), 1e300)
        self.assertEqual(round_money(-1e30), -1e30)

    def test_calculate_accepts_huge_durations_and_rates(self) -> None:
        monday = datetime(2024, 3, 4, 9, tzinfo=timezone.utc)
        endless = TimeEntry(
            id="e-long",
            user_id="u1",
            user_name="Alice",
            interval=TimeInterval(start=monday, duration_hours=1e24),
            hourly_rate=10000,
        )
        [long_result] = calculate([endless], make_snapshot())
        self.assertEqual(long_result.totals.total, 1e24)
        self.assertGreater(long_result.totals.overtime, 0)

        [rich_result] = calculate([make_entry(monday, 10, hourly_rate=10**27)], make_snapshot())
        self.assertGreater(rich_result.totals.amount, 1e26)
        self.assertTrue(math.isfinite(rich_result.totals.ot_premium))


class AnalyzeEntryTests(unittest.TestCase):
    def _analyze(self, state: AccumulatorState, duration: float, **kwargs):
        params = {
            "classification": EntryClassification.WORK,
            "duration": duration,
            "capacity": 8.0,
            "day_config": _day_config(),
            "rate": 50.0,
            "billable": True,
            "tier2_enabled": False,
        }
        params.update(kwargs)
        return analyze_entry(state, **params)

    def test_break_does_not_consume_capacity(self) -> None:
        state = AccumulatorState()
        state.enter_bucket("2024-03-04")
        analysis = self._analyze(state, 1, classification=EntryClassification.BREAK)
        self.assertEqual((analysis.regular, analysis.overtime), (1, 0))
        self.assertIn("BREAK", analysis.tags)
        self.assertEqual(analysis.base_amount, 50)
        self.assertEqual(state.bucket_worked_hours, 0)
        self.assertEqual(state.period_overtime_hours, 0)

    def test_pto_has_no_money(self) -> None:
        state = AccumulatorState()
        analysis = self._analyze(state, 8, classification=EntryClassification.PTO)
        self.assertEqual(analysis.total_amount, 0)
        self.assertFalse(analysis.counts_as_worked)
        self.assertEqual(analysis.billable_worked, 0)

    def test_tier2_inactive_when_disabled(self) -> None:
        state = AccumulatorState()
        analysis = self._analyze(state, 12, day_config=_day_config(tier2_threshold=2))
        self.assertEqual(analysis.tier1_hours, 4)
        self.assertEqual(analysis.tier2_hours, 0)
        self.assertEqual(state.period_overtime_hours, 4)

    def test_tier2_inactive_when_multiplier_not_higher(self) -> None:
        state = AccumulatorState()
        analysis = self._analyze(
            state,
            12,
            tier2_enabled=True,
            day_config=_day_config(tier2_threshold=2, tier2_multiplier=1.5),
        )
        self.assertEqual(analysis.tier2_hours, 0)

    def test_tier2_active(self) -> None:
        state = AccumulatorState()
        analysis = self._analyze(state, 12, tier2_enabled=True, day_config=_day_config(tier2_threshold=2))
        self.assertEqual(analysis.tier1_hours, 2)
        self.assertEqual(analysis.tier2_hours, 2)
        self.assertEqual(analysis.tier1_premium, 4 * 50 * 0.5)
        self.assertEqual(analysis.tier2_premium, 2 * 50 * 0.5)

    def test_cost_display_prices_non_billable_work(self) -> None:
        state = AccumulatorState()
        state.enter_bucket("2024-03-04")
        analysis = self._analyze(
            state,
            10,
            billable=False,
            cost_rate=30.0,
            amount_display=AmountDisplay.COST,
        )
        self.assertEqual(analysis.amounts.earned.total_amount, 0)
        self.assertEqual(analysis.base_amount, 300)
        self.assertEqual(analysis.tier1_premium, 2 * 30 * 0.5)
        self.assertEqual(analysis.total_amount, 330)
        self.assertEqual(analysis.amounts.profit.total_amount, -330)

    def test_consume_capacity_false_sends_everything_to_overtime(self) -> None:
        state = AccumulatorState()
        state.enter_bucket("2024-W10")
        state.bucket_worked_hours = 10
        analysis = self._analyze(state, 3, capacity=40, consume_capacity=False)
        self.assertEqual((analysis.regular, analysis.overtime), (0, 3))
        self.assertEqual(state.bucket_worked_hours, 10)

    def test_enter_bucket_resets_only_on_new_key(self) -> None:
        state = AccumulatorState()
        state.enter_bucket("a")
        state.bucket_worked_hours = 5
        state.enter_bucket("a")
        self.assertEqual(state.bucket_worked_hours, 5)
        state.enter_bucket("b")
        self.assertEqual(state.bucket_worked_hours, 0)

    def test_arena_keeps_one_state_per_user(self) -> None:
        arena = AccumulatorArena()
        self.assertIs(arena.for_user("u1"), arena.for_user("u1"))
        self.assertIsNot(arena.for_user("u1"), arena.for_user("u2"))
        self.assertEqual(len(arena), 2)


if __name__ == "__main__":
    unittest.main()
