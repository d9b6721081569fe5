from __future__ import annotations

import unittest
from datetime import date, datetime, timezone

from factories import day_range, make_entry, make_snapshot
from otplus.domain import (
    AmountDisplay,
    CalculationParams,
    Holiday,
    OvertimeBasis,
    User,
    UserProfile,
)
from otplus.services.analysis import calculate

MONDAY = date(2024, 3, 4)
TUESDAY = date(2024, 3, 5)
WEDNESDAY = date(2024, 3, 6)


def _at(day: date, hour: int, minute: int = 0) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute)


class CapacityBoundaryTests(unittest.TestCase):
    def test_two_half_days_fill_capacity_exactly(self) -> None:
        entries = [make_entry(_at(MONDAY, 8), 4), make_entry(_at(MONDAY, 13), 4)]
        [result] = calculate(entries, make_snapshot(), day_range(MONDAY))
        self.assertEqual(result.totals.regular, 8)
        self.assertEqual(result.totals.overtime, 0)

    def test_entry_after_capacity_is_overtime(self) -> None:
        entries = [
            make_entry(_at(MONDAY, 8), 4),
            make_entry(_at(MONDAY, 13), 4),
            make_entry(_at(MONDAY, 18), 2),
        ]
        [result] = calculate(entries, make_snapshot(), day_range(MONDAY))
        last = result.days[MONDAY].entries[-1].analysis
        self.assertEqual((last.regular, last.overtime), (0, 2))
        self.assertEqual(result.totals.overtime, 2)

    def test_entries_are_processed_chronologically(self) -> None:
        late = make_entry(_at(MONDAY, 18), 2, entry_id="late")
        early = make_entry(_at(MONDAY, 8), 8, entry_id="early")
        [result] = calculate([late, early], make_snapshot(), day_range(MONDAY))
        analyzed = {item.entry.id: item.analysis for item in result.days[MONDAY].entries}
        self.assertEqual(analyzed["early"].overtime, 0)
        self.assertEqual(analyzed["late"].overtime, 2)
        self.assertEqual([item.entry.id for item in result.days[MONDAY].entries], ["early", "late"])


class TierTwoTests(unittest.TestCase):
    def _snapshot(self):
        return make_snapshot(
            enable_tiered_ot=True,
            params=CalculationParams(tier2_threshold_hours=6, tier2_multiplier=2.0),
        )

    def test_exact_threshold_pays_no_tier2(self) -> None:
        [result] = calculate([make_entry(_at(MONDAY, 6), 14)], self._snapshot(), day_range(MONDAY))
        self.assertEqual(result.totals.overtime, 6)
        self.assertEqual(result.totals.tier2_hours, 0)
        self.assertEqual(result.totals.ot_premium_tier2, 0)

    def test_just_past_threshold_is_proportional(self) -> None:
        [result] = calculate([make_entry(_at(MONDAY, 6), 14.5)], self._snapshot(), day_range(MONDAY))
        self.assertEqual(result.totals.tier2_hours, 0.5)
        # 0.5h * 100/h * (2.0 - 1.5)
        self.assertEqual(result.totals.ot_premium_tier2, 25)
        self.assertEqual(result.totals.ot_premium, 6.5 * 100 * 0.5)

    def test_tier2_threshold_is_cumulative_across_days(self) -> None:
        snapshot = make_snapshot(
            enable_tiered_ot=True,
            params=CalculationParams(tier2_threshold_hours=3),
        )
        entries = [make_entry(_at(MONDAY, 8), 10), make_entry(_at(TUESDAY, 8), 10)]
        [result] = calculate(entries, snapshot, day_range(MONDAY, TUESDAY))
        self.assertEqual(result.days[MONDAY].totals.tier2_hours, 0)
        self.assertEqual(result.days[TUESDAY].totals.tier1_hours, 1)
        self.assertEqual(result.days[TUESDAY].totals.tier2_hours, 1)

    def test_default_threshold_puts_all_overtime_in_tier2(self) -> None:
        [result] = calculate([make_entry(_at(MONDAY, 6), 10)], make_snapshot(), day_range(MONDAY))
        self.assertEqual(result.totals.tier1_hours, 0)
        self.assertEqual(result.totals.tier2_hours, 2)
        # 2h * 100/h * (2.0 - 1.5) on top of the tier-1 premium
        self.assertEqual(result.totals.ot_premium_tier2, 100)
        self.assertEqual(result.totals.ot_premium, 100)

    def test_tier2_can_be_switched_off(self) -> None:
        snapshot = make_snapshot(enable_tiered_ot=False, params=CalculationParams(tier2_threshold_hours=1))
        [result] = calculate([make_entry(_at(MONDAY, 6), 14)], snapshot, day_range(MONDAY))
        self.assertEqual(result.totals.tier2_hours, 0)
        self.assertEqual(result.totals.tier1_hours, 6)


class AmountTypeTests(unittest.TestCase):
    def _snapshot(self, **kwargs):
        return make_snapshot(enable_tiered_ot=False, **kwargs)

    def test_billable_entry_is_priced_as_earned_cost_and_profit(self) -> None:
        entries = [make_entry(_at(MONDAY, 6), 10, hourly_rate=10000, cost_rate=6000)]
        [result] = calculate(entries, self._snapshot(), day_range(MONDAY))
        totals = result.totals
        self.assertEqual(totals.amount_earned, 1100)
        self.assertEqual(totals.amount_earned_base, 1000)
        self.assertEqual(totals.amount_cost, 660)
        self.assertEqual(totals.amount_cost_base, 600)
        self.assertEqual(totals.amount_profit, 440)
        self.assertEqual(totals.amount_profit_base, 400)
        self.assertEqual(totals.ot_premium_earned, 100)
        self.assertEqual(totals.ot_premium_cost, 60)
        self.assertEqual(totals.ot_premium_profit, 40)
        self.assertEqual(totals.amount, totals.amount_earned)

        analysis = result.days[MONDAY].entries[0].analysis
        self.assertEqual(analysis.cost_rate, 60)
        self.assertEqual(analysis.amounts.cost.tier1_premium, 60)

    def test_non_billable_entry_has_cost_but_no_earned_amount(self) -> None:
        entries = [make_entry(_at(MONDAY, 6), 10, billable=False, cost_rate=6000)]
        [result] = calculate(entries, self._snapshot(), day_range(MONDAY))
        totals = result.totals
        self.assertEqual(totals.amount_earned, 0)
        self.assertEqual(totals.amount, 0)
        self.assertEqual(totals.amount_cost, 660)
        self.assertEqual(totals.amount_profit, -660)
        self.assertEqual(totals.ot_premium_profit, -60)
        self.assertEqual(result.days[MONDAY].entries[0].analysis.amounts.earned.total_amount, 0)

    def test_amount_display_selects_primary_amounts(self) -> None:
        entries = [make_entry(_at(MONDAY, 6), 10, hourly_rate=10000, cost_rate=6000)]

        [cost] = calculate(entries, self._snapshot(amount_display=AmountDisplay.COST), day_range(MONDAY))
        self.assertEqual(cost.totals.amount, 660)
        self.assertEqual(cost.totals.amount_base, 600)
        self.assertEqual(cost.totals.ot_premium, 60)
        self.assertEqual(cost.totals.amount_earned, 1100)
        self.assertEqual(cost.days[MONDAY].entries[0].analysis.total_amount, 660)

        [profit] = calculate(entries, self._snapshot(amount_display=AmountDisplay.PROFIT), day_range(MONDAY))
        self.assertEqual(profit.totals.amount, 440)
        self.assertEqual(profit.totals.ot_premium, 40)

    def test_breaks_carry_cost_and_time_off_does_not(self) -> None:
        entries = [
            make_entry(_at(MONDAY, 12), 1, type="BREAK", cost_rate=6000),
            make_entry(_at(TUESDAY, 9), 8, type="TIME_OFF", cost_rate=6000),
        ]
        [result] = calculate(entries, self._snapshot(), day_range(MONDAY, TUESDAY))
        self.assertEqual(result.days[MONDAY].totals.amount_cost, 60)
        self.assertEqual(result.days[MONDAY].totals.amount_earned, 100)
        self.assertEqual(result.days[TUESDAY].totals.amount_cost, 0)
        self.assertEqual(result.days[TUESDAY].totals.amount_profit, 0)


class AttributionTests(unittest.TestCase):
    def test_entry_crossing_midnight_stays_on_start_day(self) -> None:
        entry = make_entry(_at(MONDAY, 23, 30), 2)
        [result] = calculate([entry], make_snapshot(), day_range(MONDAY, TUESDAY))
        self.assertEqual(result.days[MONDAY].totals.total, 2)
        self.assertEqual(result.days[TUESDAY].totals.total, 0)

    def test_attribution_uses_report_timezone(self) -> None:
        entry = make_entry(datetime(2024, 3, 5, 2, 30, tzinfo=timezone.utc), 1)
        snapshot = make_snapshot(time_zone="America/New_York")
        [result] = calculate([entry], snapshot, day_range(MONDAY, TUESDAY))
        self.assertEqual(result.days[MONDAY].totals.total, 1)
        self.assertEqual(result.days[TUESDAY].totals.total, 0)


class BasisTests(unittest.TestCase):
    def test_daily_and_weekly_diverge(self) -> None:
        entries = [make_entry(_at(MONDAY, 6), 12), make_entry(_at(TUESDAY, 8), 4)]
        [daily] = calculate(entries, make_snapshot(), day_range(MONDAY, TUESDAY))
        [weekly] = calculate(
            entries,
            make_snapshot(basis=OvertimeBasis.WEEKLY),
            day_range(MONDAY, TUESDAY),
        )
        self.assertEqual(daily.totals.overtime, 4)
        self.assertEqual(weekly.totals.overtime, 0)
        self.assertEqual(weekly.totals.regular, 16)


class EntryKindTests(unittest.TestCase):
    def test_breaks_never_become_overtime(self) -> None:
        entries = [
            make_entry(_at(MONDAY, 8), 8),
            make_entry(_at(MONDAY, 16), 1, type="BREAK"),
        ]
        [result] = calculate(entries, make_snapshot(), day_range(MONDAY))
        self.assertEqual(result.totals.total, 9)
        self.assertEqual(result.totals.regular, 9)
        self.assertEqual(result.totals.overtime, 0)
        self.assertEqual(result.totals.breaks, 1)
        self.assertEqual(result.totals.break_count, 1)

    def test_break_before_work_does_not_consume_capacity(self) -> None:
        entries = [
            make_entry(_at(MONDAY, 7), 1, type="BREAK"),
            make_entry(_at(MONDAY, 8), 8),
        ]
        [result] = calculate(entries, make_snapshot(), day_range(MONDAY))
        self.assertEqual(result.totals.overtime, 0)

    def test_time_off_entry_is_excluded_from_worked_time(self) -> None:
        entries = [make_entry(_at(MONDAY, 9), 8, type="TIME_OFF")]
        [result] = calculate(entries, make_snapshot(), day_range(MONDAY))
        self.assertEqual(result.totals.total, 0)
        self.assertEqual(result.totals.pto_hours, 8)
        self.assertEqual(result.totals.amount, 0)
        self.assertEqual(result.totals.time_off_count, 1)
        self.assertEqual(result.totals.time_off_hours, 8)
        self.assertTrue(result.days[MONDAY].meta.is_time_off)

    def test_work_on_holiday_is_overtime(self) -> None:
        snapshot = make_snapshot(holidays={"u1": {MONDAY: Holiday(name="Founders Day")}})
        [result] = calculate([make_entry(_at(MONDAY, 9), 3)], snapshot, day_range(MONDAY))
        self.assertEqual(result.totals.overtime, 3)
        self.assertEqual(result.totals.holiday_count, 1)
        self.assertEqual(result.totals.holiday_hours, 8)
        self.assertEqual(result.totals.expected_capacity, 0)
        self.assertIn("HOLIDAY", result.days[MONDAY].entries[0].analysis.tags)

    def test_non_billable_entries_carry_no_money(self) -> None:
        entries = [make_entry(_at(MONDAY, 6), 10, billable=False)]
        [result] = calculate(entries, make_snapshot(), day_range(MONDAY))
        self.assertEqual(result.totals.overtime, 2)
        self.assertEqual(result.totals.amount, 0)
        self.assertEqual(result.totals.ot_premium, 0)
        self.assertEqual(result.totals.non_billable_worked, 8)
        self.assertEqual(result.totals.non_billable_ot, 2)
        self.assertEqual(result.totals.billable_worked, 0)


class AggregationTests(unittest.TestCase):
    def _mixed_entries(self):
        return [
            make_entry(_at(MONDAY, 6), 7.3333, hourly_rate=3333),
            make_entry(_at(MONDAY, 14), 2.1111, billable=False),
            make_entry(_at(MONDAY, 17), 0.75, type="BREAK"),
            make_entry(_at(TUESDAY, 8), 9.99999, hourly_rate=None),
            make_entry(_at(WEDNESDAY, 8), 0),
        ]

    def test_conservation_and_billable_buckets(self) -> None:
        [result] = calculate(self._mixed_entries(), make_snapshot(), day_range(MONDAY, WEDNESDAY))
        totals = result.totals
        self.assertLessEqual(abs(totals.total - (totals.regular + totals.overtime)), 0.0002)
        buckets = totals.billable_worked + totals.billable_ot + totals.non_billable_worked + totals.non_billable_ot
        self.assertLessEqual(abs(totals.total - buckets), 0.0004)
        for day in result.days.values():
            self.assertLessEqual(abs(day.totals.total - (day.totals.regular + day.totals.overtime)), 0.0002)

    def test_values_are_non_negative(self) -> None:
        [result] = calculate(self._mixed_entries(), make_snapshot(), day_range(MONDAY, WEDNESDAY))
        for day in result.days.values():
            for item in day.entries:
                analysis = item.analysis
                for value in (
                    analysis.regular,
                    analysis.overtime,
                    analysis.tier1_hours,
                    analysis.tier2_hours,
                    analysis.total_amount,
                ):
                    self.assertGreaterEqual(value, 0)

    def test_calculation_is_deterministic(self) -> None:
        entries = self._mixed_entries()
        first = calculate(entries, make_snapshot(), day_range(MONDAY, WEDNESDAY))
        second = calculate(list(reversed(entries)), make_snapshot(), day_range(MONDAY, WEDNESDAY))
        self.assertEqual(first, second)

    def test_week_totals_follow_iso_weeks(self) -> None:
        sunday = date(2024, 3, 10)
        next_monday = date(2024, 3, 11)
        entries = [make_entry(_at(sunday, 9), 2), make_entry(_at(next_monday, 9), 3)]
        [result] = calculate(entries, make_snapshot(), day_range(sunday, next_monday))
        self.assertEqual(list(result.weeks), ["2024-W10", "2024-W11"])
        self.assertEqual(result.weeks["2024-W10"].total, 2)
        self.assertEqual(result.weeks["2024-W11"].total, 3)


class RosterTests(unittest.TestCase):
    def test_roster_user_without_entries_gets_zero_totals(self) -> None:
        snapshot = make_snapshot(
            users=(User(id="u1", name="Alice"), User(id="u2", name="Bob")),
            profiles={"u2": UserProfile(work_capacity_hours=6)},
        )
        results = calculate([make_entry(_at(MONDAY, 9), 1)], snapshot, day_range(MONDAY, TUESDAY))
        bob = next(result for result in results if result.user_id == "u2")
        self.assertEqual(bob.totals.total, 0)
        self.assertEqual(bob.totals.expected_capacity, 12)
        self.assertEqual(sorted(bob.days), [MONDAY, TUESDAY])

    def test_users_only_seen_in_entries_are_included(self) -> None:
        entries = [make_entry(_at(MONDAY, 9), 1, user_id="u9", user_name="Zed")]
        results = calculate(entries, make_snapshot(), day_range(MONDAY))
        self.assertEqual([result.user_id for result in results], ["u1", "u9"])

    def test_results_sorted_by_name(self) -> None:
        snapshot = make_snapshot(users=(User(id="b", name="Zoe"), User(id="a", name="Adam")))
        results = calculate([], snapshot, day_range(MONDAY))
        self.assertEqual([result.user_name for result in results], ["Adam", "Zoe"])


class RangeTests(unittest.TestCase):
    def test_no_entries_and_no_range_is_empty(self) -> None:
        self.assertEqual(calculate([], make_snapshot(), None), [])
        self.assertEqual(calculate(None, make_snapshot(), None), [])

    def test_range_derived_from_entries(self) -> None:
        entries = [make_entry(_at(MONDAY, 9), 1), make_entry(_at(WEDNESDAY, 9), 1)]
        [result] = calculate(entries, make_snapshot(), None)
        self.assertEqual(list(result.days), [MONDAY, TUESDAY, WEDNESDAY])

    def test_null_entries_are_ignored(self) -> None:
        [result] = calculate([None, make_entry(_at(MONDAY, 9), 2)], make_snapshot(), day_range(MONDAY))
        self.assertEqual(result.totals.total, 2)

    def test_out_of_range_entries_advance_weekly_accumulator(self) -> None:
        snapshot = make_snapshot(basis=OvertimeBasis.WEEKLY)
        entries = [make_entry(_at(MONDAY, 0), 20), make_entry(_at(WEDNESDAY, 0), 24)]
        [result] = calculate(entries, snapshot, day_range(WEDNESDAY, date(2024, 3, 8)))
        self.assertNotIn(MONDAY, result.days)
        self.assertEqual(result.totals.total, 24)
        self.assertEqual(result.totals.overtime, 4)


if __name__ == "__main__":
    unittest.main()
