from datetime import date, timedelta

import pytest

from billing_periods import (
    BillingPeriod,
    add_cycles,
    compute_periods,
    next_billing_date_after,
)
from models import BillingCycle


def test_monthly_periods_up_to_mid_month_cutoff():
    periods = compute_periods(date(2024, 1, 1), date(2024, 4, 15), BillingCycle.monthly)
    assert [p.period_start for p in periods] == [
        date(2024, 1, 1),
        date(2024, 2, 1),
        date(2024, 3, 1),
        date(2024, 4, 1),
    ]
    assert periods[0].period_end == date(2024, 1, 31)
    assert periods[1].period_end == date(2024, 2, 29)
    assert periods[-1].period_end == date(2024, 4, 30)
    assert all(p.billing_date == p.period_start for p in periods)


def test_periods_are_contiguous_and_non_overlapping():
    starts = [date(2023, 1, 31), date(2024, 2, 29), date(2023, 8, 15), date(2022, 12, 1)]
    for cycle in BillingCycle:
        for start in starts:
            periods = compute_periods(start, date(2026, 6, 30), cycle)
            assert periods
            for current, following in zip(periods, periods[1:]):
                assert current.period_start <= current.period_end
                assert current.period_end + timedelta(days=1) == following.period_start


def test_start_after_cutoff_returns_empty_list():
    assert compute_periods(date(2024, 5, 2), date(2024, 5, 1), BillingCycle.monthly) == []


def test_start_equal_to_cutoff_yields_single_period():
    periods = compute_periods(date(2024, 5, 1), date(2024, 5, 1), BillingCycle.yearly)
    assert periods == [
        BillingPeriod(
            billing_date=date(2024, 5, 1),
            period_start=date(2024, 5, 1),
            period_end=date(2025, 4, 30),
        )
    ]


def test_month_end_start_clamps_to_last_day_of_february():
    periods = compute_periods(date(2024, 1, 31), date(2024, 3, 1), BillingCycle.monthly)
    assert [(p.period_start, p.period_end) for p in periods] == [
        (date(2024, 1, 31), date(2024, 2, 28)),
        (date(2024, 2, 29), date(2024, 3, 30)),
    ]


def test_month_end_anchor_does_not_drift_after_short_month():
    periods = compute_periods(date(2023, 1, 31), date(2023, 5, 1), BillingCycle.monthly)
    assert [p.period_start for p in periods] == [
        date(2023, 1, 31),
        date(2023, 2, 28),
        date(2023, 3, 31),
        date(2023, 4, 30),
    ]


def test_quarterly_periods():
    periods = compute_periods(
        date(2023, 11, 30), date(2024, 6, 1), BillingCycle.quarterly
    )
    assert [p.period_start for p in periods] == [
        date(2023, 11, 30),
        date(2024, 2, 29),
        date(2024, 5, 30),
    ]
    assert periods[0].period_end == date(2024, 2, 28)


def test_yearly_periods_from_leap_day():
    periods = compute_periods(date(2020, 2, 29), date(2023, 3, 1), BillingCycle.yearly)
    assert [p.period_start for p in periods] == [
        date(2020, 2, 29),
        date(2021, 2, 28),
        date(2022, 2, 28),
        date(2023, 2, 28),
    ]
    assert periods[-1].period_end == date(2024, 2, 28)


def test_unknown_billing_cycle_is_rejected():
    with pytest.raises(ValueError):
        compute_periods(date(2024, 1, 1), date(2024, 2, 1), "weekly")


def test_add_cycles_clamps_month_end():
    assert add_cycles(date(2024, 1, 31), BillingCycle.monthly) == date(2024, 2, 29)
    assert add_cycles(date(2024, 1, 31), BillingCycle.monthly, 2) == date(2024, 3, 31)
    assert add_cycles(date(2024, 11, 15), BillingCycle.quarterly) == date(2025, 2, 15)


def test_next_billing_date_after():
    assert next_billing_date_after(
        date(2024, 1, 1), BillingCycle.monthly, date(2024, 4, 15)
    ) == date(2024, 5, 1)
    assert next_billing_date_after(
        date(2024, 1, 1), BillingCycle.monthly, date(2024, 4, 1)
    ) == date(2024, 5, 1)
    # Not started yet: the first billing date is the start date itself.
    assert next_billing_date_after(
        date(2024, 6, 1), BillingCycle.yearly, date(2024, 4, 1)
    ) == date(2024, 6, 1)
