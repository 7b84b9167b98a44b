from dataclasses import dataclass
from datetime import date, datetime, timedelta
from zoneinfo import ZoneInfo

from config import get_settings
from models import BillingCycle


CYCLE_MONTHS = {
    BillingCycle.monthly: 1,
    BillingCycle.quarterly: 3,
    BillingCycle.yearly: 12,
}


@dataclass(frozen=True)
class BillingPeriod:
    billing_date: date
    period_start: date
    period_end: date


def local_today() -> date:
    settings = get_settings()
    tz = ZoneInfo(settings.timezone)
    return datetime.now(tz).date()


def days_in_month(year: int, month: int) -> int:
    if month == 12:
        next_month = date(year + 1, 1, 1)
    else:
        next_month = date(year, month + 1, 1)
    return (next_month - date(year, month, 1)).days


def cycle_months(billing_cycle: BillingCycle) -> int:
    try:
        return CYCLE_MONTHS[BillingCycle(billing_cycle)]
    except (KeyError, ValueError) as exc:
        raise ValueError(f"Unsupported billing cycle: {billing_cycle}") from exc


def _add_months(base: date, months: int, *, desired_day: int) -> date:
    total_months = base.month - 1 + months
    year = base.year + total_months // 12
    month = total_months % 12 + 1
    return date(year, month, min(desired_day, days_in_month(year, month)))


def add_cycles(anchor: date, billing_cycle: BillingCycle, count: int = 1) -> date:
    """Move ``anchor`` forward by ``count`` billing cycles.

    The anchor's day of month is kept and clamped to the target month's
    length, so Jan 31 + 1 month is Feb 28/29 and Jan 31 + 2 months is Mar 31.
    """
    return _add_months(
        anchor, cycle_months(billing_cycle) * count, desired_day=anchor.day
    )


def compute_periods(
    start_date: date, cutoff_date: date, billing_cycle: BillingCycle
) -> list[BillingPeriod]:
    """Enumerate every billing period that has started on or before ``cutoff_date``.

    Anchors are always derived from ``start_date`` (start + n cycles) so month-end
    clamping never drifts. Each period ends the day before the next anchor.
    Returns an empty list when the subscription starts after the cutoff.
    """
    months = cycle_months(billing_cycle)
    periods: list[BillingPeriod] = []
    if start_date > cutoff_date:
        return periods

    index = 0
    anchor = start_date
    while anchor <= cutoff_date:
        next_anchor = _add_months(
            start_date, months * (index + 1), desired_day=start_date.day
        )
        periods.append(
            BillingPeriod(
                billing_date=anchor,
                period_start=anchor,
                period_end=next_anchor - timedelta(days=1),
            )
        )
        index += 1
        anchor = next_anchor
    return periods


def next_billing_date_after(
    start_date: date, billing_cycle: BillingCycle, today: date
) -> date:
    """First billing anchor strictly after ``today``."""
    periods = compute_periods(start_date, today, billing_cycle)
    if not periods:
        return start_date
    return periods[-1].period_end + timedelta(days=1)
