from dataclasses import dataclass
from datetime import date
from typing import Optional, Protocol

from billing_periods import local_today
from models import BillingCycle, PaymentStatus


# Accepted (end - start).days per cycle. The lower bounds allow an inclusive
# end date in a 28-day February; the upper bounds allow an end date equal to
# the next period's start.
CYCLE_LENGTH_DAYS = {
    BillingCycle.monthly: (27, 31),
    BillingCycle.quarterly: (88, 92),
    BillingCycle.yearly: (364, 366),
}


@dataclass(frozen=True)
class AdvanceDecision:
    should_update: bool
    reason: str
    is_historical_record: bool = False


class AdvancePolicy(Protocol):
    def __call__(
        self,
        payment_date: date,
        status: PaymentStatus,
        period_start: date,
        period_end: date,
        current_last_billing_date: Optional[date],
        billing_cycle: BillingCycle,
    ) -> AdvanceDecision: ...


def validate_billing_cycle(
    period_start: date, period_end: date, billing_cycle: BillingCycle
) -> bool:
    bounds = CYCLE_LENGTH_DAYS.get(BillingCycle(billing_cycle))
    if bounds is None:
        return False
    low, high = bounds
    return low <= (period_end - period_start).days <= high


def should_advance_last_billing_date(
    payment_date: date,
    status: PaymentStatus,
    period_start: date,
    period_end: date,
    current_last_billing_date: Optional[date],
    billing_cycle: BillingCycle,
    *,
    today: Optional[date] = None,
) -> AdvanceDecision:
    today = today or local_today()

    if PaymentStatus(status) != PaymentStatus.success:
        return AdvanceDecision(
            False, "Only successful payment records update the last billing date"
        )

    if payment_date > today:
        return AdvanceDecision(
            False, "Future payment records do not update the last billing date"
        )

    if current_last_billing_date and period_start <= current_last_billing_date:
        return AdvanceDecision(
            False,
            "Billing period starts on or before the current last billing date; "
            "recorded as a historical payment",
            is_historical_record=True,
        )

    if not validate_billing_cycle(period_start, period_end, billing_cycle):
        return AdvanceDecision(
            False,
            "Billing period length does not match the subscription billing cycle",
        )

    return AdvanceDecision(
        True, "Last billing date moved to the billing period start date"
    )
