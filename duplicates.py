"""Duplicate payment detection.

``detect`` runs a fixed, ordered battery of heuristics over the payment
history of one subscription and reports the first one that matches. The
order is the priority: a same-period double charge is surfaced before a
merely similar amount, even when both apply.

Every function here is pure; nothing reads from or writes to a store.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from decimal import Decimal
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol, Sequence

from config import get_settings
from models import PaymentStatus


AMOUNT_TOLERANCE = Decimal("0.01")


class DuplicateType(str, Enum):
    same_billing_period = "same_billing_period"
    same_date_amount = "same_date_amount"
    short_time_interval = "short_time_interval"
    overlapping_billing_period = "overlapping_billing_period"
    similar_amount = "similar_amount"


class Severity(str, Enum):
    low = "low"
    medium = "medium"
    high = "high"


class PaymentLike(Protocol):
    subscription_id: str
    payment_date: date
    amount: Decimal
    currency: str
    billing_period_start: date
    billing_period_end: date
    status: PaymentStatus


@dataclass(frozen=True)
class DuplicatePolicy:
    time_threshold_minutes: int = 30
    amount_similarity: float = 0.95
    allow_force_add: bool = True

    @classmethod
    def from_settings(cls) -> "DuplicatePolicy":
        settings = get_settings()
        return cls(
            time_threshold_minutes=settings.duplicate_time_threshold_minutes,
            amount_similarity=settings.duplicate_amount_similarity,
            allow_force_add=settings.duplicate_allow_force_add,
        )


@dataclass(frozen=True)
class DuplicateDetectionResult:
    is_duplicate: bool
    duplicate_type: Optional[DuplicateType]
    conflicting_payments: tuple
    severity: Severity
    message: str
    suggestion: str
    allow_force_add: bool

    @property
    def blocks_insert(self) -> bool:
        return (
            self.is_duplicate
            and self.severity == Severity.high
            and not self.allow_force_add
        )


NO_DUPLICATE = DuplicateDetectionResult(
    is_duplicate=False,
    duplicate_type=None,
    conflicting_payments=(),
    severity=Severity.low,
    message="No duplicate payment detected",
    suggestion="You can safely add this payment record",
    allow_force_add=True,
)


def _as_datetime(value: date) -> datetime:
    # Plain dates carry no time of day and compare as midnight.
    if isinstance(value, datetime):
        return value
    return datetime.combine(value, time.min)


def _same_amount(a: Decimal, b: Decimal) -> bool:
    return abs(Decimal(a) - Decimal(b)) < AMOUNT_TOLERANCE


def same_billing_period(
    candidate: PaymentLike, existing: PaymentLike, policy: DuplicatePolicy
) -> bool:
    return (
        existing.billing_period_start == candidate.billing_period_start
        and existing.billing_period_end == candidate.billing_period_end
        and existing.status == PaymentStatus.success
        and candidate.status == PaymentStatus.success
    )


def same_date_and_amount(
    candidate: PaymentLike, existing: PaymentLike, policy: DuplicatePolicy
) -> bool:
    return existing.payment_date == candidate.payment_date and _same_amount(
        existing.amount, candidate.amount
    )


def short_time_interval(
    candidate: PaymentLike, existing: PaymentLike, policy: DuplicatePolicy
) -> bool:
    delta = abs(
        _as_datetime(candidate.payment_date) - _as_datetime(existing.payment_date)
    )
    return delta.total_seconds() / 60 <= policy.time_threshold_minutes


def overlapping_billing_period(
    candidate: PaymentLike, existing: PaymentLike, policy: DuplicatePolicy
) -> bool:
    identical = (
        candidate.billing_period_start == existing.billing_period_start
        and candidate.billing_period_end == existing.billing_period_end
    )
    intersects = (
        candidate.billing_period_start <= existing.billing_period_end
        and candidate.billing_period_end >= existing.billing_period_start
    )
    return intersects and not identical


def similar_amount(
    candidate: PaymentLike, existing: PaymentLike, policy: DuplicatePolicy
) -> bool:
    a = Decimal(candidate.amount)
    b = Decimal(existing.amount)
    larger = max(a, b)
    if larger <= 0:
        return False
    ratio = min(a, b) / larger
    return (
        ratio >= Decimal(str(policy.amount_similarity))
        and abs(a - b) > AMOUNT_TOLERANCE
    )


@dataclass(frozen=True)
class Heuristic:
    duplicate_type: DuplicateType
    severity: Severity
    matches: Callable[[PaymentLike, PaymentLike, DuplicatePolicy], bool]
    message: str
    suggestion: str


HEURISTICS: tuple[Heuristic, ...] = (
    Heuristic(
        DuplicateType.same_billing_period,
        Severity.high,
        same_billing_period,
        "Detected {count} successful payment record(s) in the same billing period",
        "A billing period normally has a single successful payment. "
        "Please verify this is not a duplicate.",
    ),
    Heuristic(
        DuplicateType.same_date_amount,
        Severity.high,
        same_date_and_amount,
        "Detected {count} payment record(s) with the same date and amount",
        "Payments with the same date and amount may be a repeated entry, "
        "please verify carefully",
    ),
    Heuristic(
        DuplicateType.short_time_interval,
        Severity.medium,
        short_time_interval,
        "Detected {count} payment record(s) within {threshold} minutes",
        "Payments recorded close together may be a repeated entry, "
        "please verify carefully",
    ),
    Heuristic(
        DuplicateType.overlapping_billing_period,
        Severity.medium,
        overlapping_billing_period,
        "Detected {count} payment record(s) with an overlapping billing period",
        "Overlapping billing periods may indicate a change of plan, "
        "please verify carefully",
    ),
    Heuristic(
        DuplicateType.similar_amount,
        Severity.low,
        similar_amount,
        "Detected {count} payment record(s) with a similar amount",
        "Payments with similar amounts may be a repeated entry, "
        "please verify carefully",
    ),
)


def detect(
    candidate: PaymentLike,
    existing_payments: Iterable[PaymentLike],
    policy: Optional[DuplicatePolicy] = None,
    heuristics: Sequence[Heuristic] = HEURISTICS,
) -> DuplicateDetectionResult:
    policy = policy or DuplicatePolicy.from_settings()
    relevant = [
        payment
        for payment in existing_payments
        if payment.subscription_id == candidate.subscription_id
    ]

    for heuristic in heuristics:
        conflicts = tuple(
            payment
            for payment in relevant
            if heuristic.matches(candidate, payment, policy)
        )
        if conflicts:
            return DuplicateDetectionResult(
                is_duplicate=True,
                duplicate_type=heuristic.duplicate_type,
                conflicting_payments=conflicts,
                severity=heuristic.severity,
                message=heuristic.message.format(
                    count=len(conflicts), threshold=policy.time_threshold_minutes
                ),
                suggestion=heuristic.suggestion,
                allow_force_add=policy.allow_force_add,
            )
    return NO_DUPLICATE


def format_conflicting_payments(payments: Iterable[PaymentLike]) -> str:
    lines = []
    for payment in payments:
        status = PaymentStatus(payment.status).value
        amount = Decimal(payment.amount).quantize(AMOUNT_TOLERANCE)
        lines.append(
            f"{payment.payment_date.isoformat()} - {amount} {payment.currency} ({status})"
        )
    return "\n".join(lines)
