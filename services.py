from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Any, Callable, Optional, Sequence

from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from billing_periods import compute_periods, local_today, next_billing_date_after
from billing_policy import AdvancePolicy, should_advance_last_billing_date
from config import get_settings
from duplicates import DuplicateDetectionResult, DuplicatePolicy, Severity, detect
from models import (
    PaymentRecord,
    PaymentStatus,
    RenewalType,
    Subscription,
    SubscriptionStatus,
)
from schemas import (
    PaymentRecordIn,
    PaymentRecordUpdate,
    SubscriptionBillingUpdate,
    SubscriptionIn,
)
from stores import PaymentStore, SqlPaymentStore


logger = logging.getLogger(__name__)

UpdateSubscriptionFn = Callable[[str, dict[str, Any]], None]

AUTO_GENERATED_NOTE = "Auto-generated payment record"
AUTO_RENEWAL_NOTE = "Auto-renewal payment record"


def get_current_user_id() -> int:
    return 1


class PaymentValidationError(ValueError):
    pass


class SubscriptionNotFound(ValueError):
    pass


@dataclass
class PaymentRecordAddResult:
    success: bool
    payment_record: Optional[PaymentRecord] = None
    duplicate_detection_result: Optional[DuplicateDetectionResult] = None
    last_billing_date_updated: bool = False
    update_reason: Optional[str] = None
    error: Optional[str] = None


@dataclass
class AutoGenerateResult:
    success: bool
    generated_count: int = 0
    payment_records: list[PaymentRecord] = field(default_factory=list)
    last_billing_date_updated: bool = False
    new_last_billing_date: Optional[date] = None
    new_next_billing_date: Optional[date] = None
    error: Optional[str] = None


def _validate_payment(params: PaymentRecordIn) -> None:
    if params.amount <= 0:
        raise PaymentValidationError("Payment amount must be positive")
    if params.billing_period_start > params.billing_period_end:
        raise PaymentValidationError(
            "Billing period start must be on or before billing period end"
        )


def _record_fields(params: PaymentRecordIn) -> dict[str, Any]:
    return params.model_dump(exclude={"skip_duplicate_check"})


class PaymentRecordService:
    """Adds payment records to a subscription's history.

    Every call gets its context (known subscriptions, the subscription update
    callback) passed in; the service itself holds only its collaborators.
    The payment record is the source of truth: once it is written, a failed
    update of the subscription's billing dates is logged and reported through
    ``last_billing_date_updated`` but never undoes the write.
    """

    def __init__(
        self,
        store: PaymentStore,
        duplicate_policy: Optional[DuplicatePolicy] = None,
        should_advance: AdvancePolicy = should_advance_last_billing_date,
    ) -> None:
        self.store = store
        self.duplicate_policy = duplicate_policy or DuplicatePolicy.from_settings()
        self.should_advance = should_advance

    def check_duplicate_payment(
        self, params: PaymentRecordIn
    ) -> DuplicateDetectionResult:
        existing = self.store.list_records_by_subscription(params.subscription_id)
        return detect(params, existing, self.duplicate_policy)

    def add_payment_record(
        self,
        params: PaymentRecordIn,
        subscriptions: Sequence[Subscription],
        update_subscription: UpdateSubscriptionFn,
    ) -> PaymentRecordAddResult:
        try:
            subscription = next(
                (sub for sub in subscriptions if sub.id == params.subscription_id),
                None,
            )
            if subscription is None:
                raise SubscriptionNotFound("Subscription does not exist")
            _validate_payment(params)

            detection: Optional[DuplicateDetectionResult] = None
            if not params.skip_duplicate_check:
                detection = self.check_duplicate_payment(params)
                if detection.blocks_insert:
                    logger.warning(
                        f"payment_blocked: subscription={params.subscription_id} "
                        f"type={detection.duplicate_type.value}"
                    )
                    return PaymentRecordAddResult(
                        success=False,
                        duplicate_detection_result=detection,
                        error=f"Duplicate payment detected: {detection.message}",
                    )

            record = self.store.create_record(_record_fields(params))
        except ValueError as exc:
            return PaymentRecordAddResult(success=False, error=str(exc))
        except Exception as exc:
            logger.exception(
                f"payment_add_failed: subscription={params.subscription_id}"
            )
            return PaymentRecordAddResult(
                success=False, error=f"Failed to add payment record: {exc}"
            )

        logger.info(
            f"payment_added: subscription={record.subscription_id} "
            f"record={record.id} period_start={record.billing_period_start}"
        )

        updated = False
        reason: Optional[str] = None
        try:
            decision = self.should_advance(
                params.payment_date,
                params.status,
                params.billing_period_start,
                params.billing_period_end,
                subscription.last_billing_date,
                subscription.billing_cycle,
            )
            reason = decision.reason
            if decision.should_update:
                update_subscription(
                    subscription.id,
                    {"last_billing_date": params.billing_period_start},
                )
                updated = True
        except Exception:
            logger.exception(
                f"last_billing_date_update_failed: subscription={subscription.id}"
            )

        return PaymentRecordAddResult(
            success=True,
            payment_record=record,
            duplicate_detection_result=detection,
            last_billing_date_updated=updated,
            update_reason=reason,
        )

    def force_add_payment_record(
        self,
        params: PaymentRecordIn,
        subscriptions: Sequence[Subscription],
        update_subscription: UpdateSubscriptionFn,
    ) -> PaymentRecordAddResult:
        forced = params.model_copy(update={"skip_duplicate_check": True})
        return self.add_payment_record(forced, subscriptions, update_subscription)

    def auto_generate_payment_records(
        self,
        subscription: Subscription,
        update_subscription: UpdateSubscriptionFn,
        today: Optional[date] = None,
    ) -> AutoGenerateResult:
        """Backfill one successful payment per elapsed billing period.

        No duplicate detection runs here: this fills an empty history. Calling
        it for a subscription that already has records for these periods
        creates a second successful record per period, so callers must check
        the history first.
        """
        today = today or local_today()
        if subscription.start_date > today:
            return AutoGenerateResult(
                success=False,
                error="Subscription start date must be on or before the current date",
            )

        records: list[PaymentRecord] = []
        try:
            periods = compute_periods(
                subscription.start_date, today, subscription.billing_cycle
            )
            for period in periods:
                records.append(
                    self.store.create_record(
                        {
                            "subscription_id": subscription.id,
                            "payment_date": period.billing_date,
                            "amount": Decimal(subscription.amount),
                            "currency": subscription.currency,
                            "billing_period_start": period.period_start,
                            "billing_period_end": period.period_end,
                            "status": PaymentStatus.success,
                            "notes": AUTO_GENERATED_NOTE,
                        }
                    )
                )
        except Exception as exc:
            logger.exception(f"auto_generate_failed: subscription={subscription.id}")
            return AutoGenerateResult(
                success=False,
                generated_count=len(records),
                payment_records=records,
                error=f"Failed to auto-generate payment records: {exc}",
            )

        if not periods:
            return AutoGenerateResult(success=True)

        new_last = periods[-1].period_start
        new_next = periods[-1].period_end + timedelta(days=1)
        updated = False
        try:
            update_subscription(
                subscription.id,
                {"last_billing_date": new_last, "next_billing_date": new_next},
            )
            updated = True
        except Exception:
            logger.exception(
                f"billing_dates_update_failed: subscription={subscription.id}"
            )

        logger.info(
            f"auto_generate: subscription={subscription.id} generated={len(records)} "
            f"last_billing_date={new_last} next_billing_date={new_next}"
        )
        return AutoGenerateResult(
            success=True,
            generated_count=len(records),
            payment_records=records,
            last_billing_date_updated=updated,
            new_last_billing_date=new_last,
            new_next_billing_date=new_next,
        )


class SubscriptionService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def get(self, subscription_id: str) -> Subscription:
        subscription = self.session.get(Subscription, subscription_id)
        if not subscription or subscription.user_id != self.user_id:
            raise SubscriptionNotFound("Subscription not found")
        return subscription

    def list(self) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .where(Subscription.user_id == self.user_id)
            .order_by(Subscription.name)
        )
        return self.session.scalars(stmt).all()

    def create(self, data: SubscriptionIn, today: Optional[date] = None) -> Subscription:
        today = today or local_today()
        values = data.model_dump()
        if values["next_billing_date"] is None:
            values["next_billing_date"] = next_billing_date_after(
                data.start_date, data.billing_cycle, today
            )
        subscription = Subscription(user_id=self.user_id, **values)
        self.session.add(subscription)
        self.session.commit()
        self.session.refresh(subscription)
        return subscription

    def update_billing_dates(self, subscription_id: str, fields: dict[str, Any]) -> None:
        subscription = self.get(subscription_id)
        data = SubscriptionBillingUpdate(**fields)
        changes = data.model_dump(exclude_unset=True)
        new_last = changes.get("last_billing_date")
        if (
            new_last is not None
            and subscription.last_billing_date is not None
            and new_last < subscription.last_billing_date
        ):
            raise ValueError("Last billing date cannot move backwards")
        SqlPaymentStore(self.session).update_subscription(subscription.id, changes)


class PaymentHistoryService:
    def __init__(self, session: Session, user_id: Optional[int] = None) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()

    def _base_query(self):
        return (
            select(PaymentRecord)
            .join(Subscription, PaymentRecord.subscription_id == Subscription.id)
            .where(Subscription.user_id == self.user_id)
        )

    def get(self, record_id: str) -> PaymentRecord:
        record = self.session.scalar(
            self._base_query().where(PaymentRecord.id == record_id)
        )
        if not record:
            raise ValueError("Payment record not found")
        return record

    def list(
        self,
        subscription_id: Optional[str] = None,
        status: Optional[PaymentStatus] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        query: Optional[str] = None,
    ) -> list[PaymentRecord]:
        stmt = self._base_query()
        if subscription_id:
            stmt = stmt.where(PaymentRecord.subscription_id == subscription_id)
        if status:
            stmt = stmt.where(PaymentRecord.status == status)
        if start:
            stmt = stmt.where(PaymentRecord.payment_date >= start)
        if end:
            stmt = stmt.where(PaymentRecord.payment_date <= end)
        if query:
            like = f"%{query.strip()}%"
            stmt = stmt.where(
                or_(PaymentRecord.notes.ilike(like), Subscription.name.ilike(like))
            )
        stmt = stmt.order_by(
            PaymentRecord.payment_date.desc(), PaymentRecord.created_at.desc()
        )
        return self.session.scalars(stmt).all()

    def update(self, record_id: str, data: PaymentRecordUpdate) -> PaymentRecord:
        record = self.get(record_id)
        for name, value in data.model_dump(exclude_unset=True).items():
            setattr(record, name, value)
        self.session.commit()
        self.session.refresh(record)
        return record

    def delete(self, record_id: str) -> None:
        record = self.get(record_id)
        self.session.delete(record)
        self.session.commit()

    def stats(self, subscription_id: Optional[str] = None) -> dict[str, object]:
        records = self.list(subscription_id=subscription_id)
        counts = {status: 0 for status in PaymentStatus}
        totals: dict[str, Decimal] = {}
        last_payment: Optional[date] = None

        for record in records:
            counts[PaymentStatus(record.status)] += 1
            if record.status == PaymentStatus.success:
                totals[record.currency] = totals.get(
                    record.currency, Decimal("0")
                ) + Decimal(record.amount)
            if last_payment is None or record.payment_date > last_payment:
                last_payment = record.payment_date

        successful = counts[PaymentStatus.success]
        average = None
        # Amounts in different currencies are not comparable without conversion.
        if successful and len(totals) == 1:
            (total,) = totals.values()
            average = (total / successful).quantize(Decimal("0.01"))

        return {
            "total_payments": len(records),
            "successful_payments": successful,
            "failed_payments": counts[PaymentStatus.failed],
            "pending_payments": counts[PaymentStatus.pending],
            "total_by_currency": {
                code: amount.quantize(Decimal("0.01"))
                for code, amount in sorted(totals.items())
            },
            "average_amount": average,
            "last_payment_date": last_payment,
        }


class RenewalService:
    """Records the due period of every auto-renewing subscription."""

    max_periods_per_subscription = 365

    def __init__(
        self,
        session: Session,
        user_id: Optional[int] = None,
        duplicate_policy: Optional[DuplicatePolicy] = None,
    ) -> None:
        self.session = session
        self.user_id = user_id or get_current_user_id()
        self.subscriptions = SubscriptionService(session, self.user_id)
        self.payments = PaymentRecordService(
            SqlPaymentStore(session), duplicate_policy
        )

    def due_subscriptions(self, today: date, limit: int) -> list[Subscription]:
        stmt = (
            select(Subscription)
            .where(
                Subscription.user_id == self.user_id,
                Subscription.renewal_type == RenewalType.auto,
                Subscription.status == SubscriptionStatus.active,
                Subscription.next_billing_date.is_not(None),
                Subscription.next_billing_date <= today,
            )
            .order_by(Subscription.next_billing_date)
            .limit(limit)
        )
        return self.session.scalars(stmt).all()

    def renew(self, subscription: Subscription, today: date) -> tuple[int, bool]:
        """Catch one subscription up to ``today``; returns (renewals, skipped).

        Any high-severity duplicate stops the catch-up, whatever the
        force-add policy says.
        """
        renewals = 0
        while (
            subscription.next_billing_date <= today
            and renewals < self.max_periods_per_subscription
        ):
            period_start = subscription.next_billing_date
            next_anchor = next_billing_date_after(
                subscription.start_date, subscription.billing_cycle, period_start
            )
            params = PaymentRecordIn(
                subscription_id=subscription.id,
                payment_date=period_start,
                amount=subscription.amount,
                currency=subscription.currency,
                billing_period_start=period_start,
                billing_period_end=next_anchor - timedelta(days=1),
                status=PaymentStatus.success,
                notes=AUTO_RENEWAL_NOTE,
            )
            detection = self.payments.check_duplicate_payment(params)
            if detection.is_duplicate and detection.severity == Severity.high:
                return renewals, True
            result = self.payments.add_payment_record(
                params, [subscription], self.subscriptions.update_billing_dates
            )
            if not result.success:
                raise RuntimeError(result.error)
            self.subscriptions.update_billing_dates(
                subscription.id, {"next_billing_date": next_anchor}
            )
            renewals += 1
        return renewals, False

    def process_due_auto_renewals(
        self, limit: Optional[int] = None, today: Optional[date] = None
    ) -> dict[str, int]:
        today = today or local_today()
        limit = limit or get_settings().renewal_batch_limit
        processed = errors = skipped = 0

        for subscription in self.due_subscriptions(today, limit):
            try:
                renewals, duplicate = self.renew(subscription, today)
            except Exception:
                self.session.rollback()
                errors += 1
                logger.exception(f"auto_renew_failed: subscription={subscription.id}")
                continue
            if renewals:
                processed += 1
            if duplicate:
                skipped += 1
                logger.warning(
                    f"auto_renew_skipped: subscription={subscription.id} "
                    "reason=duplicate_payment"
                )

        logger.info(
            f"auto_renew: processed={processed} errors={errors} skipped={skipped}"
        )
        return {"processed": processed, "errors": errors, "skipped": skipped}
