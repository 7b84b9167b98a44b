import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import (
    CheckConstraint,
    Date,
    DateTime,
    Enum as SAEnum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from database import Base


class BillingCycle(str, Enum):
    monthly = "monthly"
    quarterly = "quarterly"
    yearly = "yearly"


class PaymentStatus(str, Enum):
    success = "success"
    failed = "failed"
    pending = "pending"


class RenewalType(str, Enum):
    auto = "auto"
    manual = "manual"


class SubscriptionStatus(str, Enum):
    active = "active"
    trial = "trial"
    cancelled = "cancelled"


def _new_id() -> str:
    return str(uuid.uuid4())


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )


class Subscription(Base, TimestampMixin):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[int] = mapped_column(nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    plan: Mapped[Optional[str]] = mapped_column(String(120))
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    billing_cycle: Mapped[BillingCycle] = mapped_column(
        SAEnum(BillingCycle), nullable=False
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    last_billing_date: Mapped[Optional[date]] = mapped_column(Date)
    next_billing_date: Mapped[Optional[date]] = mapped_column(Date)
    renewal_type: Mapped[RenewalType] = mapped_column(
        SAEnum(RenewalType), default=RenewalType.manual, nullable=False
    )
    status: Mapped[SubscriptionStatus] = mapped_column(
        SAEnum(SubscriptionStatus), default=SubscriptionStatus.active, nullable=False
    )
    notes: Mapped[Optional[str]] = mapped_column(Text)

    payment_records: Mapped[list["PaymentRecord"]] = relationship(
        "PaymentRecord", back_populates="subscription", cascade="all, delete-orphan"
    )

    __table_args__ = (
        CheckConstraint("amount >= 0", name="ck_subscription_amount_positive"),
        Index("ix_subscriptions_renewal_due", "renewal_type", "next_billing_date"),
    )


class PaymentRecord(Base, TimestampMixin):
    __tablename__ = "payment_records"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    subscription_id: Mapped[str] = mapped_column(
        ForeignKey("subscriptions.id"), nullable=False
    )
    payment_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    billing_period_start: Mapped[date] = mapped_column(Date, nullable=False)
    billing_period_end: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(SAEnum(PaymentStatus), nullable=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    subscription: Mapped["Subscription"] = relationship(
        "Subscription", back_populates="payment_records"
    )

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_amount_positive"),
        CheckConstraint(
            "billing_period_start <= billing_period_end",
            name="ck_payment_period_order",
        ),
        Index(
            "ix_payment_records_subscription_period",
            "subscription_id",
            "billing_period_start",
        ),
        Index("ix_payment_records_payment_date", "payment_date"),
    )
