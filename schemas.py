from datetime import date
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from models import BillingCycle, PaymentStatus, RenewalType, SubscriptionStatus


def _normalize_currency(value: str) -> str:
    code = value.strip().upper()
    if len(code) != 3 or not code.isalpha():
        raise ValueError("Currency must be a three-letter ISO code")
    return code


class PaymentRecordIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subscription_id: str = Field(..., min_length=1)
    payment_date: date
    amount: Decimal = Field(..., gt=0, max_digits=12, decimal_places=2)
    currency: str
    billing_period_start: date
    billing_period_end: date
    status: PaymentStatus = PaymentStatus.success
    notes: Optional[str] = Field(default=None, max_length=500)
    skip_duplicate_check: bool = False

    @field_validator("currency")
    @classmethod
    def _currency_code(cls, value: str) -> str:
        return _normalize_currency(value)


class PaymentRecordUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    status: Optional[PaymentStatus] = None
    notes: Optional[str] = Field(default=None, max_length=500)

    @field_validator("status")
    @classmethod
    def _status_present(cls, value: Optional[PaymentStatus]) -> PaymentStatus:
        if value is None:
            raise ValueError("Status cannot be null")
        return value


class SubscriptionIn(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    plan: Optional[str] = Field(default=None, max_length=120)
    amount: Decimal = Field(..., ge=0, max_digits=12, decimal_places=2)
    currency: str
    billing_cycle: BillingCycle
    start_date: date
    last_billing_date: Optional[date] = None
    next_billing_date: Optional[date] = None
    renewal_type: RenewalType = RenewalType.manual
    status: SubscriptionStatus = SubscriptionStatus.active
    notes: Optional[str] = None

    @field_validator("currency")
    @classmethod
    def _currency_code(cls, value: str) -> str:
        return _normalize_currency(value)


class SubscriptionBillingUpdate(BaseModel):
    model_config = ConfigDict(extra="forbid")

    last_billing_date: Optional[date] = None
    next_billing_date: Optional[date] = None
