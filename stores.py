from typing import Any, Protocol, Sequence

from sqlalchemy import select
from sqlalchemy.orm import Session

from models import PaymentRecord, Subscription


class PaymentStore(Protocol):
    """What the reconciliation services need from persistence."""

    def create_record(self, data: dict[str, Any]) -> PaymentRecord: ...

    def list_records_by_subscription(
        self, subscription_id: str
    ) -> Sequence[PaymentRecord]: ...

    def update_subscription(
        self, subscription_id: str, fields: dict[str, Any]
    ) -> None: ...


class SqlPaymentStore:
    def __init__(self, session: Session) -> None:
        self.session = session

    def _commit(self) -> None:
        try:
            self.session.commit()
        except Exception:
            self.session.rollback()
            raise

    def create_record(self, data: dict[str, Any]) -> PaymentRecord:
        record = PaymentRecord(**data)
        self.session.add(record)
        self._commit()
        self.session.refresh(record)
        return record

    def list_records_by_subscription(
        self, subscription_id: str
    ) -> Sequence[PaymentRecord]:
        stmt = (
            select(PaymentRecord)
            .where(PaymentRecord.subscription_id == subscription_id)
            .order_by(
                PaymentRecord.payment_date.desc(), PaymentRecord.created_at.desc()
            )
        )
        return self.session.scalars(stmt).all()

    def update_subscription(
        self, subscription_id: str, fields: dict[str, Any]
    ) -> None:
        subscription = self.session.get(Subscription, subscription_id)
        if not subscription:
            raise ValueError("Subscription not found")
        for name, value in fields.items():
            if not hasattr(subscription, name):
                raise ValueError(f"Unknown subscription field: {name}")
            setattr(subscription, name, value)
        self._commit()
