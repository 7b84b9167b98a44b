import logging
from datetime import date
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response
from sqlalchemy.orm import Session

from database import SessionLocal
from duplicates import DuplicateDetectionResult, format_conflicting_payments
from models import PaymentRecord, PaymentStatus, Subscription
from scheduler import SchedulerManager
from schemas import PaymentRecordIn, PaymentRecordUpdate, SubscriptionIn
from services import (
    AutoGenerateResult,
    PaymentHistoryService,
    PaymentRecordAddResult,
    PaymentRecordService,
    RenewalService,
    SubscriptionService,
)
from stores import SqlPaymentStore


logger = logging.getLogger(__name__)

app = FastAPI(title="Subscription Ledger")


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


scheduler_manager = SchedulerManager()


@app.on_event("startup")
def startup_event():
    scheduler_manager.start()


@app.on_event("shutdown")
def shutdown_event():
    scheduler_manager.stop()


def subscription_to_dict(subscription: Subscription) -> dict[str, object]:
    return {
        "id": subscription.id,
        "name": subscription.name,
        "plan": subscription.plan,
        "amount": subscription.amount,
        "currency": subscription.currency,
        "billing_cycle": subscription.billing_cycle.value,
        "start_date": subscription.start_date,
        "last_billing_date": subscription.last_billing_date,
        "next_billing_date": subscription.next_billing_date,
        "renewal_type": subscription.renewal_type.value,
        "status": subscription.status.value,
        "notes": subscription.notes,
    }


def payment_to_dict(record: PaymentRecord) -> dict[str, object]:
    return {
        "id": record.id,
        "subscription_id": record.subscription_id,
        "payment_date": record.payment_date,
        "amount": record.amount,
        "currency": record.currency,
        "billing_period_start": record.billing_period_start,
        "billing_period_end": record.billing_period_end,
        "status": PaymentStatus(record.status).value,
        "notes": record.notes,
        "created_at": record.created_at,
    }


def detection_to_dict(result: DuplicateDetectionResult) -> dict[str, object]:
    return {
        "is_duplicate": result.is_duplicate,
        "duplicate_type": result.duplicate_type.value if result.duplicate_type else None,
        "conflicting_payments": [
            payment_to_dict(record) for record in result.conflicting_payments
        ],
        "conflicts_summary": format_conflicting_payments(result.conflicting_payments),
        "severity": result.severity.value,
        "message": result.message,
        "suggestion": result.suggestion,
        "allow_force_add": result.allow_force_add,
    }


def add_result_response(result: PaymentRecordAddResult) -> Response:
    detection = result.duplicate_detection_result
    payload = {
        "success": result.success,
        "payment_record": (
            payment_to_dict(result.payment_record) if result.payment_record else None
        ),
        "duplicate_detection_result": (
            detection_to_dict(detection) if detection else None
        ),
        "last_billing_date_updated": result.last_billing_date_updated,
        "update_reason": result.update_reason,
        "error": result.error,
    }
    if result.success:
        status_code = 201
    elif detection is not None and detection.blocks_insert:
        status_code = 409
    else:
        status_code = 400
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


def auto_generate_response(result: AutoGenerateResult) -> Response:
    payload = {
        "success": result.success,
        "generated_count": result.generated_count,
        "payment_records": [payment_to_dict(r) for r in result.payment_records],
        "last_billing_date_updated": result.last_billing_date_updated,
        "new_last_billing_date": result.new_last_billing_date,
        "new_next_billing_date": result.new_next_billing_date,
        "error": result.error,
    }
    status_code = 200 if result.success else 400
    return JSONResponse(status_code=status_code, content=jsonable_encoder(payload))


@app.post("/api/subscriptions", status_code=201)
def api_create_subscription(data: SubscriptionIn, db: Session = Depends(get_db)):
    subscription = SubscriptionService(db).create(data)
    return subscription_to_dict(subscription)


@app.get("/api/subscriptions")
def api_list_subscriptions(db: Session = Depends(get_db)):
    return [subscription_to_dict(s) for s in SubscriptionService(db).list()]


@app.get("/api/subscriptions/{subscription_id}")
def api_get_subscription(subscription_id: str, db: Session = Depends(get_db)):
    try:
        subscription = SubscriptionService(db).get(subscription_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return subscription_to_dict(subscription)


@app.post("/api/subscriptions/{subscription_id}/auto-generate")
def api_auto_generate(subscription_id: str, db: Session = Depends(get_db)):
    subscriptions = SubscriptionService(db)
    try:
        subscription = subscriptions.get(subscription_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    service = PaymentRecordService(SqlPaymentStore(db))
    result = service.auto_generate_payment_records(
        subscription, subscriptions.update_billing_dates
    )
    return auto_generate_response(result)


@app.get("/api/subscriptions/{subscription_id}/payments")
def api_subscription_payments(
    subscription_id: str,
    status: Optional[PaymentStatus] = None,
    start: Optional[date] = None,
    end: Optional[date] = None,
    q: Optional[str] = None,
    db: Session = Depends(get_db),
):
    records = PaymentHistoryService(db).list(
        subscription_id=subscription_id, status=status, start=start, end=end, query=q
    )
    return [payment_to_dict(record) for record in records]


@app.post("/api/payments")
def api_add_payment(data: PaymentRecordIn, db: Session = Depends(get_db)):
    subscriptions = SubscriptionService(db)
    service = PaymentRecordService(SqlPaymentStore(db))
    result = service.add_payment_record(
        data, subscriptions.list(), subscriptions.update_billing_dates
    )
    return add_result_response(result)


@app.post("/api/payments/force")
def api_force_add_payment(data: PaymentRecordIn, db: Session = Depends(get_db)):
    subscriptions = SubscriptionService(db)
    service = PaymentRecordService(SqlPaymentStore(db))
    result = service.force_add_payment_record(
        data, subscriptions.list(), subscriptions.update_billing_dates
    )
    return add_result_response(result)


@app.post("/api/payments/check")
def api_check_payment(data: PaymentRecordIn, db: Session = Depends(get_db)):
    service = PaymentRecordService(SqlPaymentStore(db))
    return detection_to_dict(service.check_duplicate_payment(data))


@app.get("/api/payments/stats")
def api_payment_stats(
    subscription_id: Optional[str] = None, db: Session = Depends(get_db)
):
    return PaymentHistoryService(db).stats(subscription_id)


@app.patch("/api/payments/{record_id}")
def api_update_payment(
    record_id: str, data: PaymentRecordUpdate, db: Session = Depends(get_db)
):
    try:
        record = PaymentHistoryService(db).update(record_id, data)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return payment_to_dict(record)


@app.delete("/api/payments/{record_id}", status_code=204)
def api_delete_payment(record_id: str, db: Session = Depends(get_db)):
    try:
        PaymentHistoryService(db).delete(record_id)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@app.post("/api/renewals/run")
def api_run_renewals(limit: Optional[int] = None, db: Session = Depends(get_db)):
    summary = RenewalService(db).process_due_auto_renewals(limit=limit)
    logger.info(f"renewal_run: source=api processed={summary['processed']}")
    return summary
