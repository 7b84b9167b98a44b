from datetime import date

from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from billing_periods import local_today
from database import Base
from main import app, get_db


def make_client():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSession = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)

    def override_get_db():
        db = TestingSession()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    return TestClient(app)


def create_subscription(client, **overrides):
    payload = {
        "name": "Music",
        "amount": "9.99",
        "currency": "eur",
        "billing_cycle": "monthly",
        "start_date": "2024-01-01",
    }
    payload.update(overrides)
    response = client.post("/api/subscriptions", json=payload)
    assert response.status_code == 201
    return response.json()


def payment_payload(subscription_id, **overrides):
    payload = {
        "subscription_id": subscription_id,
        "payment_date": "2024-01-01",
        "amount": "9.99",
        "currency": "EUR",
        "billing_period_start": "2024-01-01",
        "billing_period_end": "2024-01-31",
    }
    payload.update(overrides)
    return payload


def teardown_function():
    app.dependency_overrides.clear()


def test_create_and_fetch_subscription():
    client = make_client()
    created = create_subscription(client)

    assert created["currency"] == "EUR"
    assert created["billing_cycle"] == "monthly"
    assert created["next_billing_date"] is not None

    fetched = client.get(f"/api/subscriptions/{created['id']}")
    assert fetched.status_code == 200
    assert fetched.json()["name"] == "Music"
    assert client.get("/api/subscriptions/nope").status_code == 404


def test_add_payment_then_duplicate_is_reported():
    client = make_client()
    sub = create_subscription(client)

    first = client.post("/api/payments", json=payment_payload(sub["id"]))
    assert first.status_code == 201
    body = first.json()
    assert body["success"] is True
    assert body["last_billing_date_updated"] is True
    assert body["duplicate_detection_result"]["is_duplicate"] is False

    second = client.post("/api/payments", json=payment_payload(sub["id"]))
    assert second.status_code == 201
    detection = second.json()["duplicate_detection_result"]
    assert detection["is_duplicate"] is True
    assert detection["duplicate_type"] == "same_billing_period"
    assert detection["severity"] == "high"
    assert detection["conflicts_summary"] == "2024-01-01 - 9.99 EUR (success)"

    fetched = client.get(f"/api/subscriptions/{sub['id']}").json()
    assert fetched["last_billing_date"] == "2024-01-01"


def test_add_payment_for_unknown_subscription_is_rejected():
    client = make_client()
    create_subscription(client)

    response = client.post("/api/payments", json=payment_payload("missing"))

    assert response.status_code == 400
    assert response.json()["error"] == "Subscription does not exist"


def test_invalid_payment_body_is_rejected():
    client = make_client()
    sub = create_subscription(client)

    response = client.post(
        "/api/payments", json=payment_payload(sub["id"], amount="-1.00")
    )

    assert response.status_code == 422


def test_check_endpoint_does_not_write():
    client = make_client()
    sub = create_subscription(client)
    client.post("/api/payments", json=payment_payload(sub["id"]))

    response = client.post(
        "/api/payments/check", json=payment_payload(sub["id"], amount="9.50")
    )

    assert response.status_code == 200
    assert response.json()["is_duplicate"] is True
    payments = client.get(f"/api/subscriptions/{sub['id']}/payments").json()
    assert len(payments) == 1


def test_force_add_skips_detection():
    client = make_client()
    sub = create_subscription(client)
    client.post("/api/payments", json=payment_payload(sub["id"]))

    response = client.post("/api/payments/force", json=payment_payload(sub["id"]))

    assert response.status_code == 201
    assert response.json()["duplicate_detection_result"] is None


def test_auto_generate_from_today():
    client = make_client()
    today = local_today()
    sub = create_subscription(client, start_date=today.isoformat())

    response = client.post(f"/api/subscriptions/{sub['id']}/auto-generate")

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["generated_count"] == 1
    assert body["new_last_billing_date"] == today.isoformat()


def test_auto_generate_unknown_subscription():
    client = make_client()

    response = client.post("/api/subscriptions/missing/auto-generate")

    assert response.status_code == 404


def test_update_delete_and_stats():
    client = make_client()
    sub = create_subscription(client)
    first = client.post("/api/payments", json=payment_payload(sub["id"])).json()
    client.post(
        "/api/payments",
        json=payment_payload(
            sub["id"],
            payment_date="2024-02-01",
            billing_period_start="2024-02-01",
            billing_period_end="2024-02-29",
        ),
    )
    record_id = first["payment_record"]["id"]

    patched = client.patch(
        f"/api/payments/{record_id}", json={"status": "failed", "notes": "bounced"}
    )
    assert patched.status_code == 200
    assert patched.json()["status"] == "failed"

    stats = client.get("/api/payments/stats").json()
    assert stats["total_payments"] == 2
    assert stats["successful_payments"] == 1
    assert stats["failed_payments"] == 1
    assert stats["last_payment_date"] == "2024-02-01"

    failed = client.get(
        f"/api/subscriptions/{sub['id']}/payments", params={"status": "failed"}
    ).json()
    assert [p["id"] for p in failed] == [record_id]

    assert client.delete(f"/api/payments/{record_id}").status_code == 204
    assert client.delete(f"/api/payments/{record_id}").status_code == 404
    assert client.get("/api/payments/stats").json()["total_payments"] == 1


def test_run_renewals_endpoint():
    client = make_client()
    today = local_today()
    create_subscription(
        client,
        start_date=today.isoformat(),
        next_billing_date=today.isoformat(),
        renewal_type="auto",
    )

    response = client.post("/api/renewals/run")

    assert response.status_code == 200
    assert response.json() == {"processed": 1, "errors": 0, "skipped": 0}


def test_patch_rejects_null_status():
    client = make_client()
    sub = create_subscription(client)
    created = client.post("/api/payments", json=payment_payload(sub["id"])).json()
    record_id = created["payment_record"]["id"]

    response = client.patch(f"/api/payments/{record_id}", json={"status": None})

    assert response.status_code == 422
    payments = client.get(f"/api/subscriptions/{sub['id']}/payments").json()
    assert payments[0]["status"] == "success"

    cleared = client.patch(f"/api/payments/{record_id}", json={"notes": None})
    assert cleared.status_code == 200
    assert cleared.json()["notes"] is None
