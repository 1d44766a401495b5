"""Integration tests for API endpoints"""

from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from coop_credit.infrastructure.database.repositories import PaymentRequestRepository
from coop_credit.utils.date_utils import utcnow
from factories import make_member, make_product, make_settings, post_spent

CRON_AUTH = {"Authorization": "Bearer test-secret"}
SEND_EVENT = "coop_credit.infrastructure.clients.notifications.NotificationClient.send_event"


def test_health_endpoint(client: TestClient):
    """Test health check endpoint"""
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_metrics_endpoint(client: TestClient):
    """Test Prometheus metrics endpoint"""
    response = client.get("/metrics")
    assert response.status_code == 200
    assert "coop_credit_payments_total" in response.text


def test_request_id_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "req-123"})
    assert response.headers["X-Request-ID"] == "req-123"


@patch(SEND_EVENT, new_callable=AsyncMock)
def test_payment_endpoint_fifo(mock_send: AsyncMock, client: TestClient, db: Session):
    """Test POST /v1/members/{id}/payments allocates oldest first and notifies"""
    member = make_member(db)
    now = utcnow()
    older = post_spent(db, member.member_id, "50.00", timestamp=now - timedelta(days=2))
    newer = post_spent(db, member.member_id, "30.00", timestamp=now - timedelta(days=1))

    response = client.post(f"/v1/members/{member.member_id}/payments", json={"amount": "60.00"})

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert Decimal(data["applied"]) == Decimal("60.00")
    assert Decimal(data["new_balance"]) == Decimal("20.00")
    assert [(p["entry_id"], Decimal(p["amount"])) for p in data["applied_payments"]] == [
        (older.entry_id, Decimal("50.00")),
        (newer.entry_id, Decimal("10.00")),
    ]

    mock_send.assert_awaited_once()
    payload = mock_send.call_args.args[0]
    assert payload["event"] == "PAYMENT_APPLIED"
    assert payload["member_id"] == member.member_id


@patch(SEND_EVENT, new_callable=AsyncMock)
def test_full_payment_endpoint(mock_send: AsyncMock, client: TestClient, db: Session):
    member = make_member(db)
    post_spent(db, member.member_id, "123.45")

    response = client.post(f"/v1/members/{member.member_id}/payments", json={"full": True})

    assert response.status_code == 200
    assert Decimal(response.json()["new_balance"]) == Decimal("0")

    balance = client.get(f"/v1/members/{member.member_id}/balance").json()
    assert Decimal(balance["credit_balance"]) == Decimal("0")


def test_overpayment_returns_422(client: TestClient, db: Session):
    member = make_member(db)
    post_spent(db, member.member_id, "50.00")

    response = client.post(f"/v1/members/{member.member_id}/payments", json={"amount": "60.00"})

    assert response.status_code == 422
    assert "exceeds" in response.json()["detail"]


def test_payment_body_validation(client: TestClient, db: Session):
    member = make_member(db)

    assert client.post(f"/v1/members/{member.member_id}/payments", json={}).status_code == 422
    assert client.post(f"/v1/members/{member.member_id}/payments", json={"amount": "-1"}).status_code == 422
    assert client.post(f"/v1/members/{member.member_id}/payments", json={"amount": "1.005"}).status_code == 422


def test_unknown_member_returns_404(client: TestClient):
    assert client.get("/v1/members/999/balance").status_code == 404
    assert client.post("/v1/members/999/payments", json={"amount": "1.00"}).status_code == 404


def test_member_read_endpoints(client: TestClient, db: Session):
    member = make_member(db, credit_limit="500.00")
    client.post("/v1/credit-sales", json={"member_id": member.member_id, "amount": "100.00", "installments": 2})

    summary = client.get(f"/v1/members/{member.member_id}/credit-summary").json()
    schedule = client.get(f"/v1/members/{member.member_id}/schedule").json()
    unpaid = client.get(f"/v1/members/{member.member_id}/unpaid-items").json()
    synced = client.post(f"/v1/members/{member.member_id}/balance/sync").json()

    assert Decimal(summary["available_credit"]) == Decimal("400.00")
    assert Decimal(summary["utilization_percentage"]) == Decimal("20.00")
    assert [s["installment_number"] for s in schedule] == [2, 1]
    assert [Decimal(u["unpaid_amount"]) for u in unpaid] == [Decimal("50.00"), Decimal("50.00")]
    assert Decimal(synced["credit_balance"]) == Decimal("100.00")


def test_credit_sale_over_limit_returns_422(client: TestClient, db: Session):
    member = make_member(db, credit_limit="50.00")

    response = client.post("/v1/credit-sales", json={"member_id": member.member_id, "amount": "50.01"})

    assert response.status_code == 422


def test_interest_endpoints(client: TestClient, db: Session):
    make_settings(db, interest_rate=Decimal("1.00"), grace_period_days=0)
    member = make_member(db)
    post_spent(db, member.member_id, "200.00", timestamp=utcnow() - timedelta(days=5))

    preview = client.get(f"/v1/members/{member.member_id}/interest").json()
    applied = client.post(f"/v1/members/{member.member_id}/interest").json()
    again = client.post(f"/v1/members/{member.member_id}/interest").json()

    assert Decimal(preview["interest"]) == Decimal("2.00")
    assert preview["applied"] is False
    assert applied["applied"] is True
    assert again["applied"] is False


@patch(SEND_EVENT, new_callable=AsyncMock)
def test_payment_request_lifecycle(mock_send: AsyncMock, client: TestClient, db: Session):
    member = make_member(db)
    entry = post_spent(db, member.member_id, "80.00")

    created = client.post("/v1/payment-requests", json={"member_id": member.member_id, "amount": "30.00"})
    assert created.status_code == 201
    request_id = created.json()["payment_request_id"]
    assert created.json()["status"] == "pending"

    approved = client.post(f"/v1/payment-requests/{request_id}/approve")
    assert approved.status_code == 200
    assert Decimal(approved.json()["applied"]) == Decimal("30.00")

    allocations = client.get(f"/v1/payment-requests/{request_id}/allocations").json()
    assert [(a["credit_entry_id"], Decimal(a["allocated_amount"])) for a in allocations] == [
        (entry.entry_id, Decimal("30.00"))
    ]

    assert client.post(f"/v1/payment-requests/{request_id}/approve").status_code == 422
    assert client.post(f"/v1/payment-requests/{request_id}/reject", json={}).status_code == 422


@patch(SEND_EVENT, new_callable=AsyncMock)
def test_payment_request_partial_success_returns_207(mock_send: AsyncMock, client: TestClient, db: Session):
    member = make_member(db)
    post_spent(db, member.member_id, "80.00")
    request_id = client.post(
        "/v1/payment-requests", json={"member_id": member.member_id, "amount": "30.00"}
    ).json()["payment_request_id"]

    with patch.object(PaymentRequestRepository, "mark_approved", return_value=0):
        response = client.post(f"/v1/payment-requests/{request_id}/approve")

    assert response.status_code == 207
    assert response.json()["partial_success"] is True

    # Already applied but still pending: must not be paid twice
    assert client.post(f"/v1/payment-requests/{request_id}/approve").status_code == 409


def test_reject_payment_request(client: TestClient, db: Session):
    member = make_member(db)
    request_id = client.post(
        "/v1/payment-requests", json={"member_id": member.member_id, "amount": "10.00"}
    ).json()["payment_request_id"]

    response = client.post(f"/v1/payment-requests/{request_id}/reject", json={"notes": "wrong amount"})

    assert response.status_code == 200
    assert response.json()["status"] == "rejected"
    assert response.json()["notes"] == "wrong amount"


def test_credit_settings_roundtrip(client: TestClient):
    initial = client.get("/v1/credit-settings")
    assert initial.status_code == 200

    updated = client.put(
        "/v1/credit-settings",
        json={"credit_penalty_type": "percentage", "credit_penalty_value": "2.5", "credit_due_days": 14},
    )

    assert updated.status_code == 200
    assert updated.json()["credit_penalty_type"] == "percentage"
    assert client.get("/v1/credit-settings").json()["credit_due_days"] == 14
    assert client.put("/v1/credit-settings", json={"credit_penalty_type": "daily"}).status_code == 422


def test_markup_endpoint(client: TestClient, db: Session):
    make_settings(db, default_markup_percentage=Decimal("5"))
    product = make_product(db, "oil", price="8.00", credit_markup_type="fixed", credit_markup_value=Decimal("0.25"))

    response = client.post(
        "/v1/markup",
        json={"items": [{"product_id": product.product_id, "quantity": "4", "price": "8.00"}]},
    )

    assert response.status_code == 200
    assert Decimal(response.json()["total_markup"]) == Decimal("1.00")
    assert Decimal(response.json()["grand_total"]) == Decimal("33.00")


def test_cron_requires_secret(client: TestClient):
    assert client.post("/v1/cron/penalty-sweep").status_code == 401
    assert client.post("/v1/cron/penalty-sweep", headers={"Authorization": "Bearer wrong"}).status_code == 401


@patch(SEND_EVENT, new_callable=AsyncMock)
def test_cron_sweep_applies_penalties(mock_send: AsyncMock, client: TestClient, db: Session):
    make_settings(db, credit_due_days=30, credit_penalty_type="fixed", credit_penalty_value=Decimal("15.00"))
    member = make_member(db)
    post_spent(db, member.member_id, "100.00", timestamp=utcnow() - timedelta(days=40))

    response = client.post("/v1/cron/penalty-sweep", headers=CRON_AUTH)

    assert response.status_code == 200
    data = response.json()
    assert data["skipped"] is False
    assert data["failed"] == 0
    assert [(e["kind"], Decimal(e["amount"])) for e in data["events"]] == [("product_penalty", Decimal("15.00"))]
    assert mock_send.await_args.args[0]["event"] == "PENALTY_APPLIED"

    balance = client.get(f"/v1/members/{member.member_id}/balance").json()
    assert Decimal(balance["credit_balance"]) == Decimal("115.00")


def test_single_credit_penalty_trigger(client: TestClient, db: Session):
    make_settings(db, credit_due_days=30, credit_penalty_type="fixed", credit_penalty_value=Decimal("15.00"))
    member = make_member(db)
    entry = post_spent(db, member.member_id, "100.00")

    not_due = client.post(f"/v1/credits/{entry.entry_id}/penalty", json={}, headers=CRON_AUTH).json()
    forced = client.post(f"/v1/credits/{entry.entry_id}/penalty", json={"force": True}, headers=CRON_AUTH).json()
    repeat = client.post(f"/v1/credits/{entry.entry_id}/penalty", json={"force": True}, headers=CRON_AUTH).json()

    assert not_due["applied"] is False
    assert forced["applied"] is True
    assert Decimal(forced["penalty"]["amount"]) == Decimal("15.00")
    assert repeat["applied"] is False


def test_nearing_penalty_endpoint(client: TestClient, db: Session):
    make_settings(db, credit_due_days=30, credit_penalty_type="fixed", credit_penalty_value=Decimal("15.00"))
    member = make_member(db)
    post_spent(db, member.member_id, "100.00", timestamp=utcnow() - timedelta(days=27))

    response = client.get("/v1/members/nearing-penalty", params={"days": 5})

    assert response.status_code == 200
    assert [m["member_id"] for m in response.json()] == [member.member_id]
