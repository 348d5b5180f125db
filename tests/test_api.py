import pytest
from fastapi.testclient import TestClient

import db
import main
from tracking import InMemoryTrackingStore


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(main.LEDGER, "store", InMemoryTrackingStore())
    return TestClient(main.app)


def track(client, order_id, status, minute, kind="Restaurant"):
    return client.post(
        f"/orders/{order_id}/tracking",
        json={
            "status": status,
            "updated_by": {"kind": kind, "id": "actor-1"},
            "timestamp": f"2024-03-05T12:{minute:02d}:00+00:00",
        },
    )


def test_root(client):
    assert client.get("/").status_code == 200


def test_tracking_flow(client):
    assert track(client, "o1", "placed", 0).status_code == 201
    assert track(client, "o1", "confirmed", 1).status_code == 201

    latest = client.get("/orders/o1/tracking/latest")
    assert latest.json()["status"] == "confirmed"

    history = client.get("/orders/o1/tracking").json()
    assert [e["status"] for e in history] == ["placed", "confirmed"]


def test_tracking_errors(client):
    assert client.get("/orders/nope/tracking/latest").status_code == 404
    track(client, "o1", "placed", 0)
    track(client, "o1", "delivered", 30)

    conflict = track(client, "o1", "placed", 31)
    assert conflict.status_code == 409
    assert conflict.json()["error"] == "invalid_transition"

    bad = track(client, "o2", "teleported", 0)
    assert bad.status_code == 400
    assert bad.json()["error"] == "validation_error"


def test_eta(client):
    body = client.get("/geo/eta", params={"from_lat": 10, "from_lon": 20, "to_lat": 11, "to_lon": 20}).json()
    assert 110 < body["distance_km"] < 112
    assert body["eta_minutes"] == 267


def test_subtotal(client):
    res = client.post(
        "/order-items/subtotal",
        json={
            "price": "10.00",
            "quantity": 2,
            "variations": [{"name": "Large", "price": "2.00"}],
            "addons": [{"name": "Cheese", "price": "1.50", "quantity": 2}],
        },
    )
    assert res.json() == {"subtotal": "30.00"}


def test_commission_and_payout(client):
    res = client.post(
        "/commissions",
        json={
            "order_id": "o1",
            "restaurant_id": "rest-1",
            "order_amount": 100,
            "commission_rate": 20,
            "delivery_rate": 5,
            "payment_gateway_fee": 2,
            "month": 3,
            "year": 2024,
        },
    )
    assert res.status_code == 201
    commission = res.json()
    assert commission["net_amount"] == "73.00"

    agg = client.post(
        "/payouts/aggregate",
        json={
            "restaurant_id": "rest-1",
            "period_start": "2024-03-01",
            "period_end": "2024-03-31",
            "commissions": [commission],
            "adjustments": "-3.00",
        },
    )
    assert agg.status_code == 200
    payout = agg.json()
    assert payout["net_amount"] == "70.00"

    processing = client.post("/payouts/begin", json={"payout": payout}).json()
    assert processing["status"] == "processing"
    done = client.post("/payouts/complete", json={"payout": processing, "transaction_id": "txn-1"}).json()
    assert done["status"] == "completed"

    again = client.post("/payouts/cancel", json={"payout": done})
    assert again.status_code == 409
    assert client.post("/payouts/refund", json={"payout": done}).status_code == 404


def test_commission_misconfigured_rate(client):
    res = client.post(
        "/commissions",
        json={
            "order_id": "o1",
            "restaurant_id": "rest-1",
            "order_amount": 10,
            "commission_rate": 95,
            "delivery_rate": 10,
            "month": 3,
            "year": 2024,
        },
    )
    assert res.status_code == 400


def test_dispute_flow(client):
    created = client.post(
        "/disputes",
        json={
            "order_id": "o1",
            "raised_by": {"kind": "Customer", "id": "c1"},
            "type": "wrong_order",
            "subject": "Wrong pizza",
            "description": "Got pepperoni instead of veggie",
        },
    )
    assert created.status_code == 201
    dispute = created.json()

    skipped = client.post("/disputes/transition", json={"dispute": dispute, "status": "resolved"})
    assert skipped.status_code == 409

    resolved = client.post(
        "/disputes/resolve",
        json={"dispute": dispute, "resolution": "Refunded", "refund_amount": "12.00", "restaurant_id": "rest-1"},
    ).json()
    assert resolved["dispute"]["status"] == "resolved"
    assert resolved["adjustment"]["amount"] == "-12.00"


# -------------------------------
# With PostgreSQL persistence
# -------------------------------
COMMISSION_BODY = {
    "order_id": "o1",
    "restaurant_id": "rest-1",
    "order_amount": 100,
    "commission_rate": 20,
    "month": 3,
    "year": 2024,
}


@pytest.fixture
def stored_client(monkeypatch, conn):
    monkeypatch.setattr(main.LEDGER, "store", InMemoryTrackingStore())
    monkeypatch.setattr(main, "PERSIST", True)
    return TestClient(main.app)


def aggregate_march(client, commissions=()):
    return client.post(
        "/payouts/aggregate",
        json={
            "restaurant_id": "rest-1",
            "period_start": "2024-03-01",
            "period_end": "2024-03-31",
            "commissions": list(commissions),
        },
    )


def test_startup_creates_schema_and_switches_to_postgres(monkeypatch, conn):
    monkeypatch.setattr(main.config, "DATABASE_URL", "postgresql://settlement@localhost/settlement")
    monkeypatch.setattr(main.LEDGER, "store", InMemoryTrackingStore())
    monkeypatch.setattr(main, "PERSIST", False)
    with TestClient(main.app):
        assert main.PERSIST is True
        assert isinstance(main.LEDGER.store, db.PostgresTrackingStore)
        assert any("CREATE TABLE IF NOT EXISTS order_tracking" in sql for sql, _ in conn.executed)
    assert main.PERSIST is False


def test_commission_is_stored(stored_client, conn):
    assert stored_client.post("/commissions", json=COMMISSION_BODY).status_code == 201
    assert any(sql.startswith("INSERT INTO commissions") for sql, _ in conn.executed)


def test_duplicate_commission_conflicts(stored_client, conn):
    conn.next_rowcount = 0
    res = stored_client.post("/commissions", json=COMMISSION_BODY)
    assert res.status_code == 409
    assert res.json()["error"] == "conflict"


def test_stored_payout_gets_an_id(stored_client, conn):
    res = aggregate_march(stored_client)
    assert res.status_code == 200
    assert res.json()["id"] == "17"


def test_second_payout_for_period_conflicts(stored_client, conn):
    conn.next_rowcount = 0
    res = aggregate_march(stored_client)
    assert res.status_code == 409
    assert res.json()["error"] == "conflict"


def test_payout_action_updates_stored_status(stored_client, conn):
    stored = aggregate_march(stored_client).json()
    res = stored_client.post("/payouts/begin", json={"payout": stored})
    assert res.status_code == 200
    assert res.json()["status"] == "processing"
    sql, params = conn.executed[-1]
    assert sql.startswith("UPDATE payouts")
    assert params[0] == "processing"
    assert params[-2:] == (17, "pending")


def test_payout_action_on_stale_payout_conflicts(stored_client, conn):
    stored = aggregate_march(stored_client).json()
    conn.next_rowcount = 0
    res = stored_client.post("/payouts/begin", json={"payout": stored})
    assert res.status_code == 409


def test_payout_action_requires_stored_payout(stored_client):
    res = stored_client.post(
        "/payouts/begin",
        json={
            "payout": {
                "restaurant_id": "rest-1",
                "period_start": "2024-03-01",
                "period_end": "2024-03-31",
                "total_order_amount": "0.00",
                "commission": {"rate": "0", "amount": "0.00"},
                "net_amount": "0.00",
            }
        },
    )
    assert res.status_code == 400
