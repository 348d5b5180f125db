from datetime import date
from decimal import Decimal

import pytest

import db
import payout as payouts
from errors import InvalidTransition
from models import Actor, Location
from tracking import OrderTrackingLedger


def test_get_connection_requires_pool(monkeypatch):
    monkeypatch.setattr(db, "pool", None)
    with pytest.raises(RuntimeError):
        with db.get_connection():
            pass


def test_get_connection_rolls_back_on_error(conn):
    with pytest.raises(ValueError):
        with db.get_connection():
            raise ValueError("boom")
    assert conn.rollbacks == 1
    assert conn.commits == 0


def test_init_pool_requires_database_url(monkeypatch):
    monkeypatch.setattr(db, "pool", None)
    monkeypatch.setattr(db.config, "DATABASE_URL", None)
    with pytest.raises(RuntimeError):
        db.init_pool()


def test_init_schema_runs_ddl(conn):
    db.init_schema()
    assert "CREATE TABLE IF NOT EXISTS order_tracking" in conn.executed[0][0]
    assert conn.commits == 1


def test_postgres_ledger_round_trip(conn, restaurant_actor, courier, at):
    ledger = OrderTrackingLedger(db.PostgresTrackingStore())
    ledger.append_event("o1", "placed", restaurant_actor, timestamp=at(0))
    ledger.append_event(
        "o1", "picked_up", courier, location=Location(latitude=1.5, longitude=2.5), timestamp=at(20)
    )

    locks = [sql for sql, _ in conn.executed if "pg_advisory_xact_lock" in sql]
    assert len(locks) == 2

    latest = ledger.latest_status("o1")
    assert latest.status == "picked_up"
    assert latest.updated_by == courier
    assert latest.location == Location(latitude=1.5, longitude=2.5)
    assert ledger.history("o1").statuses() == ["placed", "picked_up"]


def test_postgres_ledger_rejection_rolls_back(conn, restaurant_actor, at):
    ledger = OrderTrackingLedger(db.PostgresTrackingStore())
    ledger.append_event("o1", "placed", restaurant_actor, timestamp=at(0))
    ledger.append_event("o1", "cancelled", restaurant_actor, timestamp=at(1))
    with pytest.raises(InvalidTransition):
        ledger.append_event("o1", "confirmed", Actor(kind="Admin", id="a1"), timestamp=at(2))
    assert conn.rollbacks == 1
    assert len(conn.tracking_rows) == 2


def test_save_commission(conn, make_commission):
    assert db.save_commission(make_commission("o1")) is True
    sql, params = conn.executed[-1]
    assert "ON CONFLICT (order_id, restaurant_id) DO NOTHING" in sql
    assert params[0:3] == ("o1", "rest-1", Decimal("100.00"))


def test_save_commission_duplicate(conn, make_commission):
    conn.next_rowcount = 0
    assert db.save_commission(make_commission("o1")) is False


def test_save_payout(conn, make_commission):
    p = payouts.aggregate("rest-1", date(2024, 3, 1), date(2024, 3, 31), [make_commission("o1")])
    assert db.save_payout(p) == "17"
    sql, params = conn.executed[-1]
    assert "ON CONFLICT (restaurant_id, period_start, period_end) DO NOTHING" in sql
    assert params[4] == ["o1"]


def test_save_payout_existing_period(conn):
    conn.next_rowcount = 0
    p = payouts.aggregate("rest-1", date(2024, 3, 1), date(2024, 3, 31), [])
    assert db.save_payout(p) is None


def test_update_payout_status_guards_previous_status(conn):
    p = payouts.aggregate("rest-1", date(2024, 3, 1), date(2024, 3, 31), []).model_copy(update={"id": "17"})
    processing = payouts.begin_processing(p)
    assert db.update_payout_status(processing, "pending") is True
    sql, params = conn.executed[-1]
    assert sql.startswith("UPDATE payouts")
    assert params[-2:] == (17, "pending")

    conn.next_rowcount = 0
    assert db.update_payout_status(processing, "pending") is False


def test_update_payout_status_requires_id():
    p = payouts.aggregate("rest-1", date(2024, 3, 1), date(2024, 3, 31), [])
    with pytest.raises(ValueError):
        db.update_payout_status(p, "pending")


def test_postgres_latest_among_equal_timestamps(conn, courier, at):
    ledger = OrderTrackingLedger(db.PostgresTrackingStore())
    ledger.append_event("o1", "placed", courier, timestamp=at(0))
    ledger.append_event("o1", "delivered", courier, timestamp=at(0))
    assert ledger.latest_status("o1").status == "delivered"
    with pytest.raises(InvalidTransition):
        ledger.append_event("o1", "cancelled", courier, timestamp=at(0))
    assert len(conn.tracking_rows) == 2
