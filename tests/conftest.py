from datetime import datetime, timedelta, timezone

import pytest

import db
from commission import create_commission
from models import Actor, SettlementPeriod
from tests.fakes import FakePool

T0 = datetime(2024, 3, 5, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def restaurant_actor():
    return Actor(kind="Restaurant", id="rest-1")


@pytest.fixture
def courier():
    return Actor(kind="DeliveryPartner", id="dp-7")


@pytest.fixture
def at():
    """Timestamps a fixed number of minutes after T0."""
    return lambda minutes: T0 + timedelta(minutes=minutes)


@pytest.fixture
def march():
    return SettlementPeriod(month=3, year=2024)


@pytest.fixture
def make_commission(march):
    def _make(order_id, amount="100", rate="20", restaurant_id="rest-1", period=None, **kwargs):
        return create_commission(order_id, restaurant_id, amount, rate, period or march, **kwargs)

    return _make


@pytest.fixture
def conn(monkeypatch):
    """Replace the psycopg2 pool with an in-process fake and return its connection."""
    fake = FakePool()
    monkeypatch.setattr(db, "pool", fake)
    return fake.conn
