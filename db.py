import logging
from contextlib import contextmanager
from typing import List, Optional

from psycopg2.pool import SimpleConnectionPool

import config
from models import Actor, Commission, Location, Payout, TrackingEvent

# -------------------------------
# Global connection pool
# -------------------------------
pool: Optional[SimpleConnectionPool] = None


def init_pool():
    """Initialize PostgreSQL connection pool"""
    global pool
    if pool is None:
        if not config.DATABASE_URL:
            raise RuntimeError("DATABASE_URL not set")
        pool = SimpleConnectionPool(minconn=1, maxconn=config.POOL_MAX, dsn=config.DATABASE_URL)
        logging.info("✅ PostgreSQL connection pool initialized (maxconn=%s).", config.POOL_MAX)


def close_pool():
    """Close PostgreSQL connection pool"""
    global pool
    if pool:
        pool.closeall()
        pool = None
        logging.info("✅ PostgreSQL connection pool closed.")


@contextmanager
def get_connection():
    """Get pooled connection with automatic commit/rollback"""
    if pool is None:
        raise RuntimeError("Connection pool is not initialized")
    conn = pool.getconn()
    try:
        yield conn
        conn.commit()
    except Exception as e:
        conn.rollback()
        logging.error("❌ DB transaction failed: %s", e)
        raise
    finally:
        pool.putconn(conn)


# -------------------------------
# Schema
# -------------------------------
SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS order_tracking (
    id              BIGSERIAL PRIMARY KEY,
    order_id        TEXT NOT NULL,
    status          TEXT NOT NULL,
    ts              TIMESTAMPTZ NOT NULL,
    latitude        DOUBLE PRECISION,
    longitude       DOUBLE PRECISION,
    estimated_time  TIMESTAMPTZ,
    notes           VARCHAR(200),
    updated_by      TEXT NOT NULL,
    updated_by_type TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS order_tracking_order_ts ON order_tracking (order_id, ts DESC);
CREATE INDEX IF NOT EXISTS order_tracking_status_ts ON order_tracking (status, ts DESC);

CREATE TABLE IF NOT EXISTS commissions (
    order_id            TEXT NOT NULL,
    restaurant_id       TEXT NOT NULL,
    order_amount        NUMERIC(12, 2) NOT NULL,
    commission_rate     NUMERIC(5, 2) NOT NULL,
    commission_amount   NUMERIC(12, 2) NOT NULL,
    delivery_rate       NUMERIC(5, 2) NOT NULL DEFAULT 0,
    delivery_amount     NUMERIC(12, 2) NOT NULL DEFAULT 0,
    payment_gateway_fee NUMERIC(12, 2) NOT NULL DEFAULT 0,
    total_deductions    NUMERIC(12, 2) NOT NULL,
    net_amount          NUMERIC(12, 2) NOT NULL CHECK (net_amount >= 0),
    currency            TEXT NOT NULL DEFAULT 'USD',
    status              TEXT NOT NULL DEFAULT 'pending',
    payout_id           TEXT,
    processed_at        TIMESTAMPTZ,
    period_month        SMALLINT NOT NULL CHECK (period_month BETWEEN 1 AND 12),
    period_year         SMALLINT NOT NULL,
    PRIMARY KEY (order_id, restaurant_id)
);
CREATE INDEX IF NOT EXISTS commissions_restaurant_period
    ON commissions (restaurant_id, period_year, period_month);

CREATE TABLE IF NOT EXISTS payouts (
    id                 BIGSERIAL PRIMARY KEY,
    restaurant_id      TEXT NOT NULL,
    currency           TEXT NOT NULL DEFAULT 'USD',
    period_start       DATE NOT NULL,
    period_end         DATE NOT NULL,
    orders             TEXT[] NOT NULL DEFAULT '{}',
    total_order_amount NUMERIC(12, 2) NOT NULL,
    commission_rate    NUMERIC(5, 2) NOT NULL,
    commission_amount  NUMERIC(12, 2) NOT NULL,
    tax_rate           NUMERIC(5, 2) NOT NULL DEFAULT 0,
    tax_amount         NUMERIC(12, 2) NOT NULL DEFAULT 0,
    adjustments        NUMERIC(12, 2) NOT NULL DEFAULT 0,
    net_amount         NUMERIC(12, 2) NOT NULL CHECK (net_amount >= 0),
    status             TEXT NOT NULL DEFAULT 'pending',
    payment_method     TEXT NOT NULL DEFAULT 'bank_transfer',
    transaction_id     TEXT,
    processed_at       TIMESTAMPTZ,
    processed_by       TEXT,
    notes              VARCHAR(500),
    failure_reason     TEXT,
    UNIQUE (restaurant_id, period_start, period_end)
);
CREATE INDEX IF NOT EXISTS payouts_status ON payouts (status);
"""


def init_schema():
    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute(SCHEMA_SQL)
        cur.close()
    logging.info("✅ Schema ready.")


# -------------------------------
# Order tracking
# -------------------------------
def _row_to_event(row) -> TrackingEvent:
    order_id, status, ts, lat, lon, eta, notes, updated_by, updated_by_type = row
    location = None
    if lat is not None and lon is not None:
        location = Location(latitude=lat, longitude=lon)
    return TrackingEvent(
        order_id=order_id,
        status=status,
        timestamp=ts,
        location=location,
        estimated_time=eta,
        notes=notes,
        updated_by=Actor(kind=updated_by_type, id=updated_by),
    )


_SELECT_EVENTS = """
    SELECT order_id, status, ts, latitude, longitude, estimated_time, notes,
           updated_by, updated_by_type
    FROM order_tracking
    WHERE order_id = %s
    ORDER BY ts ASC, id ASC
"""


class _PostgresSession:
    def __init__(self, cur, order_id: str):
        self._cur = cur
        self._order_id = order_id

    def events(self) -> List[TrackingEvent]:
        self._cur.execute(_SELECT_EVENTS, (self._order_id,))
        return [_row_to_event(r) for r in self._cur.fetchall()]

    def append(self, event: TrackingEvent) -> None:
        loc = event.location
        self._cur.execute(
            """
            INSERT INTO order_tracking (
                order_id, status, ts, latitude, longitude, estimated_time,
                notes, updated_by, updated_by_type
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s)
            """,
            (
                event.order_id,
                event.status,
                event.timestamp,
                loc.latitude if loc else None,
                loc.longitude if loc else None,
                event.estimated_time,
                event.notes,
                event.updated_by.id,
                event.updated_by.kind,
            ),
        )


class PostgresTrackingStore:
    """Tracking store backed by the order_tracking table.

    Writers for the same order are serialised with a transaction-scoped
    advisory lock keyed on the order id.
    """

    def events(self, order_id: str) -> List[TrackingEvent]:
        with get_connection() as conn:
            cur = conn.cursor()
            cur.execute(_SELECT_EVENTS, (order_id,))
            rows = cur.fetchall()
            cur.close()
        return [_row_to_event(r) for r in rows]

    @contextmanager
    def transaction(self, order_id: str):
        with get_connection() as conn:
            cur = conn.cursor()
            try:
                cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (order_id,))
                yield _PostgresSession(cur, order_id)
            finally:
                cur.close()


# -------------------------------
# Settlement
# -------------------------------
def save_commission(commission: Commission) -> bool:
    """Insert a commission; returns False if the (order, restaurant) pair already exists."""
    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO commissions (
                order_id, restaurant_id, order_amount, commission_rate, commission_amount,
                delivery_rate, delivery_amount, payment_gateway_fee, total_deductions,
                net_amount, currency, status, payout_id, processed_at, period_month, period_year
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (order_id, restaurant_id) DO NOTHING
            """,
            (
                commission.order_id,
                commission.restaurant_id,
                commission.order_amount,
                commission.commission_rate,
                commission.commission_amount,
                commission.delivery_commission.rate,
                commission.delivery_commission.amount,
                commission.payment_gateway_fee,
                commission.total_deductions,
                commission.net_amount,
                commission.currency,
                commission.status,
                commission.payout_id,
                commission.processed_at,
                commission.period.month,
                commission.period.year,
            ),
        )
        inserted = cur.rowcount == 1
        cur.close()
    if not inserted:
        logging.warning(
            "⚠️ Commission already recorded | order=%s | restaurant=%s",
            commission.order_id,
            commission.restaurant_id,
        )
    return inserted


def save_payout(payout: Payout) -> Optional[str]:
    """Insert a payout and return its id, or None if one exists for the restaurant and period."""
    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            INSERT INTO payouts (
                restaurant_id, currency, period_start, period_end, orders,
                total_order_amount, commission_rate, commission_amount, tax_rate,
                tax_amount, adjustments, net_amount, status, payment_method
            ) VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (restaurant_id, period_start, period_end) DO NOTHING
            RETURNING id
            """,
            (
                payout.restaurant_id,
                payout.currency,
                payout.period_start,
                payout.period_end,
                list(payout.orders),
                payout.total_order_amount,
                payout.commission.rate,
                payout.commission.amount,
                payout.taxes.rate,
                payout.taxes.amount,
                payout.adjustments,
                payout.net_amount,
                payout.status,
                payout.payment_method,
            ),
        )
        row = cur.fetchone()
        cur.close()
    if not row:
        logging.warning(
            "⚠️ Payout already exists | restaurant=%s | period=%s..%s",
            payout.restaurant_id,
            payout.period_start,
            payout.period_end,
        )
        return None
    payout_id = str(row[0])
    logging.info("✅ Payout stored | restaurant=%s | payout=%s", payout.restaurant_id, payout_id)
    return payout_id


def update_payout_status(payout: Payout, previous_status: str) -> bool:
    """Persist a payout transition if the stored status still matches previous_status."""
    if payout.id is None:
        raise ValueError("payout has no id")
    with get_connection() as conn:
        cur = conn.cursor()
        cur.execute(
            """
            UPDATE payouts
            SET status = %s, transaction_id = %s, processed_at = %s,
                processed_by = %s, notes = %s, failure_reason = %s
            WHERE id = %s AND status = %s
            """,
            (
                payout.status,
                payout.transaction_id,
                payout.processed_at,
                payout.processed_by,
                payout.notes,
                payout.failure_reason,
                int(payout.id),
                previous_status,
            ),
        )
        updated = cur.rowcount == 1
        cur.close()
    return updated
