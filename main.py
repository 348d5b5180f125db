import asyncio
import logging
from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

import commission
import config
import db
import disputes
import geo
import payout
import valuation
from errors import Conflict, InvalidTransition, NotFound, SettlementError, ValidationError
from models import Actor, Addon, Commission, Dispute, Location, Payout, SettlementPeriod, TrackingEvent, Variation
from tracking import InMemoryTrackingStore, OrderTrackingLedger

app = FastAPI()

LEDGER = OrderTrackingLedger(InMemoryTrackingStore())
# set on startup when DATABASE_URL is configured
PERSIST = False

ERROR_STATUS = {
    NotFound: 404,
    InvalidTransition: 409,
    Conflict: 409,
}


# -------------------------------
# FastAPI lifecycle
# -------------------------------
@app.on_event("startup")
async def startup():
    global PERSIST
    logging.info("🚀 Starting up service...")
    if config.DATABASE_URL:
        await asyncio.to_thread(db.init_pool)
        await asyncio.to_thread(db.init_schema)
        PERSIST = True
        LEDGER.store = db.PostgresTrackingStore()
        logging.info("✅ Tracking backed by PostgreSQL.")
    else:
        logging.warning("⚠️ DATABASE_URL not set; tracking events kept in memory.")


@app.on_event("shutdown")
async def shutdown():
    global PERSIST
    logging.info("🛑 Shutting down service...")
    PERSIST = False
    await asyncio.to_thread(db.close_pool)


@app.exception_handler(SettlementError)
async def settlement_error_handler(request: Request, exc: SettlementError):
    return JSONResponse(status_code=ERROR_STATUS.get(type(exc), 400), content=exc.to_dict())


# -------------------------------
# Request bodies
# -------------------------------
class TrackingUpdate(BaseModel):
    status: str
    updated_by: Actor
    location: Optional[Location] = None
    estimated_time: Optional[datetime] = None
    notes: Optional[str] = None
    timestamp: Optional[datetime] = None


class SubtotalRequest(BaseModel):
    price: Decimal
    quantity: int
    variations: List[Variation] = []
    addons: List[Addon] = []


class CommissionRequest(BaseModel):
    order_id: str
    restaurant_id: str
    order_amount: Decimal
    commission_rate: Decimal
    delivery_rate: Decimal = Decimal("0")
    payment_gateway_fee: Decimal = Decimal("0")
    month: int
    year: int
    currency: Optional[str] = None


class AggregateRequest(BaseModel):
    restaurant_id: str
    period_start: date
    period_end: date
    commissions: List[Commission] = []
    adjustments: Decimal = Decimal("0")
    tax_rate: Optional[Decimal] = None
    currency: Optional[str] = None
    payment_method: Literal["bank_transfer", "paypal", "stripe"] = "bank_transfer"


class PayoutAction(BaseModel):
    payout: Payout
    transaction_id: Optional[str] = None
    processed_by: Optional[str] = None
    reason: Optional[str] = None
    notes: Optional[str] = None


class DisputeCreate(BaseModel):
    order_id: str
    raised_by: Actor
    type: str
    subject: str
    description: str
    priority: str = "medium"
    images: List[str] = []


class DisputeTransition(BaseModel):
    dispute: Dispute
    status: str


class DisputeResolve(BaseModel):
    dispute: Dispute
    resolution: str
    refund_amount: Decimal = Decimal("0")
    restaurant_id: str
    resolved_by: Optional[str] = None


# -------------------------------
# Routes
# -------------------------------
@app.get("/")
async def root():
    return {"message": "Settlement service live."}


@app.post("/orders/{order_id}/tracking", status_code=201, response_model=TrackingEvent)
def append_tracking_event(order_id: str, body: TrackingUpdate):
    return LEDGER.append_event(
        order_id,
        body.status,
        body.updated_by,
        location=body.location,
        estimated_time=body.estimated_time,
        notes=body.notes,
        timestamp=body.timestamp,
    )


@app.get("/orders/{order_id}/tracking", response_model=List[TrackingEvent])
def tracking_history(order_id: str):
    return list(LEDGER.history(order_id))


@app.get("/orders/{order_id}/tracking/latest", response_model=TrackingEvent)
def tracking_latest(order_id: str):
    return LEDGER.latest_status(order_id)


@app.get("/geo/eta")
async def eta(from_lat: float, from_lon: float, to_lat: float, to_lon: float, speed_kmh: Optional[float] = None):
    distance, minutes = geo.eta_between((from_lat, from_lon), (to_lat, to_lon), speed_kmh)
    return {"distance_km": round(distance, 3), "eta_minutes": minutes}


@app.post("/order-items/subtotal")
async def order_item_subtotal(body: SubtotalRequest):
    subtotal = valuation.compute_subtotal(body.price, body.quantity, body.variations, body.addons)
    return {"subtotal": str(subtotal)}


@app.post("/commissions", status_code=201, response_model=Commission)
def create_commission(body: CommissionRequest):
    period = SettlementPeriod(month=body.month, year=body.year)
    created = commission.create_commission(
        body.order_id,
        body.restaurant_id,
        body.order_amount,
        body.commission_rate,
        period,
        delivery_rate_pct=body.delivery_rate,
        gateway_fee=body.payment_gateway_fee,
        currency=body.currency,
    )
    if PERSIST and not db.save_commission(created):
        raise Conflict(f"commission for order {created.order_id} and restaurant {created.restaurant_id} already exists")
    return created


@app.post("/payouts/aggregate", response_model=Payout)
def aggregate_payout(body: AggregateRequest):
    aggregated = payout.aggregate(
        body.restaurant_id,
        body.period_start,
        body.period_end,
        body.commissions,
        adjustments=body.adjustments,
        tax_rate=body.tax_rate,
        currency=body.currency,
        payment_method=body.payment_method,
    )
    if PERSIST:
        payout_id = db.save_payout(aggregated)
        if payout_id is None:
            raise Conflict(
                f"payout for restaurant {aggregated.restaurant_id} and period "
                f"{aggregated.period_start}..{aggregated.period_end} already exists"
            )
        aggregated = aggregated.model_copy(update={"id": payout_id})
    return aggregated


@app.post("/payouts/{action}", response_model=Payout)
def payout_action(action: str, body: PayoutAction):
    current = body.payout
    if PERSIST and current.id is None:
        raise ValidationError("payout has no id; aggregate and store it first")
    if action == "begin":
        updated = payout.begin_processing(current)
    elif action == "complete":
        updated = payout.complete(current, body.transaction_id or "", processed_by=body.processed_by)
    elif action == "fail":
        updated = payout.fail(current, body.reason or "rejected by gateway")
    elif action == "cancel":
        updated = payout.cancel(current, processed_by=body.processed_by, notes=body.notes)
    else:
        raise NotFound(f"unknown payout action: {action}")
    if PERSIST and not db.update_payout_status(updated, current.status):
        raise Conflict(f"payout {current.id} is no longer {current.status}")
    return updated


@app.post("/disputes", status_code=201, response_model=Dispute)
async def open_dispute(body: DisputeCreate):
    return disputes.open_dispute(
        body.order_id,
        body.raised_by,
        body.type,
        body.subject,
        body.description,
        priority=body.priority,
        images=body.images,
    )


@app.post("/disputes/transition", response_model=Dispute)
async def dispute_transition(body: DisputeTransition):
    return disputes.transition(body.dispute, body.status)


@app.post("/disputes/resolve")
async def dispute_resolve(body: DisputeResolve):
    resolved, adjustment = disputes.resolve(
        body.dispute,
        body.resolution,
        body.refund_amount,
        body.restaurant_id,
        resolved_by=body.resolved_by,
    )
    return {
        "dispute": resolved.model_dump(mode="json"),
        "adjustment": adjustment.model_dump(mode="json") if adjustment else None,
    }
