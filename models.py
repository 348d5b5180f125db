from __future__ import annotations

import calendar
from datetime import date, datetime
from decimal import Decimal
from typing import List, Literal, Optional, Type, TypeVar

from pydantic import BaseModel, Field
from pydantic import ValidationError as PydanticValidationError

from errors import ValidationError

ActorKind = Literal["Customer", "Restaurant", "DeliveryPartner", "Admin", "Staff"]

TrackingStatus = Literal[
    "placed",
    "confirmed",
    "preparing",
    "ready",
    "picked_up",
    "out_for_delivery",
    "delivered",
    "cancelled",
    "rejected",
]
TRACKING_STATUSES = (
    "placed",
    "confirmed",
    "preparing",
    "ready",
    "picked_up",
    "out_for_delivery",
    "delivered",
    "cancelled",
    "rejected",
)
TRACKING_ACTOR_KINDS = ("Restaurant", "DeliveryPartner", "Customer", "Admin")

CommissionStatus = Literal["pending", "processed", "paid"]

PayoutStatus = Literal["pending", "processing", "completed", "failed", "cancelled"]
PaymentMethod = Literal["bank_transfer", "paypal", "stripe"]

DisputeStatus = Literal["open", "in_progress", "resolved", "closed"]
DisputePriority = Literal["low", "medium", "high", "urgent"]
DisputeType = Literal[
    "quality_issue",
    "missing_items",
    "wrong_order",
    "delivery_delay",
    "payment_issue",
    "damage",
    "other",
]
DISPUTE_RAISER_KINDS = ("Customer", "Restaurant", "DeliveryPartner")

M = TypeVar("M", bound=BaseModel)


def build(model: Type[M], **data) -> M:
    """Validate data into a model, reporting failures as a domain ValidationError."""
    try:
        return model(**data)
    except PydanticValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or model.__name__}: {err['msg']}"
            for err in e.errors()
        )
        raise ValidationError(f"invalid {model.__name__}: {problems}") from e


class Location(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)

    model_config = {"extra": "ignore", "frozen": True}


class Actor(BaseModel):
    """Reference to whoever performed an action, resolved by the caller."""

    kind: ActorKind
    id: str = Field(min_length=1)

    model_config = {"extra": "ignore", "frozen": True}


# -------------------------------
# Order tracking
# -------------------------------
class TrackingEvent(BaseModel):
    order_id: str = Field(min_length=1)
    status: TrackingStatus
    timestamp: datetime
    updated_by: Actor
    location: Optional[Location] = None
    estimated_time: Optional[datetime] = None
    notes: Optional[str] = Field(default=None, max_length=200)

    model_config = {"extra": "ignore", "frozen": True}


# -------------------------------
# Order items
# -------------------------------
class Variation(BaseModel):
    name: Optional[str] = None
    price: Decimal = Field(ge=0)

    model_config = {"extra": "ignore", "frozen": True}


class Addon(BaseModel):
    name: Optional[str] = None
    price: Decimal = Field(ge=0)
    quantity: int = Field(default=1, ge=1)

    model_config = {"extra": "ignore", "frozen": True}


class OrderItem(BaseModel):
    menu_item_id: str
    name: str
    price: Decimal = Field(ge=0)
    quantity: int = Field(ge=1)
    variations: List[Variation] = []
    addons: List[Addon] = []
    special_instructions: Optional[str] = Field(default=None, max_length=500)
    subtotal: Decimal = Field(ge=0)

    model_config = {"extra": "ignore", "frozen": True}


# -------------------------------
# Settlement
# -------------------------------
class SettlementPeriod(BaseModel):
    month: int = Field(ge=1, le=12)
    year: int = Field(ge=1970)

    model_config = {"extra": "ignore", "frozen": True}

    @property
    def start_date(self) -> date:
        return date(self.year, self.month, 1)

    @property
    def end_date(self) -> date:
        return date(self.year, self.month, calendar.monthrange(self.year, self.month)[1])

    def next(self) -> "SettlementPeriod":
        if self.month == 12:
            return SettlementPeriod(month=1, year=self.year + 1)
        return SettlementPeriod(month=self.month + 1, year=self.year)

    def within(self, start: date, end: date) -> bool:
        return start <= self.start_date and self.end_date <= end


class RateAmount(BaseModel):
    rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)
    amount: Decimal = Field(default=Decimal("0.00"), ge=0)

    model_config = {"extra": "ignore"}


class Commission(BaseModel):
    id: Optional[str] = None
    order_id: str
    restaurant_id: str
    order_amount: Decimal = Field(ge=0)
    commission_rate: Decimal = Field(ge=0, le=100)
    commission_amount: Decimal = Field(ge=0)
    delivery_commission: RateAmount = RateAmount()
    payment_gateway_fee: Decimal = Field(default=Decimal("0.00"), ge=0)
    total_deductions: Decimal = Field(ge=0)
    net_amount: Decimal = Field(ge=0)
    currency: str = "USD"
    status: CommissionStatus = "pending"
    payout_id: Optional[str] = None
    processed_at: Optional[datetime] = None
    period: SettlementPeriod

    model_config = {"extra": "ignore"}


class Payout(BaseModel):
    id: Optional[str] = None
    restaurant_id: str
    currency: str = "USD"
    period_start: date
    period_end: date
    orders: List[str] = []
    total_order_amount: Decimal = Field(ge=0)
    commission: RateAmount
    taxes: RateAmount = RateAmount()
    adjustments: Decimal = Decimal("0.00")
    net_amount: Decimal = Field(ge=0)
    status: PayoutStatus = "pending"
    payment_method: PaymentMethod = "bank_transfer"
    transaction_id: Optional[str] = None
    processed_at: Optional[datetime] = None
    processed_by: Optional[str] = None
    notes: Optional[str] = Field(default=None, max_length=500)
    failure_reason: Optional[str] = None

    model_config = {"extra": "ignore"}


# -------------------------------
# Disputes
# -------------------------------
class DisputeComment(BaseModel):
    author: Actor
    comment: str = Field(min_length=1, max_length=1000)
    is_internal: bool = False
    created_at: datetime

    model_config = {"extra": "ignore", "frozen": True}


class Dispute(BaseModel):
    id: str
    order_id: str
    raised_by: Actor
    type: DisputeType
    subject: str = Field(min_length=1, max_length=100)
    description: str = Field(min_length=1, max_length=1000)
    images: List[str] = []
    status: DisputeStatus = "open"
    priority: DisputePriority = "medium"
    assigned_to: Optional[str] = None
    resolution: Optional[str] = Field(default=None, max_length=1000)
    refund_amount: Optional[Decimal] = Field(default=None, ge=0)
    resolved_at: Optional[datetime] = None
    resolved_by: Optional[str] = None
    comments: List[DisputeComment] = []

    model_config = {"extra": "ignore"}


class RefundAdjustment(BaseModel):
    """Signed amount applied to a restaurant's payout for a settlement period."""

    dispute_id: str
    order_id: str
    restaurant_id: str
    amount: Decimal
    period: SettlementPeriod

    model_config = {"extra": "ignore", "frozen": True}
