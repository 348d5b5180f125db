"""
Payout aggregation and payout state machine.

    pending --begin_processing--> processing --complete--> completed
                                   processing --fail-----> failed
    pending | processing --cancel--> cancelled

`aggregate` depends only on its arguments: the same commissions, period,
adjustments and tax rate always give an identical Payout (orders are sorted,
no ids or clock readings are generated).
"""
from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, FrozenSet, Iterable, Optional, Sequence

import config
from errors import InvalidTransition, ValidationError
from models import Commission, Payout, RateAmount, RefundAdjustment, build
from money import HUNDRED, ZERO, as_decimal, percent_of, require_rate, round_money

PAYOUT_TRANSITIONS: Dict[str, FrozenSet[str]] = {
    "pending": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"completed", "failed", "cancelled"}),
    "completed": frozenset(),
    "failed": frozenset(),
    "cancelled": frozenset(),
}
NOTES_MAX_LENGTH = 500


def aggregate(
    restaurant_id: str,
    period_start: date,
    period_end: date,
    commissions: Sequence[Commission],
    adjustments: Any = 0,
    tax_rate: Any = None,
    currency: Optional[str] = None,
    payment_method: str = "bank_transfer",
) -> Payout:
    """Batch a restaurant's commissions for one settlement period into a Payout.

    Each commission's settlement month must lie inside [period_start, period_end].
    The payout's commission line carries every deduction taken on the orders
    (platform commission, delivery commission and gateway fees), and its rate is
    the effective rate over the whole batch. Taxes are charged on that line.
    """
    if period_start > period_end:
        raise ValidationError(f"period start {period_start} is after period end {period_end}")
    currency = (currency or config.CURRENCY).upper()
    rate_of_tax = require_rate(config.PAYOUT_TAX_RATE if tax_rate is None else tax_rate, "tax_rate")
    adjustment = round_money(as_decimal(adjustments, "adjustments"))

    seen = set()
    total_order_amount = ZERO
    total_deductions = ZERO
    for c in commissions:
        if c.restaurant_id != restaurant_id:
            raise ValidationError(
                f"commission for order {c.order_id} belongs to restaurant {c.restaurant_id}, not {restaurant_id}"
            )
        if not c.period.within(period_start, period_end):
            raise ValidationError(
                f"commission for order {c.order_id} is for {c.period.year}-{c.period.month:02d}, "
                f"outside {period_start}..{period_end}"
            )
        if c.currency.upper() != currency:
            raise ValidationError(f"commission for order {c.order_id} is in {c.currency}, payout is in {currency}")
        if c.order_id in seen:
            raise ValidationError(f"order {c.order_id} appears more than once")
        seen.add(c.order_id)
        total_order_amount += c.order_amount
        total_deductions += c.total_deductions

    effective_rate = ZERO
    if total_order_amount > 0:
        effective_rate = round_money(total_deductions / total_order_amount * HUNDRED)
    tax_amount = percent_of(total_deductions, rate_of_tax)
    net_amount = total_order_amount - total_deductions - tax_amount + adjustment
    if net_amount < 0:
        raise ValidationError(
            f"payout for restaurant {restaurant_id} would be negative ({net_amount}); "
            "adjustments exceed the amount owed"
        )

    payout = build(
        Payout,
        restaurant_id=restaurant_id,
        currency=currency,
        period_start=period_start,
        period_end=period_end,
        orders=sorted(seen),
        total_order_amount=round_money(total_order_amount),
        commission=RateAmount(rate=effective_rate, amount=round_money(total_deductions)),
        taxes=RateAmount(rate=rate_of_tax, amount=tax_amount),
        adjustments=adjustment,
        net_amount=round_money(net_amount),
        payment_method=payment_method,
    )
    logging.info(
        "✅ Payout aggregated | restaurant=%s | period=%s..%s | orders=%s | net=%s",
        restaurant_id,
        period_start,
        period_end,
        len(payout.orders),
        payout.net_amount,
    )
    return payout


def adjustments_for(
    restaurant_id: str,
    period_start: date,
    period_end: date,
    refund_adjustments: Iterable[RefundAdjustment],
) -> Decimal:
    """Sum the refund adjustments that apply to a restaurant's settlement period."""
    total = ZERO
    for adj in refund_adjustments:
        if adj.restaurant_id == restaurant_id and adj.period.within(period_start, period_end):
            total += adj.amount
    return round_money(total)


# -------------------------------
# State machine
# -------------------------------
def can_transition(current: str, new: str) -> bool:
    return new in PAYOUT_TRANSITIONS.get(current, frozenset())


def transition(payout: Payout, new_status: str, **updates: Any) -> Payout:
    """Return a copy of the payout in new_status. The given payout is never modified."""
    if new_status not in PAYOUT_TRANSITIONS:
        raise ValidationError(f"unknown payout status: {new_status!r}")
    if not can_transition(payout.status, new_status):
        logging.warning(
            "⚠️ Rejected payout transition | restaurant=%s | %s -> %s",
            payout.restaurant_id,
            payout.status,
            new_status,
        )
        raise InvalidTransition(f"payout cannot move from {payout.status} to {new_status}")
    updated = payout.model_copy(update={**updates, "status": new_status})
    logging.info(
        "Payout transition | restaurant=%s | payout=%s | %s -> %s",
        payout.restaurant_id,
        payout.id,
        payout.status,
        new_status,
    )
    return updated


def begin_processing(payout: Payout) -> Payout:
    return transition(payout, "processing")


def complete(
    payout: Payout,
    transaction_id: str,
    processed_at: Optional[datetime] = None,
    processed_by: Optional[str] = None,
) -> Payout:
    """Gateway confirmed the transfer."""
    if not transaction_id:
        raise ValidationError("transaction_id is required to complete a payout")
    return transition(
        payout,
        "completed",
        transaction_id=transaction_id,
        processed_at=processed_at or datetime.now(timezone.utc),
        processed_by=processed_by,
    )


def fail(payout: Payout, reason: str) -> Payout:
    """Gateway rejected the transfer."""
    return transition(payout, "failed", failure_reason=reason)


def cancel(payout: Payout, processed_by: Optional[str] = None, notes: Optional[str] = None) -> Payout:
    if notes is not None and len(notes) > NOTES_MAX_LENGTH:
        raise ValidationError(f"notes cannot exceed {NOTES_MAX_LENGTH} characters")
    updates: Dict[str, Any] = {"processed_by": processed_by}
    if notes is not None:
        updates["notes"] = notes
    return transition(payout, "cancelled", **updates)
