"""
Commission calculator.

Every derived amount is rounded half-up to cents before it is summed, and the
net amount is taken as the remainder, so

    total_deductions + net_amount == order_amount

holds exactly for every accepted input.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Iterable, List, Optional

import config
from errors import InvalidTransition, ValidationError
from models import Commission, Payout, RateAmount, SettlementPeriod, build
from money import as_decimal, percent_of, require_non_negative, require_rate, round_money


@dataclass(frozen=True)
class CommissionBreakdown:
    order_amount: Decimal
    commission_rate: Decimal
    commission_amount: Decimal
    delivery_rate: Decimal
    delivery_amount: Decimal
    payment_gateway_fee: Decimal
    total_deductions: Decimal
    net_amount: Decimal


def compute(
    order_amount: Any,
    commission_rate_pct: Any,
    delivery_rate_pct: Any = 0,
    gateway_fee: Any = 0,
) -> CommissionBreakdown:
    amount = round_money(require_non_negative(as_decimal(order_amount, "order_amount"), "order_amount"))
    rate = require_rate(commission_rate_pct, "commission_rate")
    delivery_rate = require_rate(delivery_rate_pct, "delivery_rate")
    fee = round_money(require_non_negative(as_decimal(gateway_fee, "gateway_fee"), "gateway_fee"))

    commission_amount = percent_of(amount, rate)
    delivery_amount = percent_of(amount, delivery_rate)
    total_deductions = commission_amount + delivery_amount + fee
    net_amount = amount - total_deductions
    if net_amount < 0:
        raise ValidationError(
            f"deductions {total_deductions} exceed order amount {amount}; check the commission rates"
        )

    return CommissionBreakdown(
        order_amount=amount,
        commission_rate=rate,
        commission_amount=commission_amount,
        delivery_rate=delivery_rate,
        delivery_amount=delivery_amount,
        payment_gateway_fee=fee,
        total_deductions=total_deductions,
        net_amount=net_amount,
    )


def period_for(moment: datetime) -> SettlementPeriod:
    return SettlementPeriod(month=moment.month, year=moment.year)


def create_commission(
    order_id: str,
    restaurant_id: str,
    order_amount: Any,
    commission_rate_pct: Any,
    period: SettlementPeriod,
    delivery_rate_pct: Any = 0,
    gateway_fee: Any = 0,
    currency: Optional[str] = None,
) -> Commission:
    breakdown = compute(order_amount, commission_rate_pct, delivery_rate_pct, gateway_fee)
    return build(
        Commission,
        order_id=order_id,
        restaurant_id=restaurant_id,
        order_amount=breakdown.order_amount,
        commission_rate=breakdown.commission_rate,
        commission_amount=breakdown.commission_amount,
        delivery_commission=RateAmount(rate=breakdown.delivery_rate, amount=breakdown.delivery_amount),
        payment_gateway_fee=breakdown.payment_gateway_fee,
        total_deductions=breakdown.total_deductions,
        net_amount=breakdown.net_amount,
        currency=(currency or config.CURRENCY).upper(),
        period=period,
    )


# -------------------------------
# Status lifecycle: pending -> processed -> paid
# -------------------------------
def mark_processed(commission: Commission, payout_id: Optional[str], at: Optional[datetime] = None) -> Commission:
    if commission.status != "pending":
        raise InvalidTransition(f"commission for order {commission.order_id} is {commission.status}, not pending")
    return commission.model_copy(
        update={
            "status": "processed",
            "payout_id": payout_id,
            "processed_at": at or datetime.now(timezone.utc),
        }
    )


def mark_paid(commission: Commission) -> Commission:
    if commission.status != "processed":
        raise InvalidTransition(
            f"commission for order {commission.order_id} is {commission.status}, not processed"
        )
    return commission.model_copy(update={"status": "paid"})


def sync_with_payout(commissions: Iterable[Commission], payout: Payout) -> List[Commission]:
    """Bring commissions in line with the payout that settles them.

    A processing payout marks pending commissions processed; a completed payout
    marks them paid. Other payout states leave commissions untouched.
    """
    synced = []
    for c in commissions:
        if c.restaurant_id != payout.restaurant_id or c.order_id not in payout.orders:
            raise ValidationError(f"commission for order {c.order_id} is not part of this payout")
        if payout.status in ("processing", "completed") and c.status == "pending":
            c = mark_processed(c, payout.id, payout.processed_at)
        if payout.status == "completed" and c.status == "processed":
            c = mark_paid(c)
        synced.append(c)
    logging.info(
        "Commissions synced | restaurant=%s | payout=%s | status=%s | count=%s",
        payout.restaurant_id,
        payout.id,
        payout.status,
        len(synced),
    )
    return synced
