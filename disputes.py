from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, Optional, Sequence, Tuple

from commission import period_for
from errors import InvalidTransition, ValidationError
from models import (
    DISPUTE_RAISER_KINDS,
    Actor,
    Dispute,
    DisputeComment,
    RefundAdjustment,
    build,
)
from money import ZERO, as_decimal, require_non_negative, round_money

SUBJECT_MAX_LENGTH = 100
DESCRIPTION_MAX_LENGTH = 1000
RESOLUTION_MAX_LENGTH = 1000

DISPUTE_TRANSITIONS = {
    "open": frozenset({"in_progress", "closed"}),
    "in_progress": frozenset({"resolved", "closed"}),
    "resolved": frozenset({"closed"}),
    "closed": frozenset(),
}
PRIORITIES = ("low", "medium", "high", "urgent")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def open_dispute(
    order_id: str,
    raised_by: Actor,
    type: str,
    subject: str,
    description: str,
    priority: str = "medium",
    images: Sequence[str] = (),
    dispute_id: Optional[str] = None,
) -> Dispute:
    if not isinstance(raised_by, Actor):
        raised_by = build(Actor, **dict(raised_by))
    if raised_by.kind not in DISPUTE_RAISER_KINDS:
        raise ValidationError(f"{raised_by.kind} cannot raise a dispute")
    subject = (subject or "").strip()
    description = (description or "").strip()
    if len(subject) > SUBJECT_MAX_LENGTH:
        raise ValidationError(f"subject cannot exceed {SUBJECT_MAX_LENGTH} characters")
    if len(description) > DESCRIPTION_MAX_LENGTH:
        raise ValidationError(f"description cannot exceed {DESCRIPTION_MAX_LENGTH} characters")

    dispute = build(
        Dispute,
        id=dispute_id or uuid.uuid4().hex,
        order_id=order_id,
        raised_by=raised_by,
        type=type,
        subject=subject,
        description=description,
        images=list(images),
        priority=priority,
    )
    logging.info("Dispute opened | order=%s | dispute=%s | type=%s", order_id, dispute.id, type)
    return dispute


def transition(dispute: Dispute, new_status: str) -> Dispute:
    if new_status not in DISPUTE_TRANSITIONS:
        raise ValidationError(f"unknown dispute status: {new_status!r}")
    if new_status not in DISPUTE_TRANSITIONS[dispute.status]:
        raise InvalidTransition(f"dispute {dispute.id} cannot move from {dispute.status} to {new_status}")
    return dispute.model_copy(update={"status": new_status})


def resolve(
    dispute: Dispute,
    resolution: str,
    refund_amount: Any,
    restaurant_id: str,
    resolved_by: Optional[str] = None,
    resolved_at: Optional[datetime] = None,
) -> Tuple[Dispute, Optional[RefundAdjustment]]:
    """Resolve an open or in-progress dispute.

    Returns the resolved dispute and, for a non-zero refund, the adjustment to
    deduct from the restaurant's payout for the month after resolution.
    """
    if dispute.status not in ("open", "in_progress"):
        raise InvalidTransition(f"dispute {dispute.id} is {dispute.status} and cannot be resolved")
    if resolution is not None and len(resolution) > RESOLUTION_MAX_LENGTH:
        raise ValidationError(f"resolution cannot exceed {RESOLUTION_MAX_LENGTH} characters")
    refund = round_money(require_non_negative(as_decimal(refund_amount, "refund_amount"), "refund_amount"))
    resolved_at = resolved_at or _now()

    resolved = dispute.model_copy(
        update={
            "status": "resolved",
            "resolution": resolution,
            "refund_amount": refund,
            "resolved_at": resolved_at,
            "resolved_by": resolved_by,
        }
    )

    adjustment = None
    if refund > 0:
        adjustment = RefundAdjustment(
            dispute_id=dispute.id,
            order_id=dispute.order_id,
            restaurant_id=restaurant_id,
            amount=-refund,
            period=period_for(resolved_at).next(),
        )
    logging.info(
        "✅ Dispute resolved | dispute=%s | order=%s | refund=%s", dispute.id, dispute.order_id, refund
    )
    return resolved, adjustment


def assign(dispute: Dispute, admin_id: str) -> Dispute:
    """Hand the dispute to an admin. An open dispute moves to in_progress."""
    if dispute.status in ("resolved", "closed"):
        raise InvalidTransition(f"dispute {dispute.id} is {dispute.status} and cannot be reassigned")
    if not admin_id:
        raise ValidationError("admin id is required")
    status = "in_progress" if dispute.status == "open" else dispute.status
    return dispute.model_copy(update={"assigned_to": admin_id, "status": status})


def set_priority(dispute: Dispute, priority: str) -> Dispute:
    if priority not in PRIORITIES:
        raise ValidationError(f"unknown priority: {priority!r}")
    return dispute.model_copy(update={"priority": priority})


def add_comment(
    dispute: Dispute,
    author: Actor,
    text: str,
    is_internal: bool = False,
    at: Optional[datetime] = None,
) -> Dispute:
    comment = build(DisputeComment, author=author, comment=text, is_internal=is_internal, created_at=at or _now())
    return dispute.model_copy(update={"comments": [*dispute.comments, comment]})


def summarize(disputes: Iterable[Dispute]) -> Dict[str, Any]:
    """Counts per status and priority plus refund totals."""
    by_status: Counter = Counter()
    by_priority: Counter = Counter()
    total_refund = ZERO
    refund_count = 0
    total = 0
    for d in disputes:
        total += 1
        by_status[d.status] += 1
        by_priority[d.priority] += 1
        if d.refund_amount:
            total_refund += d.refund_amount
            refund_count += 1
    return {
        "total": total,
        "by_status": {s: by_status.get(s, 0) for s in DISPUTE_TRANSITIONS},
        "by_priority": {p: by_priority.get(p, 0) for p in PRIORITIES},
        "refunds": {"total_amount": round_money(total_refund), "count": refund_count},
    }
