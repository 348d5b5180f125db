"""
Order tracking ledger.

Status events for an order are append-only. Each append is checked against the
current latest status so the history always reads as a forward-moving sequence:

    placed < confirmed < preparing < ready < picked_up < out_for_delivery < delivered

`cancelled` and `rejected` can follow any non-terminal status. Once an order is
delivered, cancelled or rejected no further events are accepted.

Appends for one order are serialised through the store's `transaction(order_id)`,
which holds a per-order lock for the read-check-write sequence.
"""
from __future__ import annotations

import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Protocol, Tuple

from errors import InvalidTransition, NotFound, ValidationError
from models import (
    TRACKING_ACTOR_KINDS,
    TRACKING_STATUSES,
    Actor,
    Location,
    TrackingEvent,
    build,
)

FORWARD_ORDER: Tuple[str, ...] = (
    "placed",
    "confirmed",
    "preparing",
    "ready",
    "picked_up",
    "out_for_delivery",
    "delivered",
)
TERMINAL_STATUSES = frozenset({"delivered", "cancelled", "rejected"})
ABORT_STATUSES = frozenset({"cancelled", "rejected"})
NOTES_MAX_LENGTH = 200


def is_terminal(status: Optional[str]) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(current: Optional[str], new: str) -> bool:
    """Whether `new` may follow `current`. `current=None` means no events yet."""
    if new not in TRACKING_STATUSES:
        return False
    if current is None:
        return True
    if current in TERMINAL_STATUSES:
        return False
    if new in ABORT_STATUSES:
        return True
    return FORWARD_ORDER.index(new) > FORWARD_ORDER.index(current)


def allowed_next(current: Optional[str]) -> List[str]:
    return [s for s in TRACKING_STATUSES if can_transition(current, s)]


# -------------------------------
# Stores
# -------------------------------
class TrackingSession(Protocol):
    def events(self) -> List[TrackingEvent]: ...

    def append(self, event: TrackingEvent) -> None: ...


class TrackingStore(Protocol):
    def events(self, order_id: str) -> List[TrackingEvent]: ...

    def transaction(self, order_id: str): ...


class _MemorySession:
    def __init__(self, store: "InMemoryTrackingStore", order_id: str):
        self._store = store
        self._order_id = order_id

    def events(self) -> List[TrackingEvent]:
        return list(self._store._events[self._order_id])

    def append(self, event: TrackingEvent) -> None:
        self._store._events[self._order_id].append(event)


class InMemoryTrackingStore:
    """Process-local store with one lock per order id."""

    def __init__(self) -> None:
        self._events: Dict[str, List[TrackingEvent]] = defaultdict(list)
        self._locks: Dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def _lock_for(self, order_id: str) -> threading.Lock:
        with self._locks_guard:
            lock = self._locks.get(order_id)
            if lock is None:
                lock = self._locks[order_id] = threading.Lock()
            return lock

    def events(self, order_id: str) -> List[TrackingEvent]:
        with self._lock_for(order_id):
            return list(self._events.get(order_id, ()))

    @contextmanager
    def transaction(self, order_id: str) -> Iterator[_MemorySession]:
        with self._lock_for(order_id):
            yield _MemorySession(self, order_id)


# -------------------------------
# History view
# -------------------------------
class EventHistory:
    """Events of one order, oldest first.

    Iterating reads the store again, so the same object can be iterated any
    number of times and each pass sees the events present at that moment.
    """

    def __init__(self, store: TrackingStore, order_id: str):
        self._store = store
        self.order_id = order_id

    def __iter__(self) -> Iterator[TrackingEvent]:
        events = self._store.events(self.order_id)
        yield from sorted(events, key=lambda e: e.timestamp)

    def __len__(self) -> int:
        return len(self._store.events(self.order_id))

    def statuses(self) -> List[str]:
        return [e.status for e in self]


def _latest(events: List[TrackingEvent]) -> Optional[TrackingEvent]:
    """Event with the greatest timestamp; among equal timestamps, the one appended last."""
    if not events:
        return None
    return max(enumerate(events), key=lambda pair: (pair[1].timestamp, pair[0]))[1]


# -------------------------------
# Ledger
# -------------------------------
class OrderTrackingLedger:
    def __init__(self, store: Optional[TrackingStore] = None):
        self.store = store if store is not None else InMemoryTrackingStore()

    def append_event(
        self,
        order_id: str,
        status: str,
        actor: Actor,
        location: Optional[Location] = None,
        estimated_time: Optional[datetime] = None,
        notes: Optional[str] = None,
        timestamp: Optional[datetime] = None,
    ) -> TrackingEvent:
        """Validate and record a status event, returning it."""
        if status not in TRACKING_STATUSES:
            raise ValidationError(f"unknown order status: {status!r}")
        if not isinstance(actor, Actor):
            actor = build(Actor, **dict(actor))
        if actor.kind not in TRACKING_ACTOR_KINDS:
            raise ValidationError(f"actor kind {actor.kind!r} cannot update order tracking")
        if notes is not None and len(notes) > NOTES_MAX_LENGTH:
            raise ValidationError(f"notes cannot exceed {NOTES_MAX_LENGTH} characters")
        if timestamp is None:
            timestamp = datetime.now(timezone.utc)
        elif timestamp.tzinfo is None:
            # naive timestamps are taken as UTC
            timestamp = timestamp.replace(tzinfo=timezone.utc)

        event = build(
            TrackingEvent,
            order_id=order_id,
            status=status,
            timestamp=timestamp,
            updated_by=actor,
            location=location,
            estimated_time=estimated_time,
            notes=notes,
        )

        with self.store.transaction(order_id) as session:
            latest = _latest(session.events())
            current = latest.status if latest else None
            if not can_transition(current, status):
                logging.warning(
                    "⚠️ Rejected tracking update | order=%s | %s -> %s", order_id, current, status
                )
                if is_terminal(current):
                    raise InvalidTransition(
                        f"order {order_id} is already {current}; no further status updates accepted"
                    )
                raise InvalidTransition(f"order {order_id} cannot move from {current} to {status}")
            if latest is not None and event.timestamp < latest.timestamp:
                raise ValidationError(
                    f"event timestamp {event.timestamp.isoformat()} precedes latest event "
                    f"{latest.timestamp.isoformat()}"
                )
            session.append(event)

        logging.info(
            "✅ Tracking event | order=%s | status=%s | by=%s:%s",
            order_id,
            status,
            actor.kind,
            actor.id,
        )
        return event

    def latest_status(self, order_id: str) -> TrackingEvent:
        latest = _latest(self.store.events(order_id))
        if latest is None:
            raise NotFound(f"no tracking events for order {order_id}")
        return latest

    def history(self, order_id: str) -> EventHistory:
        return EventHistory(self.store, order_id)
