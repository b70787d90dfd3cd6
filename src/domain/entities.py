"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Trip``: ``plan`` validates an event against the
  transition table and returns a ``Transition`` that the store applies with
  a single compare-and-set
  (REQUESTED -> BIDDING -> MATCHED -> IN_PROGRESS -> COMPLETED | CANCELLED).
- ``Bid`` is an immutable value; once submitted it is never mutated.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Optional

from .enums import (
    MATCHED_STATUSES,
    TERMINAL_STATUSES,
    TRIP_TRANSITIONS,
    TripEvent,
    TripMode,
    TripStatus,
)
from .errors import InvalidTransition


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ── Value Objects ─────────────────────────────────────────────────────


@dataclass(frozen=True)
class Location:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Waypoint:
    label: str
    location: Location


@dataclass(frozen=True)
class Transition:
    """A validated, not-yet-applied status change."""

    trip_id: str
    event: TripEvent
    from_status: TripStatus
    to_status: TripStatus
    accepted_bid_id: Optional[str]


@dataclass(frozen=True)
class RouteQuote:
    distance_km: float
    duration_min: float
    geometry: dict[str, Any]
    suggested_fare: Decimal


@dataclass(frozen=True)
class TripIntent:
    """Structured, possibly partial output of the intent extractor."""

    pickup_label: Optional[str] = None
    dropoff_label: Optional[str] = None
    category: Optional[str] = None
    mode: Optional[TripMode] = None

    def merged_into(self, draft: "TripIntent") -> "TripIntent":
        """Overlay the fields this intent knows onto *draft*."""
        return TripIntent(
            pickup_label=self.pickup_label or draft.pickup_label,
            dropoff_label=self.dropoff_label or draft.dropoff_label,
            category=self.category or draft.category,
            mode=self.mode or draft.mode,
        )


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class TripDetails:
    """What a rider submits when requesting a trip."""

    pickup: Waypoint
    dropoff: Waypoint
    mode: TripMode = TripMode.PASSENGER
    category: str = "Standard"
    sector: Optional[str] = None
    proposed_price: Optional[Decimal] = None
    distance_km: Optional[float] = None
    duration_min: Optional[float] = None
    idempotency_key: Optional[str] = None


@dataclass
class Trip:
    id: str
    rider_id: str
    pickup: Waypoint
    dropoff: Waypoint
    sector: str
    proposed_price: Decimal
    distance_km: float
    duration_min: float
    mode: TripMode = TripMode.PASSENGER
    category: str = "Standard"
    status: TripStatus = TripStatus.REQUESTED
    accepted_bid_id: Optional[str] = None
    idempotency_key: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def plan(self, event: TripEvent, bid_id: Optional[str] = None) -> Transition:
        """Validate *event* against the current status, else raise."""
        target = TRIP_TRANSITIONS[event].get(self.status)
        if target is None:
            raise InvalidTransition(
                f"Cannot apply {event.value} to trip {self.id} in {self.status.value}",
                trip=self,
            )
        if event is TripEvent.BID_ACCEPTED:
            if not bid_id:
                raise InvalidTransition("Accepting requires a bid id", trip=self)
            accepted = bid_id
        elif target in MATCHED_STATUSES:
            accepted = self.accepted_bid_id
        else:
            accepted = None
        return Transition(
            trip_id=self.id,
            event=event,
            from_status=self.status,
            to_status=target,
            accepted_bid_id=accepted,
        )

    def apply(self, transition: Transition, at: Optional[datetime] = None) -> None:
        """Write a planned transition onto this instance (status + bid together)."""
        self.status = transition.to_status
        self.accepted_bid_id = transition.accepted_bid_id
        self.updated_at = at or utcnow()


@dataclass(frozen=True)
class Bid:
    id: str
    trip_id: str
    driver_id: str
    driver_name: str
    amount: Decimal
    driver_rating: float = 5.0
    submitted_at: datetime = field(default_factory=utcnow)


@dataclass
class DriverPresence:
    driver_id: str
    location: Location
    sector: str
    cell: str
    updated_at: float
    available: bool = True
