"""
Realtime events and topic names.

Payloads are pydantic models so they serialise identically on the
in-memory and Redis buses.  Delivery is at-least-once and may reorder;
consumers must be idempotent.
"""

from __future__ import annotations

from datetime import datetime
from typing import Literal, Optional

from pydantic import BaseModel, Field

from .entities import utcnow

# Inbound topics fed by driver clients
DRIVER_BIDS_TOPIC = "driver-bids"
DRIVER_PRESENCE_TOPIC = "driver-presence"


def trip_status_topic(trip_id: str) -> str:
    return f"trip-status:{trip_id}"


def trip_bids_topic(trip_id: str) -> str:
    return f"trip-bids:{trip_id}"


def sector_presence_topic(sector: str) -> str:
    return f"sector-presence:{sector}"


def sector_dispatch_topic(sector: str) -> str:
    return f"sector-dispatch:{sector}"


class DomainEvent(BaseModel):
    event_type: str
    occurred_at: datetime = Field(default_factory=utcnow)


class TripStatusChanged(DomainEvent):
    event_type: Literal["trip.status_changed"] = "trip.status_changed"

    trip_id: str
    old_status: Optional[str] = None
    new_status: str
    accepted_bid_id: Optional[str] = None


class TripDispatched(DomainEvent):
    """Broadcast of a BIDDING trip to the eligible drivers of a sector."""

    event_type: Literal["trip.dispatched"] = "trip.dispatched"

    trip_id: str
    sector: str
    driver_ids: list[str]
    mode: str
    category: str
    pickup_label: str
    dropoff_label: str
    proposed_price: str
    distance_km: float


class BidSubmitted(DomainEvent):
    event_type: Literal["bid.submitted"] = "bid.submitted"

    trip_id: str
    bid_id: str
    driver_id: str
    driver_name: str
    driver_rating: float
    amount: str


class PresenceUpdated(DomainEvent):
    event_type: Literal["presence.updated"] = "presence.updated"

    driver_id: str
    sector: str
    lat: float
    lng: float
    available: bool
