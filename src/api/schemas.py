"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from pydantic import BaseModel, Field

from src.domain.entities import Bid, Location, RouteQuote, Trip, Waypoint
from src.domain.enums import TripMode, TripStatus


# ── Shared ────────────────────────────────────────────────────────────


class PointIn(BaseModel):
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)

    def to_location(self) -> Location:
        return Location(self.lat, self.lng)


class WaypointIn(PointIn):
    label: str = Field(..., min_length=1, max_length=255)

    def to_waypoint(self) -> Waypoint:
        return Waypoint(self.label, self.to_location())


class WaypointOut(BaseModel):
    label: str
    lat: float
    lng: float

    @classmethod
    def from_waypoint(cls, wp: Waypoint) -> "WaypointOut":
        return cls(label=wp.label, lat=wp.location.latitude, lng=wp.location.longitude)


# ── Requests ──────────────────────────────────────────────────────────


class TripCreateRequest(BaseModel):
    rider_id: str = Field(..., min_length=1, max_length=64)
    pickup: WaypointIn
    dropoff: WaypointIn
    mode: TripMode = TripMode.PASSENGER
    category: str = Field("Standard", max_length=32)
    sector: Optional[str] = Field(None, max_length=64)
    proposed_price: Optional[Decimal] = Field(None, gt=0, decimal_places=2)
    distance_km: Optional[float] = Field(None, ge=0)
    duration_min: Optional[float] = Field(None, ge=0)
    idempotency_key: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated UUID to prevent double-booking on retries.",
    )


class BidCreateRequest(BaseModel):
    bid_id: Optional[str] = Field(
        None,
        max_length=64,
        description="Client-generated id; resubmitting it is a no-op.",
    )
    driver_id: str = Field(..., min_length=1, max_length=64)
    driver_name: str = Field(..., min_length=1, max_length=128)
    driver_rating: float = Field(5.0, ge=0, le=5)
    amount: Decimal = Field(..., gt=0, decimal_places=2)


class AcceptRequest(BaseModel):
    bid_id: str


class AutoAcceptRequest(BaseModel):
    policy: str = "lowest_offer"


class CancelRequest(BaseModel):
    expected_status: Optional[TripStatus] = Field(
        None,
        description="Status the caller last saw; a match since then wins over the cancel.",
    )


class PresenceUpdateRequest(PointIn):
    driver_id: str = Field(..., min_length=1, max_length=64)
    sector: str = Field(..., min_length=1, max_length=64)
    available: bool = True


class QuoteRequest(BaseModel):
    pickup: PointIn
    dropoff: PointIn


class IntentRequest(BaseModel):
    text: str = Field(..., max_length=2000)
    pickup_label: Optional[str] = None
    dropoff_label: Optional[str] = None
    category: Optional[str] = None
    mode: Optional[TripMode] = None
    near: Optional[PointIn] = None


# ── Responses ─────────────────────────────────────────────────────────


class TripResponse(BaseModel):
    id: str
    rider_id: str
    status: TripStatus
    mode: TripMode
    category: str
    sector: str
    pickup: WaypointOut
    dropoff: WaypointOut
    proposed_price: Decimal
    distance_km: float
    duration_min: float
    accepted_bid_id: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_trip(cls, trip: Trip) -> "TripResponse":
        return cls(
            id=trip.id,
            rider_id=trip.rider_id,
            status=trip.status,
            mode=trip.mode,
            category=trip.category,
            sector=trip.sector,
            pickup=WaypointOut.from_waypoint(trip.pickup),
            dropoff=WaypointOut.from_waypoint(trip.dropoff),
            proposed_price=trip.proposed_price,
            distance_km=trip.distance_km,
            duration_min=trip.duration_min,
            accepted_bid_id=trip.accepted_bid_id,
            created_at=trip.created_at,
            updated_at=trip.updated_at,
        )


class BidResponse(BaseModel):
    id: str
    trip_id: str
    driver_id: str
    driver_name: str
    driver_rating: float
    amount: Decimal
    submitted_at: datetime

    @classmethod
    def from_bid(cls, bid: Bid) -> "BidResponse":
        return cls(
            id=bid.id,
            trip_id=bid.trip_id,
            driver_id=bid.driver_id,
            driver_name=bid.driver_name,
            driver_rating=bid.driver_rating,
            amount=bid.amount,
            submitted_at=bid.submitted_at,
        )


class PresenceResponse(BaseModel):
    driver_id: str
    sector: str
    cell: str
    available: bool


class QuoteResponse(BaseModel):
    distance_km: float
    duration_min: float
    suggested_fare: Decimal
    geometry: dict[str, Any]

    @classmethod
    def from_quote(cls, quote: RouteQuote) -> "QuoteResponse":
        return cls(
            distance_km=quote.distance_km,
            duration_min=quote.duration_min,
            suggested_fare=quote.suggested_fare,
            geometry=quote.geometry,
        )


class IntentResponse(BaseModel):
    pickup_label: Optional[str] = None
    dropoff_label: Optional[str] = None
    category: Optional[str] = None
    mode: Optional[TripMode] = None


class HealthResponse(BaseModel):
    status: str = "ok"


class StatsResponse(BaseModel):
    drivers_online: int
    open_bid_books: int
    locked_trips: int


class ErrorResponse(BaseModel):
    error: str
    detail: str
    trip: Optional[TripResponse] = None
