"""
Collaborator contracts consumed by the dispatch core.

Concrete adapters live in ``src.infrastructure``; the coordinator only
depends on these abstractions so each one can be swapped (in-memory for
tests, PostgreSQL / Redis / OSRM in production).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from pydantic import BaseModel

from .entities import Bid, Location, Transition, Trip, TripIntent
from .enums import TripStatus

EventHandler = Callable[[str, dict[str, Any]], Awaitable[None]]
Unsubscribe = Callable[[], Awaitable[None]]


@dataclass(frozen=True)
class RouteResult:
    distance_km: float
    duration_min: float
    geometry: dict[str, Any]


class TripStore(ABC):
    """Persistent store for trips and bids."""

    @abstractmethod
    async def create_trip(self, trip: Trip) -> Trip: ...

    @abstractmethod
    async def get_trip(self, trip_id: str) -> Optional[Trip]: ...

    @abstractmethod
    async def get_by_idempotency_key(self, key: str) -> Optional[Trip]: ...

    @abstractmethod
    async def list_trips(self, status: TripStatus) -> list[Trip]: ...

    @abstractmethod
    async def compare_and_set(
        self, transition: Transition, at: datetime
    ) -> Optional[Trip]:
        """Apply *transition* only if the stored status still equals
        ``transition.from_status``.  Returns the updated trip, or ``None``
        when another writer got there first."""

    @abstractmethod
    async def add_bid(self, bid: Bid) -> bool:
        """Persist *bid*; returns False if a bid with that id already exists."""

    @abstractmethod
    async def get_bid(self, bid_id: str) -> Optional[Bid]: ...

    @abstractmethod
    async def list_bids(self, trip_id: str) -> list[Bid]:
        """Bids for *trip_id* in insertion order."""

    @abstractmethod
    async def archive_terminal(self, before: datetime) -> int:
        """Mark terminal trips last updated before *before* as archived."""


class EventBus(ABC):
    """Topic-keyed publish/subscribe transport (at-least-once)."""

    @abstractmethod
    async def publish(self, topic: str, event: BaseModel) -> None: ...

    @abstractmethod
    async def subscribe(self, topic: str, handler: EventHandler) -> Unsubscribe: ...

    async def close(self) -> None:
        return None


class RoutingProvider(ABC):
    @abstractmethod
    async def route(
        self, origin: Location, destination: Location
    ) -> Optional[RouteResult]:
        """Return the route, or ``None`` when routing is unavailable."""

    async def close(self) -> None:
        return None


class IntentExtractor(ABC):
    @abstractmethod
    async def parse(
        self, text: str, approx_location: Optional[Location] = None
    ) -> Optional[TripIntent]:
        """Best-effort extraction; ``None`` means nothing usable."""

    async def close(self) -> None:
        return None
