"""
In-process ``TripStore``.

Backs single-node deployments and the test suite.  Records are copied on
the way in and out so callers never alias stored state; the
compare-and-set runs without an ``await`` between check and write, which
makes it atomic on the event loop.
"""

from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from typing import Optional

from src.domain.entities import Bid, Transition, Trip
from src.domain.enums import TERMINAL_STATUSES, TripStatus
from src.domain.ports import TripStore


class InMemoryTripStore(TripStore):
    def __init__(self) -> None:
        self._trips: dict[str, Trip] = {}
        self._by_key: dict[str, str] = {}
        self._bids: dict[str, Bid] = {}
        self._bids_by_trip: dict[str, list[str]] = {}
        self._archived: set[str] = set()

    async def create_trip(self, trip: Trip) -> Trip:
        if trip.id in self._trips:
            raise ValueError(f"Trip {trip.id} already exists")
        self._trips[trip.id] = replace(trip)
        if trip.idempotency_key:
            self._by_key[trip.idempotency_key] = trip.id
        return replace(trip)

    async def get_trip(self, trip_id: str) -> Optional[Trip]:
        trip = self._trips.get(trip_id)
        return replace(trip) if trip else None

    async def get_by_idempotency_key(self, key: str) -> Optional[Trip]:
        trip_id = self._by_key.get(key)
        return await self.get_trip(trip_id) if trip_id else None

    async def list_trips(self, status: TripStatus) -> list[Trip]:
        return [
            replace(t)
            for t in self._trips.values()
            if t.status == status and t.id not in self._archived
        ]

    async def compare_and_set(
        self, transition: Transition, at: datetime
    ) -> Optional[Trip]:
        trip = self._trips.get(transition.trip_id)
        if trip is None or trip.status != transition.from_status:
            return None
        trip.apply(transition, at)
        return replace(trip)

    async def add_bid(self, bid: Bid) -> bool:
        if bid.id in self._bids:
            return False
        self._bids[bid.id] = bid
        self._bids_by_trip.setdefault(bid.trip_id, []).append(bid.id)
        return True

    async def get_bid(self, bid_id: str) -> Optional[Bid]:
        return self._bids.get(bid_id)

    async def list_bids(self, trip_id: str) -> list[Bid]:
        return [self._bids[b] for b in self._bids_by_trip.get(trip_id, ())]

    async def archive_terminal(self, before: datetime) -> int:
        archived = 0
        for trip in self._trips.values():
            if (
                trip.status in TERMINAL_STATUSES
                and trip.updated_at < before
                and trip.id not in self._archived
            ):
                self._archived.add(trip.id)
                archived += 1
        return archived

    def is_archived(self, trip_id: str) -> bool:
        return trip_id in self._archived
