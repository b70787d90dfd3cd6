"""
Dispatch Coordinator
====================

Orchestrates one trip from request to terminal state:

1. ``request_trip``  -- persist REQUESTED, query presence around pickup,
   open bidding (BIDDING) or raise ``NoCoverage`` leaving the trip
   REQUESTED for a later ``dispatch`` retry.
2. ``submit_bid``    -- collect + persist driver offers while BIDDING.
3. ``accept_bid``    -- BIDDING -> MATCHED, closes the collector.
4. ``start_trip`` / ``complete_trip`` -- driver status pushes.
5. ``cancel``        -- REQUESTED | BIDDING | MATCHED -> CANCELLED.

Concurrency safety
------------------
* Every transition for a trip runs under ``TripLocks.hold(trip_id)``, so
  transitions for one trip are serialised and different trips never block
  each other.  Status events are published under the same lock, keeping
  them in transition order per trip.
* The store's ``compare_and_set`` is the last line of defence: status and
  ``accepted_bid_id`` change together, and only for the writer whose
  expected status still matches.  At most one bid can ever win.
* Bid submission also holds the trip lock: the collector accepts or
  rejects a bid before it is persisted, so a rejected bid never reaches
  the store and an accept never sees a half-submitted bid.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional

from src.domain.bidding import BidCollector
from src.domain.entities import (
    Bid,
    DriverPresence,
    Location,
    RouteQuote,
    Transition,
    Trip,
    TripDetails,
    TripIntent,
    utcnow,
)
from src.domain.enums import MATCHED_STATUSES, TripEvent, TripStatus
from src.domain.errors import (
    AlreadyMatched,
    BidNotFound,
    InvalidState,
    InvalidTransition,
    NoCoverage,
    RoutingUnavailable,
    TripNotFound,
)
from src.domain.events import (
    BidSubmitted,
    PresenceUpdated,
    TripDispatched,
    TripStatusChanged,
    sector_dispatch_topic,
    sector_presence_topic,
    trip_bids_topic,
    trip_status_topic,
)
from src.domain.policies import BidSelectionPolicy
from src.domain.ports import EventBus, IntentExtractor, RoutingProvider, TripStore
from src.domain.presence import PresenceTracker
from src.domain.pricing import DEFAULT_SCHEDULE, FareSchedule
from src.infrastructure.intent import NullIntentExtractor
from src.infrastructure.locks import TripLocks

logger = logging.getLogger(__name__)


class DispatchCoordinator:
    def __init__(
        self,
        store: TripStore,
        bus: EventBus,
        presence: PresenceTracker,
        collector: BidCollector,
        routing: RoutingProvider,
        intents: Optional[IntentExtractor] = None,
        locks: Optional[TripLocks] = None,
        fare_schedule: FareSchedule = DEFAULT_SCHEDULE,
        dispatch_radius_km: Optional[float] = 15.0,
        default_sector: str = "Harare",
    ):
        self.store = store
        self.bus = bus
        self.presence = presence
        self.collector = collector
        self.routing = routing
        self.intents = intents or NullIntentExtractor()
        self.locks = locks or TripLocks()
        self.fare_schedule = fare_schedule
        self.dispatch_radius_km = dispatch_radius_km
        self.default_sector = default_sector

    # ── Queries ───────────────────────────────────────────────────────

    async def get_trip(self, trip_id: str) -> Trip:
        trip = await self.store.get_trip(trip_id)
        if trip is None:
            raise TripNotFound(f"Trip {trip_id} not found")
        return trip

    async def list_bids(self, trip_id: str) -> list[Bid]:
        await self.get_trip(trip_id)
        if self.collector.knows(trip_id):
            return self.collector.bids(trip_id)
        return await self.store.list_bids(trip_id)

    async def quote(self, pickup: Location, dropoff: Location) -> RouteQuote:
        route = await self.routing.route(pickup, dropoff)
        if route is None:
            raise RoutingUnavailable("No route available for the requested points")
        return RouteQuote(
            distance_km=route.distance_km,
            duration_min=route.duration_min,
            geometry=route.geometry,
            suggested_fare=self.fare_schedule.fare_for(route.distance_km),
        )

    async def refine_request(
        self,
        draft: TripIntent,
        text: str,
        approx_location: Optional[Location] = None,
    ) -> TripIntent:
        """Merge the assistant's reading of *text* into *draft*.

        A missing or partial answer only fills what it knows; it never
        fails the request.
        """
        if not text.strip():
            return draft
        intent = await self.intents.parse(text, approx_location)
        if intent is None:
            return draft
        return intent.merged_into(draft)

    def stats(self) -> dict[str, int]:
        return {
            "drivers_online": self.presence.count(),
            "open_bid_books": len(self.collector.open_trip_ids()),
            "locked_trips": len(self.locks),
        }

    # ── Presence ──────────────────────────────────────────────────────

    async def record_presence(
        self,
        driver_id: str,
        location: Location,
        sector: str,
        available: bool = True,
    ) -> DriverPresence:
        entry = self.presence.update(driver_id, location, sector, available)
        await self.bus.publish(
            sector_presence_topic(sector),
            PresenceUpdated(
                driver_id=driver_id,
                sector=sector,
                lat=location.latitude,
                lng=location.longitude,
                available=available,
            ),
        )
        return entry

    async def remove_presence(self, driver_id: str) -> bool:
        return self.presence.remove(driver_id)

    # ── Trip lifecycle ────────────────────────────────────────────────

    async def request_trip(self, rider_id: str, details: TripDetails) -> Trip:
        if details.idempotency_key:
            existing = await self.store.get_by_idempotency_key(details.idempotency_key)
            if existing is not None:
                if existing.status == TripStatus.REQUESTED:
                    return await self.dispatch(existing.id)
                return existing

        distance, duration = details.distance_km, details.duration_min
        if distance is None:
            quote = await self.quote(details.pickup.location, details.dropoff.location)
            distance, duration = quote.distance_km, quote.duration_min
        price = details.proposed_price
        if price is None:
            price = self.fare_schedule.fare_for(distance)

        trip = Trip(
            id=str(uuid.uuid4()),
            rider_id=rider_id,
            mode=details.mode,
            category=details.category,
            pickup=details.pickup,
            dropoff=details.dropoff,
            sector=details.sector or self.default_sector,
            proposed_price=price,
            distance_km=distance,
            duration_min=duration or 0.0,
            idempotency_key=details.idempotency_key,
        )
        await self.store.create_trip(trip)
        logger.info(
            "Trip %s requested by %s in %s (%.2f km, %s)",
            trip.id, rider_id, trip.sector, distance, price,
        )
        await self._publish_status(trip, None)
        return await self.dispatch(trip.id)

    async def dispatch(self, trip_id: str) -> Trip:
        """Open bidding for a REQUESTED trip; no-op if already BIDDING."""
        async with self.locks.hold(trip_id):
            trip = await self.get_trip(trip_id)
            if trip.status == TripStatus.BIDDING:
                return trip
            transition = trip.plan(TripEvent.DISPATCH_OPENED)
            drivers = self.presence.query_eligible(
                trip.sector,
                trip.pickup.location if self.dispatch_radius_km else None,
                self.dispatch_radius_km,
            )
            if not drivers:
                logger.info("No coverage for trip %s in %s", trip.id, trip.sector)
                raise NoCoverage(
                    f"No eligible drivers in {trip.sector} for trip {trip.id}",
                    trip=trip,
                )
            updated = await self._commit(transition)
            self.collector.open(trip_id)
            await self.bus.publish(
                sector_dispatch_topic(updated.sector),
                TripDispatched(
                    trip_id=updated.id,
                    sector=updated.sector,
                    driver_ids=sorted(drivers),
                    mode=updated.mode.value,
                    category=updated.category,
                    pickup_label=updated.pickup.label,
                    dropoff_label=updated.dropoff.label,
                    proposed_price=str(updated.proposed_price),
                    distance_km=updated.distance_km,
                ),
            )
            logger.info("Trip %s dispatched to %d drivers", trip_id, len(drivers))
            return updated

    async def submit_bid(self, trip_id: str, bid: Bid) -> Bid:
        """Collect *bid*; a redelivered bid returns the first stored copy.

        The collector decides first and only an accepted bid is persisted.
        The trip lock is held across both steps so an accept or cancel
        cannot close the book between the decision and the insert.
        """
        async with self.locks.hold(trip_id):
            trip = await self.get_trip(trip_id)
            if trip.status != TripStatus.BIDDING:
                raise InvalidState(
                    f"Trip {trip_id} is {trip.status.value}, not accepting bids",
                    trip=trip,
                )
            if bid.trip_id != trip_id:
                bid = replace(bid, trip_id=trip_id)

            existing = self.collector.get(trip_id, bid.id)
            if existing is not None:
                if existing.driver_id != bid.driver_id:
                    raise InvalidState(f"Bid id {bid.id} already belongs to another driver")
                return existing
            if not self.collector.is_open(trip_id):
                raise InvalidState(f"Bidding for trip {trip_id} is closed", trip=trip)

            self.collector.submit(trip_id, bid)
            try:
                stored = await self.store.add_bid(bid)
            except BaseException:
                self.collector.withdraw(trip_id, bid.id)
                raise
            if not stored:
                self.collector.withdraw(trip_id, bid.id)
                prior = await self.store.get_bid(bid.id)
                if prior is None or prior.driver_id != bid.driver_id or prior.trip_id != trip_id:
                    raise InvalidState(f"Bid id {bid.id} already belongs to another driver")
                self.collector.keep(trip_id, prior)
                return prior

        await self.bus.publish(
            trip_bids_topic(trip_id),
            BidSubmitted(
                trip_id=trip_id,
                bid_id=bid.id,
                driver_id=bid.driver_id,
                driver_name=bid.driver_name,
                driver_rating=bid.driver_rating,
                amount=str(bid.amount),
            ),
        )
        logger.info("Bid %s from %s on trip %s: %s", bid.id, bid.driver_id, trip_id, bid.amount)
        return bid

    async def accept_bid(self, trip_id: str, bid_id: str) -> Trip:
        async with self.locks.hold(trip_id):
            trip = await self.get_trip(trip_id)
            if trip.status in MATCHED_STATUSES:
                raise AlreadyMatched(
                    f"Trip {trip_id} already matched to bid {trip.accepted_bid_id}",
                    trip=trip,
                )
            transition = trip.plan(TripEvent.BID_ACCEPTED, bid_id)
            if self.collector.get(trip_id, bid_id) is None:
                raise BidNotFound(f"Bid {bid_id} is not open for trip {trip_id}", trip=trip)
            updated = await self._commit(transition)
            self.collector.close(trip_id)
            logger.info("Trip %s matched to bid %s", trip_id, bid_id)
            return updated

    async def auto_accept(self, trip_id: str, policy: BidSelectionPolicy) -> Trip:
        trip = await self.get_trip(trip_id)
        if trip.status in MATCHED_STATUSES:
            raise AlreadyMatched(f"Trip {trip_id} already matched", trip=trip)
        choice = policy.select(self.collector.bids(trip_id))
        if choice is None:
            raise BidNotFound(f"No bids to choose from for trip {trip_id}", trip=trip)
        return await self.accept_bid(trip_id, choice.id)

    async def cancel(
        self, trip_id: str, expected_status: Optional[TripStatus] = None
    ) -> Trip:
        """Cancel; safe to repeat.

        *expected_status* is the status the caller last saw.  If a
        concurrent accept has matched the trip since then, the cancel
        loses with ``AlreadyMatched`` instead of tearing down the match.
        """
        async with self.locks.hold(trip_id):
            trip = await self.get_trip(trip_id)
            if trip.status == TripStatus.CANCELLED:
                return trip
            if (
                expected_status is not None
                and expected_status not in MATCHED_STATUSES
                and trip.status in MATCHED_STATUSES
            ):
                raise AlreadyMatched(
                    f"Trip {trip_id} was matched before the cancel arrived",
                    trip=trip,
                )
            transition = trip.plan(TripEvent.CANCEL)
            updated = await self._commit(transition)
            self.collector.close(trip_id)
            self.collector.discard(trip_id)
            logger.info("Trip %s cancelled from %s", trip_id, transition.from_status.value)
            return updated

    async def start_trip(self, trip_id: str) -> Trip:
        return await self._advance(trip_id, TripEvent.TRIP_STARTED)

    async def complete_trip(self, trip_id: str) -> Trip:
        updated = await self._advance(trip_id, TripEvent.TRIP_COMPLETED)
        self.collector.discard(trip_id)
        return updated

    # ── Maintenance ───────────────────────────────────────────────────

    async def recover(self) -> int:
        """Reopen bid books for trips that were BIDDING before a restart."""
        trips = await self.store.list_trips(TripStatus.BIDDING)
        now = utcnow()
        for trip in trips:
            # updated_at is the BIDDING transition; bids do not touch it
            opened_at = trip.updated_at
            if opened_at.tzinfo is None:
                opened_at = opened_at.replace(tzinfo=timezone.utc)
            self.collector.restore(
                trip.id,
                await self.store.list_bids(trip.id),
                elapsed=(now - opened_at).total_seconds(),
            )
        if trips:
            logger.info("Recovered %d bidding trips", len(trips))
        return len(trips)

    async def archive(self, before: datetime) -> int:
        return await self.store.archive_terminal(before)

    # ── Internals ─────────────────────────────────────────────────────

    async def _advance(self, trip_id: str, event: TripEvent) -> Trip:
        async with self.locks.hold(trip_id):
            trip = await self.get_trip(trip_id)
            updated = await self._commit(trip.plan(event))
            logger.info("Trip %s -> %s", trip_id, updated.status.value)
            return updated

    async def _commit(self, transition: Transition) -> Trip:
        updated = await self.store.compare_and_set(transition, utcnow())
        if updated is None:
            current = await self.store.get_trip(transition.trip_id)
            if current is not None and current.status in MATCHED_STATUSES:
                raise AlreadyMatched(
                    f"Trip {transition.trip_id} already matched", trip=current
                )
            raise InvalidTransition(
                f"Trip {transition.trip_id} left {transition.from_status.value} "
                f"before {transition.event.value} could apply",
                trip=current,
            )
        await self._publish_status(updated, transition.from_status)
        return updated

    async def _publish_status(
        self, trip: Trip, old_status: Optional[TripStatus]
    ) -> None:
        await self.bus.publish(
            trip_status_topic(trip.id),
            TripStatusChanged(
                trip_id=trip.id,
                old_status=old_status.value if old_status else None,
                new_status=trip.status.value,
                accepted_bid_id=trip.accepted_bid_id,
            ),
        )
