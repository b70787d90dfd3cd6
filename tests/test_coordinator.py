"""
Dispatch coordinator scenarios.

Runs the full request -> bid -> accept -> start -> complete lifecycle on
the in-memory store and bus, plus the failure paths riders and drivers
actually hit: no coverage, losing accepts, cancels and redelivered bids.
"""

from __future__ import annotations

import asyncio
from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest

from src.domain.entities import TripIntent, utcnow
from src.domain.enums import TripMode, TripStatus
from src.domain.errors import (
    AlreadyMatched,
    BidNotFound,
    InvalidState,
    InvalidTransition,
    NoCoverage,
    RoutingUnavailable,
    TripNotFound,
)
from src.domain.events import trip_bids_topic, trip_status_topic
from src.domain.policies import BestRatedPolicy, LowestOfferPolicy
from src.infrastructure.intent import NullIntentExtractor
from tests.conftest import (
    AVONDALE,
    BORROWDALE,
    BULAWAYO,
    RecordingHandler,
    make_bid,
    make_details,
)


async def _bidding_trip(coordinator, drivers=("alice", "bob")):
    for driver in drivers:
        await coordinator.record_presence(driver, AVONDALE, "Harare")
    return await coordinator.request_trip("rider-1", make_details())


class TestRequestTrip:
    @pytest.mark.asyncio
    async def test_opens_bidding_when_drivers_nearby(self, coordinator):
        trip = await _bidding_trip(coordinator)
        assert trip.status == TripStatus.BIDDING
        assert trip.proposed_price == Decimal("3.00")
        assert coordinator.collector.is_open(trip.id)

    @pytest.mark.asyncio
    async def test_no_coverage_leaves_trip_requested(self, coordinator):
        with pytest.raises(NoCoverage) as exc:
            await coordinator.request_trip("rider-1", make_details())
        trip = exc.value.trip
        assert trip.status == TripStatus.REQUESTED
        stored = await coordinator.get_trip(trip.id)
        assert stored.status == TripStatus.REQUESTED

    @pytest.mark.asyncio
    async def test_no_coverage_then_retry_dispatch(self, coordinator):
        with pytest.raises(NoCoverage) as exc:
            await coordinator.request_trip("rider-1", make_details())
        await coordinator.record_presence("alice", AVONDALE, "Harare")
        trip = await coordinator.dispatch(exc.value.trip.id)
        assert trip.status == TripStatus.BIDDING

    @pytest.mark.asyncio
    async def test_drivers_in_other_sector_do_not_count(self, coordinator):
        await coordinator.record_presence("alice", BULAWAYO, "Bulawayo")
        with pytest.raises(NoCoverage):
            await coordinator.request_trip("rider-1", make_details())

    @pytest.mark.asyncio
    async def test_drivers_outside_radius_do_not_count(self, coordinator):
        coordinator.dispatch_radius_km = 5.0
        await coordinator.record_presence("alice", BORROWDALE, "Harare")
        with pytest.raises(NoCoverage):
            await coordinator.request_trip("rider-1", make_details())

    @pytest.mark.asyncio
    async def test_stale_drivers_do_not_count(self, coordinator, clock):
        await coordinator.record_presence("alice", AVONDALE, "Harare")
        clock.advance(45)
        with pytest.raises(NoCoverage):
            await coordinator.request_trip("rider-1", make_details())

    @pytest.mark.asyncio
    async def test_dispatch_is_noop_when_bidding(self, coordinator):
        trip = await _bidding_trip(coordinator)
        again = await coordinator.dispatch(trip.id)
        assert again.status == TripStatus.BIDDING

    @pytest.mark.asyncio
    async def test_quotes_missing_distance_and_price(self, coordinator):
        await coordinator.record_presence("alice", AVONDALE, "Harare")
        trip = await coordinator.request_trip(
            "rider-1",
            make_details(distance_km=None, duration_min=None, sector=None),
        )
        assert 3.0 < trip.distance_km < 4.0
        assert trip.duration_min > 0
        assert trip.proposed_price == Decimal("3.00")
        assert trip.sector == "Harare"

    @pytest.mark.asyncio
    async def test_rider_price_is_kept(self, coordinator):
        await coordinator.record_presence("alice", AVONDALE, "Harare")
        trip = await coordinator.request_trip(
            "rider-1",
            make_details(proposed_price=Decimal("4.25"), mode=TripMode.FREIGHT),
        )
        assert trip.proposed_price == Decimal("4.25")
        assert trip.mode == TripMode.FREIGHT

    @pytest.mark.asyncio
    async def test_idempotency_key_returns_same_trip(self, coordinator, store):
        await coordinator.record_presence("alice", AVONDALE, "Harare")
        first = await coordinator.request_trip("rider-1", make_details(idempotency_key="k-1"))
        second = await coordinator.request_trip("rider-1", make_details(idempotency_key="k-1"))
        assert first.id == second.id
        assert len(await store.list_trips(TripStatus.BIDDING)) == 1

    @pytest.mark.asyncio
    async def test_idempotent_retry_redispatches_requested_trip(self, coordinator):
        with pytest.raises(NoCoverage):
            await coordinator.request_trip("rider-1", make_details(idempotency_key="k-2"))
        await coordinator.record_presence("alice", AVONDALE, "Harare")
        trip = await coordinator.request_trip("rider-1", make_details(idempotency_key="k-2"))
        assert trip.status == TripStatus.BIDDING

    @pytest.mark.asyncio
    async def test_unknown_trip(self, coordinator):
        with pytest.raises(TripNotFound):
            await coordinator.get_trip("missing")


class TestBidding:
    @pytest.mark.asyncio
    async def test_bids_listed_in_arrival_order(self, coordinator):
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        await coordinator.submit_bid(trip.id, make_bid("b2", "bob", "4.00"))
        bids = await coordinator.list_bids(trip.id)
        assert [b.id for b in bids] == ["b1", "b2"]
        assert all(b.trip_id == trip.id for b in bids)

    @pytest.mark.asyncio
    async def test_redelivered_bid_returns_first_copy(self, coordinator, bus):
        trip = await _bidding_trip(coordinator)
        seen = RecordingHandler()
        await bus.subscribe(trip_bids_topic(trip.id), seen)

        first = await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        again = await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "3.00"))
        assert again == first
        assert len(await coordinator.list_bids(trip.id)) == 1
        assert len(seen.calls) == 1
        assert seen.payloads[0]["amount"] == "5.00"

    @pytest.mark.asyncio
    async def test_bid_on_requested_trip_rejected(self, coordinator):
        with pytest.raises(NoCoverage) as exc:
            await coordinator.request_trip("rider-1", make_details())
        with pytest.raises(InvalidState):
            await coordinator.submit_bid(exc.value.trip.id, make_bid("b1", "alice", "5.00"))

    @pytest.mark.asyncio
    async def test_bid_after_match_rejected(self, coordinator):
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        await coordinator.accept_bid(trip.id, "b1")
        with pytest.raises(InvalidState):
            await coordinator.submit_bid(trip.id, make_bid("b2", "bob", "4.00"))

    @pytest.mark.asyncio
    async def test_bid_after_window_rejected(self, coordinator, clock):
        coordinator.collector.window_seconds = 60
        trip = await _bidding_trip(coordinator)
        clock.advance(61)
        with pytest.raises(InvalidState):
            await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))

    @pytest.mark.asyncio
    async def test_rejected_bid_is_not_stored(self, coordinator, store, clock):
        coordinator.collector.window_seconds = 60
        trip = await _bidding_trip(coordinator)
        clock.advance(61)
        with pytest.raises(InvalidState):
            await coordinator.submit_bid(trip.id, make_bid("b-late", "alice", "5.00"))
        assert await store.list_bids(trip.id) == []

    @pytest.mark.asyncio
    async def test_store_failure_withdraws_bid(self, coordinator, store):
        trip = await _bidding_trip(coordinator)
        with patch.object(store, "add_bid", AsyncMock(side_effect=RuntimeError("db down"))):
            with pytest.raises(RuntimeError):
                await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        assert await coordinator.list_bids(trip.id) == []

        bid = await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        assert [b.id for b in await store.list_bids(trip.id)] == [bid.id]

    @pytest.mark.asyncio
    async def test_accept_waits_for_bid_being_stored(self, coordinator, store):
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b0", "bob", "4.00"))

        release = asyncio.Event()
        real_add_bid = store.add_bid

        async def slow_add_bid(bid):
            await release.wait()
            return await real_add_bid(bid)

        with patch.object(store, "add_bid", slow_add_bid):
            submit = asyncio.create_task(
                coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
            )
            await asyncio.sleep(0)
            accept = asyncio.create_task(coordinator.accept_bid(trip.id, "b0"))
            await asyncio.sleep(0)
            assert not accept.done()
            release.set()
            await submit
            matched = await accept

        assert matched.accepted_bid_id == "b0"
        stored = [b.id for b in await store.list_bids(trip.id)]
        assert stored == [b.id for b in await coordinator.list_bids(trip.id)] == ["b0", "b1"]


class TestAccept:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, coordinator, bus):
        trip = await _bidding_trip(coordinator)
        seen = RecordingHandler()
        await bus.subscribe(trip_status_topic(trip.id), seen)

        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        matched = await coordinator.accept_bid(trip.id, "b1")
        assert (matched.status, matched.accepted_bid_id) == (TripStatus.MATCHED, "b1")
        assert not coordinator.collector.is_open(trip.id)

        started = await coordinator.start_trip(trip.id)
        assert started.status == TripStatus.IN_PROGRESS
        done = await coordinator.complete_trip(trip.id)
        assert done.status == TripStatus.COMPLETED
        assert done.accepted_bid_id == "b1"

        assert [p["new_status"] for p in seen.payloads] == [
            "MATCHED",
            "IN_PROGRESS",
            "COMPLETED",
        ]

    @pytest.mark.asyncio
    async def test_second_accept_gets_already_matched(self, coordinator):
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        await coordinator.submit_bid(trip.id, make_bid("b2", "bob", "4.00"))
        await coordinator.accept_bid(trip.id, "b1")
        with pytest.raises(AlreadyMatched) as exc:
            await coordinator.accept_bid(trip.id, "b2")
        assert exc.value.trip.accepted_bid_id == "b1"
        assert (await coordinator.get_trip(trip.id)).accepted_bid_id == "b1"

    @pytest.mark.asyncio
    async def test_accept_unknown_bid(self, coordinator):
        trip = await _bidding_trip(coordinator)
        with pytest.raises(BidNotFound):
            await coordinator.accept_bid(trip.id, "nope")
        assert (await coordinator.get_trip(trip.id)).status == TripStatus.BIDDING

    @pytest.mark.asyncio
    async def test_accept_bid_from_other_trip(self, coordinator):
        first = await _bidding_trip(coordinator)
        second = await coordinator.request_trip("rider-2", make_details())
        await coordinator.submit_bid(first.id, make_bid("b1", "alice", "5.00"))
        with pytest.raises(BidNotFound):
            await coordinator.accept_bid(second.id, "b1")

    @pytest.mark.asyncio
    async def test_accept_allowed_after_window(self, coordinator, clock):
        coordinator.collector.window_seconds = 60
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        clock.advance(120)
        matched = await coordinator.accept_bid(trip.id, "b1")
        assert matched.status == TripStatus.MATCHED

    @pytest.mark.asyncio
    async def test_auto_accept_lowest(self, coordinator):
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00", rating=4.9))
        await coordinator.submit_bid(trip.id, make_bid("b2", "bob", "4.00", rating=4.1))
        matched = await coordinator.auto_accept(trip.id, LowestOfferPolicy())
        assert matched.accepted_bid_id == "b2"

    @pytest.mark.asyncio
    async def test_auto_accept_best_rated(self, coordinator):
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00", rating=4.9))
        await coordinator.submit_bid(trip.id, make_bid("b2", "bob", "4.00", rating=4.1))
        matched = await coordinator.auto_accept(trip.id, BestRatedPolicy())
        assert matched.accepted_bid_id == "b1"

    @pytest.mark.asyncio
    async def test_auto_accept_without_bids(self, coordinator):
        trip = await _bidding_trip(coordinator)
        with pytest.raises(BidNotFound):
            await coordinator.auto_accept(trip.id, LowestOfferPolicy())

    @pytest.mark.asyncio
    async def test_start_requires_match(self, coordinator):
        trip = await _bidding_trip(coordinator)
        with pytest.raises(InvalidTransition):
            await coordinator.start_trip(trip.id)


class TestCancel:
    @pytest.mark.asyncio
    async def test_cancel_bidding_closes_collector(self, coordinator):
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        cancelled = await coordinator.cancel(trip.id)
        assert cancelled.status == TripStatus.CANCELLED
        assert not coordinator.collector.knows(trip.id)
        with pytest.raises(InvalidState):
            await coordinator.submit_bid(trip.id, make_bid("b2", "bob", "4.00"))

    @pytest.mark.asyncio
    async def test_cancel_requested(self, coordinator):
        with pytest.raises(NoCoverage) as exc:
            await coordinator.request_trip("rider-1", make_details())
        cancelled = await coordinator.cancel(exc.value.trip.id)
        assert cancelled.status == TripStatus.CANCELLED

    @pytest.mark.asyncio
    async def test_cancel_twice_is_noop(self, coordinator, bus):
        trip = await _bidding_trip(coordinator)
        await coordinator.cancel(trip.id)
        seen = RecordingHandler()
        await bus.subscribe(trip_status_topic(trip.id), seen)
        again = await coordinator.cancel(trip.id)
        assert again.status == TripStatus.CANCELLED
        assert seen.calls == []

    @pytest.mark.asyncio
    async def test_cancel_matched_clears_accepted_bid(self, coordinator):
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        await coordinator.accept_bid(trip.id, "b1")
        cancelled = await coordinator.cancel(trip.id)
        assert cancelled.status == TripStatus.CANCELLED
        assert cancelled.accepted_bid_id is None

    @pytest.mark.asyncio
    async def test_stale_cancel_loses_to_match(self, coordinator):
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        await coordinator.accept_bid(trip.id, "b1")
        with pytest.raises(AlreadyMatched):
            await coordinator.cancel(trip.id, expected_status=TripStatus.BIDDING)
        assert (await coordinator.get_trip(trip.id)).status == TripStatus.MATCHED

    @pytest.mark.asyncio
    async def test_cancel_completed_fails(self, coordinator):
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        await coordinator.accept_bid(trip.id, "b1")
        await coordinator.start_trip(trip.id)
        await coordinator.complete_trip(trip.id)
        with pytest.raises(InvalidTransition):
            await coordinator.cancel(trip.id)

    @pytest.mark.asyncio
    async def test_accept_after_cancel_fails(self, coordinator):
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        await coordinator.cancel(trip.id)
        with pytest.raises(InvalidTransition):
            await coordinator.accept_bid(trip.id, "b1")


class TestQuotesAndIntents:
    @pytest.mark.asyncio
    async def test_quote(self, coordinator):
        quote = await coordinator.quote(AVONDALE, BORROWDALE)
        assert quote.distance_km > 5
        assert quote.suggested_fare > Decimal("3.00")
        assert quote.geometry["type"] == "LineString"

    @pytest.mark.asyncio
    async def test_quote_without_route(self, coordinator):
        class NoRoute:
            async def route(self, origin, destination):
                return None

        coordinator.routing = NoRoute()
        with pytest.raises(RoutingUnavailable):
            await coordinator.quote(AVONDALE, BORROWDALE)

    @pytest.mark.asyncio
    async def test_refine_merges_partial_answer(self, coordinator):
        class Partial(NullIntentExtractor):
            async def parse(self, text, approx_location=None):
                return TripIntent(dropoff_label="Borrowdale", mode=TripMode.FREIGHT)

        coordinator.intents = Partial()
        draft = TripIntent(pickup_label="Avondale", category="Premium")
        refined = await coordinator.refine_request(draft, "move my couch to Borrowdale")
        assert refined == TripIntent("Avondale", "Borrowdale", "Premium", TripMode.FREIGHT)

    @pytest.mark.asyncio
    async def test_refine_without_answer_keeps_draft(self, coordinator):
        draft = TripIntent(pickup_label="Avondale")
        assert await coordinator.refine_request(draft, "anything") == draft


class TestMaintenance:
    @pytest.mark.asyncio
    async def test_recover_reopens_bidding_trips(self, coordinator, store, collector):
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        collector.discard(trip.id)

        assert await coordinator.recover() == 1
        assert collector.is_open(trip.id)
        assert [b.id for b in collector.bids(trip.id)] == ["b1"]
        matched = await coordinator.accept_bid(trip.id, "b1")
        assert matched.status == TripStatus.MATCHED

    @pytest.mark.asyncio
    async def test_recover_keeps_remaining_window(self, coordinator, store, collector, clock):
        collector.window_seconds = 60
        trip = await _bidding_trip(coordinator)
        collector.discard(trip.id)
        store._trips[trip.id].updated_at = utcnow() - timedelta(seconds=30)

        await coordinator.recover()
        assert collector.is_open(trip.id)
        clock.advance(35)
        assert not collector.is_open(trip.id)

    @pytest.mark.asyncio
    async def test_recover_after_window_restores_closed_book(self, coordinator, store, collector):
        collector.window_seconds = 60
        trip = await _bidding_trip(coordinator)
        await coordinator.submit_bid(trip.id, make_bid("b1", "alice", "5.00"))
        collector.discard(trip.id)
        store._trips[trip.id].updated_at = utcnow() - timedelta(minutes=5)

        assert await coordinator.recover() == 1
        assert not collector.is_open(trip.id)
        with pytest.raises(InvalidState):
            await coordinator.submit_bid(trip.id, make_bid("b2", "bob", "4.00"))
        assert [b.id for b in await store.list_bids(trip.id)] == ["b1"]

        matched = await coordinator.accept_bid(trip.id, "b1")
        assert matched.status == TripStatus.MATCHED

    @pytest.mark.asyncio
    async def test_archive_only_terminal(self, coordinator, store):
        done = await _bidding_trip(coordinator)
        await coordinator.cancel(done.id)
        live = await coordinator.request_trip("rider-2", make_details())

        assert await coordinator.archive(utcnow() + timedelta(seconds=1)) == 1
        assert store.is_archived(done.id)
        assert not store.is_archived(live.id)

    @pytest.mark.asyncio
    async def test_stats(self, coordinator):
        await _bidding_trip(coordinator)
        assert coordinator.stats() == {
            "drivers_online": 2,
            "open_bid_books": 1,
            "locked_trips": 0,
        }
