"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 sample trips around Harare (mix of BIDDING, MATCHED, COMPLETED,
    REQUESTED)
  - 2-3 driver bids on each trip that reached bidding
"""

import asyncio
import uuid
from decimal import Decimal

from sqlalchemy import func, select

from src.domain.entities import Bid, Location, Trip, Waypoint
from src.domain.enums import TripMode, TripStatus
from src.domain.pricing import suggested_fare
from src.domain.distance import distance_between
from src.infrastructure.database import dispose_engine, get_session_factory
from src.infrastructure.models import TripModel
from src.infrastructure.repositories import SqlTripStore

PLACES = {
    "Harare CBD": Location(-17.8292, 31.0522),
    "Avondale": Location(-17.8000, 31.0380),
    "Borrowdale": Location(-17.7550, 31.0950),
    "Mbare": Location(-17.8620, 31.0380),
    "Eastlea": Location(-17.8250, 31.0750),
    "Belgravia": Location(-17.8110, 31.0440),
    "Mount Pleasant": Location(-17.7720, 31.0500),
}

DRIVERS = [
    ("drv-001", "Tendai Moyo", 4.9),
    ("drv-002", "Farai Ncube", 4.6),
    ("drv-003", "Rudo Chikore", 4.8),
    ("drv-004", "Tatenda Dube", 4.3),
]

TRIPS = [
    # (rider, pickup, dropoff, mode, category, status, bids)
    ("rider-01", "Harare CBD", "Borrowdale", TripMode.PASSENGER, "Standard", TripStatus.BIDDING, 3),
    ("rider-02", "Avondale", "Eastlea", TripMode.PASSENGER, "Premium", TripStatus.BIDDING, 2),
    ("rider-03", "Mbare", "Mount Pleasant", TripMode.FREIGHT, "Standard", TripStatus.MATCHED, 3),
    ("rider-04", "Belgravia", "Harare CBD", TripMode.PASSENGER, "Luxury", TripStatus.COMPLETED, 2),
    ("rider-05", "Eastlea", "Avondale", TripMode.PASSENGER, "Standard", TripStatus.REQUESTED, 0),
    ("rider-06", "Borrowdale", "Mbare", TripMode.FREIGHT, "Standard", TripStatus.CANCELLED, 0),
]


async def seed():
    session_factory = get_session_factory()
    async with session_factory() as session:
        # Check if already seeded
        count = await session.scalar(select(func.count()).select_from(TripModel))
        if count:
            print("Database already seeded. Skipping.")
            return

    store = SqlTripStore(session_factory)
    bid_total = 0
    for rider, start, end, mode, category, status, n_bids in TRIPS:
        distance = round(distance_between(PLACES[start], PLACES[end]), 2)
        price = suggested_fare(distance)
        trip = Trip(
            id=str(uuid.uuid4()),
            rider_id=rider,
            pickup=Waypoint(start, PLACES[start]),
            dropoff=Waypoint(end, PLACES[end]),
            sector="Harare",
            proposed_price=price,
            distance_km=distance,
            duration_min=round(distance / 30.0 * 60.0, 1),
            mode=mode,
            category=category,
            status=status,
        )
        bids = [
            Bid(
                id=str(uuid.uuid4()),
                trip_id=trip.id,
                driver_id=driver_id,
                driver_name=name,
                driver_rating=rating,
                amount=price + Decimal("0.50") * i,
            )
            for i, (driver_id, name, rating) in enumerate(DRIVERS[:n_bids])
        ]
        if status in (TripStatus.MATCHED, TripStatus.COMPLETED):
            trip.accepted_bid_id = bids[0].id
        await store.create_trip(trip)
        for bid in bids:
            await store.add_bid(bid)
        bid_total += len(bids)
        print(f"  {status.value:<10} {start} -> {end} ({distance} km, {price})")

    print(f"  Created {len(TRIPS)} trips, {bid_total} bids")
    print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
