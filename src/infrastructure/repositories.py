"""
Repository Pattern -- SQL implementation of ``TripStore``.

Each operation runs in its own short unit of work taken from the session
factory, so the store can be shared by the long-lived coordinator.

The at-most-one-winner guarantee rests on ``compare_and_set``: a single
``UPDATE trips SET status, accepted_bid_id ... WHERE id = :id AND
status = :expected``.  Exactly one concurrent writer sees ``rowcount == 1``;
every other one gets ``None`` back.
"""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from geoalchemy2.functions import ST_MakePoint, ST_SetSRID
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .models import BidModel, TripModel
from src.domain.entities import Bid, Location, Transition, Trip, Waypoint, utcnow
from src.domain.enums import TERMINAL_STATUSES, TripMode, TripStatus
from src.domain.ports import TripStore


class SqlTripStore(TripStore):
    trip_model = TripModel
    bid_model = BidModel

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    # ── Trips ─────────────────────────────────────────────────────────

    async def create_trip(self, trip: Trip) -> Trip:
        async with self.session_factory() as session, session.begin():
            session.add(self._to_row(trip))
        return trip

    async def get_trip(self, trip_id: str) -> Optional[Trip]:
        async with self.session_factory() as session:
            row = await session.get(self.trip_model, trip_id)
            return self._to_trip(row) if row else None

    async def get_by_idempotency_key(self, key: str) -> Optional[Trip]:
        M = self.trip_model
        async with self.session_factory() as session:
            result = await session.execute(select(M).where(M.idempotency_key == key))
            row = result.scalar_one_or_none()
            return self._to_trip(row) if row else None

    async def list_trips(self, status: TripStatus) -> list[Trip]:
        M = self.trip_model
        async with self.session_factory() as session:
            result = await session.execute(
                select(M)
                .where(M.status == status, M.archived_at.is_(None))
                .order_by(M.created_at)
            )
            return [self._to_trip(r) for r in result.scalars().all()]

    async def compare_and_set(
        self, transition: Transition, at: datetime
    ) -> Optional[Trip]:
        M = self.trip_model
        stmt = (
            update(M)
            .where(M.id == transition.trip_id, M.status == transition.from_status)
            .values(
                status=transition.to_status,
                accepted_bid_id=transition.accepted_bid_id,
                updated_at=at,
            )
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session, session.begin():
            result = await session.execute(stmt)
            if result.rowcount != 1:
                return None
            row = await session.get(M, transition.trip_id)
            return self._to_trip(row)

    async def archive_terminal(self, before: datetime) -> int:
        M = self.trip_model
        stmt = (
            update(M)
            .where(
                M.status.in_(list(TERMINAL_STATUSES)),
                M.updated_at < before,
                M.archived_at.is_(None),
            )
            .values(archived_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        async with self.session_factory() as session, session.begin():
            result = await session.execute(stmt)
            return result.rowcount or 0

    # ── Bids ──────────────────────────────────────────────────────────

    async def add_bid(self, bid: Bid) -> bool:
        B = self.bid_model
        async with self.session_factory() as session:
            try:
                async with session.begin():
                    existing = await session.scalar(select(B.seq).where(B.id == bid.id))
                    if existing is not None:
                        return False
                    session.add(
                        B(
                            id=bid.id,
                            trip_id=bid.trip_id,
                            driver_id=bid.driver_id,
                            driver_name=bid.driver_name,
                            driver_rating=bid.driver_rating,
                            amount=bid.amount,
                            submitted_at=bid.submitted_at,
                        )
                    )
            except IntegrityError:
                # lost an insert race on the unique bid id
                return False
        return True

    async def get_bid(self, bid_id: str) -> Optional[Bid]:
        B = self.bid_model
        async with self.session_factory() as session:
            row = await session.scalar(select(B).where(B.id == bid_id))
            return self._to_bid(row) if row else None

    async def list_bids(self, trip_id: str) -> list[Bid]:
        B = self.bid_model
        async with self.session_factory() as session:
            result = await session.execute(
                select(B).where(B.trip_id == trip_id).order_by(B.seq)
            )
            return [self._to_bid(r) for r in result.scalars().all()]

    # ── Mapping ───────────────────────────────────────────────────────

    def _point(self, lat: float, lng: float):
        return ST_SetSRID(ST_MakePoint(lng, lat), 4326)

    def _to_row(self, trip: Trip):
        p, d = trip.pickup.location, trip.dropoff.location
        return self.trip_model(
            id=trip.id,
            rider_id=trip.rider_id,
            mode=trip.mode,
            category=trip.category,
            sector=trip.sector,
            pickup_label=trip.pickup.label,
            dropoff_label=trip.dropoff.label,
            pickup_point=self._point(p.latitude, p.longitude),
            dropoff_point=self._point(d.latitude, d.longitude),
            pickup_lat=p.latitude,
            pickup_lng=p.longitude,
            dropoff_lat=d.latitude,
            dropoff_lng=d.longitude,
            proposed_price=trip.proposed_price,
            distance_km=trip.distance_km,
            duration_min=trip.duration_min,
            status=trip.status,
            accepted_bid_id=trip.accepted_bid_id,
            idempotency_key=trip.idempotency_key,
            created_at=trip.created_at,
            updated_at=trip.updated_at,
        )

    @staticmethod
    def _to_trip(row) -> Trip:
        return Trip(
            id=row.id,
            rider_id=row.rider_id,
            mode=TripMode(row.mode),
            category=row.category,
            sector=row.sector,
            pickup=Waypoint(row.pickup_label, Location(row.pickup_lat, row.pickup_lng)),
            dropoff=Waypoint(
                row.dropoff_label, Location(row.dropoff_lat, row.dropoff_lng)
            ),
            proposed_price=Decimal(str(row.proposed_price)),
            distance_km=row.distance_km,
            duration_min=row.duration_min,
            status=TripStatus(row.status),
            accepted_bid_id=row.accepted_bid_id,
            idempotency_key=row.idempotency_key,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _to_bid(row) -> Bid:
        return Bid(
            id=row.id,
            trip_id=row.trip_id,
            driver_id=row.driver_id,
            driver_name=row.driver_name,
            driver_rating=row.driver_rating,
            amount=Decimal(str(row.amount)),
            submitted_at=row.submitted_at,
        )
