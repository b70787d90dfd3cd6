"""
Shared test fixtures.

Uses an in-memory SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  PostGIS-specific features (Geometry columns)
are mocked by using plain String columns in the test models.
"""

from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.pool import StaticPool

from src.api.middleware import limiter
from src.domain.bidding import BidCollector
from src.domain.entities import Bid, Location, TripDetails, Waypoint
from src.domain.enums import TripMode, TripStatus
from src.domain.presence import PresenceTracker
from src.infrastructure.bus import InMemoryEventBus
from src.infrastructure.memory_store import InMemoryTripStore
from src.infrastructure.repositories import SqlTripStore
from src.infrastructure.routing import HaversineRoutingProvider
from src.services.coordinator import DispatchCoordinator


# ── Places ────────────────────────────────────────────────────────────

HARARE_CBD = Location(-17.8292, 31.0522)
AVONDALE = Location(-17.8000, 31.0380)
BORROWDALE = Location(-17.7550, 31.0950)
BULAWAYO = Location(-20.1500, 28.5833)


# ── Test DB (SQLite in-memory) ────────────────────────────────────────

TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

test_engine = create_async_engine(TEST_DB_URL, echo=False, poolclass=StaticPool)
TestSessionFactory = async_sessionmaker(
    test_engine, class_=AsyncSession, expire_on_commit=False
)


class TestBase(DeclarativeBase):
    pass


# Mirror the production models but without PostGIS Geometry columns
# (SQLite doesn't support them).

class TestTripModel(TestBase):
    __tablename__ = "trips"
    id = Column(String(36), primary_key=True)
    rider_id = Column(String(64), nullable=False)
    mode = Column(Enum(TripMode), default=TripMode.PASSENGER, nullable=False)
    category = Column(String(40), default="Standard", nullable=False)
    sector = Column(String(80), nullable=False)
    pickup_label = Column(String(255), nullable=False)
    dropoff_label = Column(String(255), nullable=False)
    pickup_point = Column(String, nullable=True)  # stub for Geometry
    dropoff_point = Column(String, nullable=True)  # stub for Geometry
    pickup_lat = Column(Float, nullable=False)
    pickup_lng = Column(Float, nullable=False)
    dropoff_lat = Column(Float, nullable=False)
    dropoff_lng = Column(Float, nullable=False)
    proposed_price = Column(Numeric(10, 2), nullable=False)
    distance_km = Column(Float, nullable=False)
    duration_min = Column(Float, nullable=False)
    status = Column(Enum(TripStatus), default=TripStatus.REQUESTED, nullable=False)
    accepted_bid_id = Column(String(64), nullable=True)
    idempotency_key = Column(String(64), unique=True, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False)
    updated_at = Column(DateTime(timezone=True), nullable=False)
    archived_at = Column(DateTime(timezone=True), nullable=True)


class TestBidModel(TestBase):
    __tablename__ = "bids"
    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, nullable=False)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=False)
    driver_id = Column(String(64), nullable=False)
    driver_name = Column(String(120), nullable=False)
    driver_rating = Column(Float, default=5.0, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    submitted_at = Column(DateTime(timezone=True), server_default=func.now())


class TestSqlTripStore(SqlTripStore):
    """``SqlTripStore`` on the SQLite mirror models."""

    __test__ = False

    trip_model = TestTripModel
    bid_model = TestBidModel

    def _point(self, lat: float, lng: float):
        return f"POINT({lng} {lat})"


# ── Helpers ───────────────────────────────────────────────────────────


class FakeClock:
    """Monotonic clock the tests move by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_details(**overrides) -> TripDetails:
    values = dict(
        pickup=Waypoint("Harare CBD", HARARE_CBD),
        dropoff=Waypoint("Avondale", AVONDALE),
        sector="Harare",
        distance_km=4.0,
        duration_min=8.0,
    )
    values.update(overrides)
    return TripDetails(**values)


def make_bid(bid_id: str, driver_id: str, amount: str, trip_id: str = "", rating=5.0) -> Bid:
    return Bid(
        id=bid_id,
        trip_id=trip_id,
        driver_id=driver_id,
        driver_name=driver_id.title(),
        amount=Decimal(amount),
        driver_rating=rating,
    )


class RecordingHandler:
    """Collects (topic, payload) pairs delivered by a bus."""

    def __init__(self):
        self.calls: list[tuple[str, dict]] = []

    async def __call__(self, topic: str, payload: dict) -> None:
        self.calls.append((topic, payload))

    @property
    def payloads(self) -> list[dict]:
        return [p for _, p in self.calls]


# ── Fixtures ──────────────────────────────────────────────────────────


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    limiter.reset()
    yield


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def presence(clock) -> PresenceTracker:
    return PresenceTracker(stale_after=30.0, resolution=7, clock=clock)


@pytest.fixture
def collector(clock) -> BidCollector:
    return BidCollector(window_seconds=0.0, clock=clock)


@pytest.fixture
def store() -> InMemoryTripStore:
    return InMemoryTripStore()


@pytest.fixture
def bus() -> InMemoryEventBus:
    return InMemoryEventBus()


@pytest.fixture
def coordinator(store, bus, presence, collector) -> DispatchCoordinator:
    return DispatchCoordinator(
        store=store,
        bus=bus,
        presence=presence,
        collector=collector,
        routing=HaversineRoutingProvider(average_speed_kmh=30.0),
        dispatch_radius_km=15.0,
        default_sector="Harare",
    )


@pytest_asyncio.fixture
async def sql_store() -> AsyncGenerator[TestSqlTripStore, None]:
    """Create tables, yield a store, then drop everything."""
    async with test_engine.begin() as conn:
        await conn.run_sync(TestBase.metadata.create_all)

    yield TestSqlTripStore(TestSessionFactory)

    async with test_engine.begin() as conn:
        await conn.run_sync(TestBase.metadata.drop_all)
