"""
SQLAlchemy ORM models  (maps to PostgreSQL + PostGIS).

Tables
------
* ``trips``  -- rider trip requests and their lifecycle status
* ``bids``   -- driver offers, many per trip, never updated

Indexes
-------
* **GIST** on the pickup / dropoff geometry columns.
* **B-Tree** on ``status``, ``rider_id``, ``sector``, ``idempotency_key``
  and ``bids.trip_id`` for the coordinator's look-ups.

``bids.seq`` is an autoincrement surrogate key so a trip's bids can be
read back in insertion order.
"""

from sqlalchemy import (
    Column,
    DateTime,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    func,
)
from geoalchemy2 import Geometry

from .database import Base
from src.domain.enums import TripMode, TripStatus


class TripModel(Base):
    __tablename__ = "trips"

    id = Column(String(36), primary_key=True)
    rider_id = Column(String(64), nullable=False)
    mode = Column(Enum(TripMode), default=TripMode.PASSENGER, nullable=False)
    category = Column(String(40), default="Standard", nullable=False)
    sector = Column(String(80), nullable=False)

    pickup_label = Column(String(255), nullable=False)
    dropoff_label = Column(String(255), nullable=False)

    # Stored as PostGIS geometry for spatial indexing
    pickup_point = Column(Geometry("POINT", srid=4326), nullable=False)
    dropoff_point = Column(Geometry("POINT", srid=4326), nullable=False)

    # Also stored as plain floats for fast reads (avoids ST_X / ST_Y)
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

    __table_args__ = (
        Index("idx_trips_pickup", "pickup_point", postgresql_using="gist"),
        Index("idx_trips_dropoff", "dropoff_point", postgresql_using="gist"),
        Index("idx_trips_status", "status"),
        Index("idx_trips_rider", "rider_id"),
        Index("idx_trips_sector", "sector"),
        Index("idx_trips_idempotency", "idempotency_key"),
    )


class BidModel(Base):
    __tablename__ = "bids"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    id = Column(String(64), unique=True, nullable=False)
    trip_id = Column(String(36), ForeignKey("trips.id"), nullable=False)
    driver_id = Column(String(64), nullable=False)
    driver_name = Column(String(120), nullable=False)
    driver_rating = Column(Float, default=5.0, nullable=False)
    amount = Column(Numeric(10, 2), nullable=False)
    submitted_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (Index("idx_bids_trip", "trip_id"),)
