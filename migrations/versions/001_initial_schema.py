"""Initial schema with PostGIS extension, trips and bids.

Revision ID: 001
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa
from geoalchemy2 import Geometry


revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Enable PostGIS extension
    op.execute("CREATE EXTENSION IF NOT EXISTS postgis")

    # ── trips ─────────────────────────────────────────────────────────
    op.create_table(
        "trips",
        sa.Column("id", sa.String(36), primary_key=True),
        sa.Column("rider_id", sa.String(64), nullable=False),
        sa.Column(
            "mode",
            sa.Enum("PASSENGER", "FREIGHT", name="tripmode"),
            default="PASSENGER",
            nullable=False,
        ),
        sa.Column("category", sa.String(40), default="Standard", nullable=False),
        sa.Column("sector", sa.String(80), nullable=False),
        sa.Column("pickup_label", sa.String(255), nullable=False),
        sa.Column("dropoff_label", sa.String(255), nullable=False),
        sa.Column(
            "pickup_point", Geometry("POINT", srid=4326), nullable=False
        ),
        sa.Column(
            "dropoff_point", Geometry("POINT", srid=4326), nullable=False
        ),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("proposed_price", sa.Numeric(10, 2), nullable=False),
        sa.Column("distance_km", sa.Float, nullable=False),
        sa.Column("duration_min", sa.Float, nullable=False),
        sa.Column(
            "status",
            sa.Enum(
                "REQUESTED",
                "BIDDING",
                "MATCHED",
                "IN_PROGRESS",
                "COMPLETED",
                "CANCELLED",
                name="tripstatus",
            ),
            default="REQUESTED",
            nullable=False,
        ),
        sa.Column("accepted_bid_id", sa.String(64), nullable=True),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("archived_at", sa.DateTime(timezone=True), nullable=True),
    )
    op.create_index(
        "idx_trips_pickup", "trips", ["pickup_point"], postgresql_using="gist"
    )
    op.create_index(
        "idx_trips_dropoff", "trips", ["dropoff_point"], postgresql_using="gist"
    )
    op.create_index("idx_trips_status", "trips", ["status"])
    op.create_index("idx_trips_rider", "trips", ["rider_id"])
    op.create_index("idx_trips_sector", "trips", ["sector"])
    op.create_index("idx_trips_idempotency", "trips", ["idempotency_key"])

    # ── bids ──────────────────────────────────────────────────────────
    op.create_table(
        "bids",
        sa.Column("seq", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("id", sa.String(64), unique=True, nullable=False),
        sa.Column(
            "trip_id", sa.String(36), sa.ForeignKey("trips.id"), nullable=False
        ),
        sa.Column("driver_id", sa.String(64), nullable=False),
        sa.Column("driver_name", sa.String(120), nullable=False),
        sa.Column("driver_rating", sa.Float, default=5.0, nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column(
            "submitted_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index("idx_bids_trip", "bids", ["trip_id"])


def downgrade() -> None:
    op.drop_table("bids")
    op.drop_table("trips")
    op.execute("DROP TYPE IF EXISTS tripstatus")
    op.execute("DROP TYPE IF EXISTS tripmode")
