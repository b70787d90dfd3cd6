"""Unit tests for the presence tracker and the haversine helper."""

import h3

from src.domain.distance import distance_between, haversine_km
from src.domain.entities import Location
from tests.conftest import AVONDALE, BORROWDALE, BULAWAYO, HARARE_CBD


class TestHaversine:
    def test_same_point_is_zero(self):
        assert haversine_km(-17.8, 31.0, -17.8, 31.0) == 0.0

    def test_known_distance(self):
        # Harare CBD -> Avondale ~3.5 km
        d = distance_between(HARARE_CBD, AVONDALE)
        assert 3.0 < d < 4.0

    def test_symmetric(self):
        assert abs(
            distance_between(HARARE_CBD, BULAWAYO) - distance_between(BULAWAYO, HARARE_CBD)
        ) < 1e-6


class TestPresenceTracker:
    def test_fresh_driver_in_sector_is_eligible(self, presence):
        presence.update("d1", AVONDALE, "Harare")
        assert presence.query_eligible("Harare") == {"d1"}

    def test_unknown_sector_is_empty(self, presence):
        presence.update("d1", AVONDALE, "Harare")
        assert presence.query_eligible("Gweru") == set()

    def test_stale_driver_excluded(self, presence, clock):
        presence.update("d1", AVONDALE, "Harare")
        clock.advance(31)
        assert presence.query_eligible("Harare") == set()

    def test_staleness_boundary_is_inclusive(self, presence, clock):
        presence.update("d1", AVONDALE, "Harare")
        clock.advance(30)
        assert presence.query_eligible("Harare") == {"d1"}

    def test_unavailable_driver_excluded(self, presence):
        presence.update("d1", AVONDALE, "Harare", available=False)
        assert presence.query_eligible("Harare") == set()

    def test_update_overwrites_previous_entry(self, presence):
        presence.update("d1", AVONDALE, "Harare")
        presence.update("d1", BULAWAYO, "Bulawayo")
        assert presence.query_eligible("Harare") == set()
        assert presence.query_eligible("Bulawayo") == {"d1"}
        assert presence.count() == 1

    def test_heartbeat_refreshes_entry(self, presence, clock):
        presence.update("d1", AVONDALE, "Harare")
        clock.advance(25)
        presence.update("d1", AVONDALE, "Harare")
        clock.advance(25)
        assert presence.query_eligible("Harare") == {"d1"}

    def test_radius_filter(self, presence):
        presence.update("near", AVONDALE, "Harare")
        presence.update("far", BORROWDALE, "Harare")
        assert presence.query_eligible("Harare", HARARE_CBD, 5.0) == {"near"}
        assert presence.query_eligible("Harare", HARARE_CBD, 15.0) == {"near", "far"}

    def test_radius_filter_with_cell_prefilter(self, presence):
        # Enough drivers that the H3 disk is smaller than the sector set
        for i in range(200):
            presence.update(f"city-{i}", Location(-17.83 + i * 5e-5, 31.05), "Harare")
        for i in range(200):
            presence.update(f"edge-{i}", Location(-18.40 + i * 1e-4, 31.05), "Harare")
        eligible = presence.query_eligible("Harare", HARARE_CBD, 2.0)
        assert len(eligible) == 200
        assert all(d.startswith("city-") for d in eligible)

    def test_entry_carries_h3_cell(self, presence):
        entry = presence.update("d1", AVONDALE, "Harare")
        assert entry.cell == h3.latlng_to_cell(AVONDALE.latitude, AVONDALE.longitude, 7)

    def test_remove(self, presence):
        presence.update("d1", AVONDALE, "Harare")
        assert presence.remove("d1") is True
        assert presence.remove("d1") is False
        assert presence.get("d1") is None
        assert presence.query_eligible("Harare") == set()

    def test_prune_drops_only_stale(self, presence, clock):
        presence.update("old", AVONDALE, "Harare")
        clock.advance(20)
        presence.update("new", AVONDALE, "Harare")
        clock.advance(15)
        assert presence.prune() == 1
        assert presence.get("old") is None
        assert presence.count("Harare") == 1
