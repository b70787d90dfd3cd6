"""
Presence Tracker
================

Live map of driver id -> last reported location, scoped by sector.

* **Latest write wins** per driver.  Every heartbeat overwrites the
  previous entry; no history is kept and no recency comparison is made.
* **Staleness** -- entries older than ``stale_after`` seconds are invisible
  to eligibility queries and are dropped by ``prune``.
* **Spatial pre-filter** -- entries are binned into H3 cells.  A radius
  query scans the ``grid_disk`` around the centre cell (or the whole sector
  when that is smaller) and finishes with an exact haversine check.

Complexity
----------
* ``update``:          O(1)
* ``query_eligible``:  O(min(cells_in_disk + drivers_in_disk, drivers_in_sector))
"""

from __future__ import annotations

import math
import time
from collections import defaultdict
from typing import Callable, Optional

import h3

from .distance import distance_between
from .entities import DriverPresence, Location


class PresenceTracker:
    def __init__(
        self,
        stale_after: float = 30.0,
        resolution: int = 7,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stale_after = stale_after
        self.resolution = resolution
        self._clock = clock
        self._entries: dict[str, DriverPresence] = {}
        self._by_sector: dict[str, set[str]] = defaultdict(set)
        self._by_cell: dict[str, set[str]] = defaultdict(set)
        self._hex_spacing_km = math.sqrt(3) * h3.average_hexagon_edge_length(
            resolution, unit="km"
        )

    # ── Writes ────────────────────────────────────────────────────────

    def update(
        self,
        driver_id: str,
        location: Location,
        sector: str,
        available: bool = True,
    ) -> DriverPresence:
        """Upsert the driver's entry, overwriting any previous one."""
        cell = h3.latlng_to_cell(location.latitude, location.longitude, self.resolution)
        self._unindex(driver_id)
        entry = DriverPresence(
            driver_id=driver_id,
            location=location,
            sector=sector,
            cell=cell,
            updated_at=self._clock(),
            available=available,
        )
        self._entries[driver_id] = entry
        self._by_sector[sector].add(driver_id)
        self._by_cell[cell].add(driver_id)
        return entry

    def remove(self, driver_id: str) -> bool:
        return self._unindex(driver_id)

    def prune(self) -> int:
        """Drop stale entries.  Returns how many were removed."""
        stale = [d for d, e in self._entries.items() if not self._is_fresh(e)]
        for driver_id in stale:
            self._unindex(driver_id)
        return len(stale)

    # ── Reads ─────────────────────────────────────────────────────────

    def get(self, driver_id: str) -> Optional[DriverPresence]:
        return self._entries.get(driver_id)

    def count(self, sector: Optional[str] = None) -> int:
        if sector is None:
            return len(self._entries)
        return len(self._by_sector.get(sector, ()))

    def query_eligible(
        self,
        sector: str,
        center: Optional[Location] = None,
        radius_km: Optional[float] = None,
    ) -> set[str]:
        """Available, fresh drivers of *sector* within *radius_km* of *center*.

        Unknown sectors yield an empty set.  Without a centre/radius the
        whole sector is eligible.
        """
        members = self._by_sector.get(sector)
        if not members:
            return set()

        candidates = members
        if center is not None and radius_km is not None:
            k = math.ceil(radius_km / self._hex_spacing_km) + 1
            disk_size = 3 * k * (k + 1) + 1
            if disk_size < len(members):
                origin = h3.latlng_to_cell(
                    center.latitude, center.longitude, self.resolution
                )
                nearby: set[str] = set()
                for cell in h3.grid_disk(origin, k):
                    nearby.update(self._by_cell.get(cell, ()))
                candidates = nearby & members

        eligible: set[str] = set()
        for driver_id in candidates:
            entry = self._entries[driver_id]
            if not entry.available or not self._is_fresh(entry):
                continue
            if center is not None and radius_km is not None:
                if distance_between(center, entry.location) > radius_km:
                    continue
            eligible.add(driver_id)
        return eligible

    # ── Internals ─────────────────────────────────────────────────────

    def _is_fresh(self, entry: DriverPresence) -> bool:
        return self._clock() - entry.updated_at <= self.stale_after

    def _unindex(self, driver_id: str) -> bool:
        previous = self._entries.pop(driver_id, None)
        if previous is None:
            return False
        for index, key in (
            (self._by_sector, previous.sector),
            (self._by_cell, previous.cell),
        ):
            bucket = index.get(key)
            if bucket is not None:
                bucket.discard(driver_id)
                if not bucket:
                    del index[key]
        return True
