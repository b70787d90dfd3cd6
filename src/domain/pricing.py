"""
Fare Estimator
==============

Tiered schedule (defaults)
--------------------------
* distance <= 3 km           -> 2.00
* 3 km < distance <= 5 km    -> 3.00
* distance > 5 km            -> 3.00 + 0.50 x (distance - 5)

A floor of 2.00 applies unconditionally.  The function is pure and
monotonically non-decreasing in distance.

Complexity: O(1) per call.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

CENT = Decimal("0.01")


def _dec(value: float) -> Decimal:
    return Decimal(str(value))


@dataclass(frozen=True)
class FareSchedule:
    floor: Decimal = Decimal("2.0")
    short_limit_km: Decimal = Decimal("3")
    mid_limit_km: Decimal = Decimal("5")
    mid_fare: Decimal = Decimal("3.0")
    rate_per_km: Decimal = Decimal("0.5")

    @classmethod
    def from_settings(cls, settings) -> "FareSchedule":
        return cls(
            floor=_dec(settings.fare_floor),
            short_limit_km=_dec(settings.fare_short_limit_km),
            mid_limit_km=_dec(settings.fare_mid_limit_km),
            mid_fare=_dec(settings.fare_mid),
            rate_per_km=_dec(settings.fare_rate_per_km),
        )

    def fare_for(self, distance_km: float) -> Decimal:
        if not math.isfinite(distance_km):
            raise ValueError("distance_km must be a finite number")
        d = _dec(distance_km)
        if d <= self.short_limit_km:
            fare = self.floor
        elif d <= self.mid_limit_km:
            fare = self.mid_fare
        else:
            fare = self.mid_fare + self.rate_per_km * (d - self.mid_limit_km)
        return max(self.floor, fare).quantize(CENT, rounding=ROUND_HALF_UP)


DEFAULT_SCHEDULE = FareSchedule()


def suggested_fare(
    distance_km: float, schedule: FareSchedule = DEFAULT_SCHEDULE
) -> Decimal:
    """Return the suggested fare for a route of *distance_km*."""
    return schedule.fare_for(distance_km)
