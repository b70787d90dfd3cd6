"""
Routing provider adapters.

Preference order
----------------
1. OSRM ``/route`` (road distance, duration and GeoJSON geometry) when
   ``OSRM_BASE_URL`` is configured.  Transport errors and 5xx replies are
   retried with exponential backoff.
2. Haversine fallback: straight-line distance and an ETA at a fixed
   average speed.  Keeps the service usable without a routing backend.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from src.domain.distance import distance_between
from src.domain.entities import Location
from src.domain.ports import RouteResult, RoutingProvider
from src.infrastructure.retry import with_backoff

logger = logging.getLogger(__name__)


def _line(origin: Location, destination: Location) -> dict[str, Any]:
    return {
        "type": "LineString",
        "coordinates": [
            [origin.longitude, origin.latitude],
            [destination.longitude, destination.latitude],
        ],
    }


class HaversineRoutingProvider(RoutingProvider):
    def __init__(self, average_speed_kmh: float = 30.0):
        self.average_speed_kmh = average_speed_kmh

    async def route(
        self, origin: Location, destination: Location
    ) -> Optional[RouteResult]:
        km = distance_between(origin, destination)
        return RouteResult(
            distance_km=round(km, 2),
            duration_min=round(km / self.average_speed_kmh * 60, 1),
            geometry=_line(origin, destination),
        )


class OsrmRoutingProvider(RoutingProvider):
    def __init__(
        self,
        base_url: str,
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 5.0,
        profile: str = "driving",
        attempts: int = 3,
        base_delay: float = 0.2,
        fallback: Optional[RoutingProvider] = None,
    ):
        if not base_url:
            raise ValueError("OSRM base URL not set")
        self.base_url = base_url.rstrip("/")
        self.profile = profile
        self.attempts = attempts
        self.base_delay = base_delay
        self.fallback = fallback
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=timeout,
            limits=httpx.Limits(max_keepalive_connections=20, max_connections=100),
        )

    async def route(
        self, origin: Location, destination: Location
    ) -> Optional[RouteResult]:
        # OSRM wants lon,lat
        coords = (
            f"{origin.longitude},{origin.latitude};"
            f"{destination.longitude},{destination.latitude}"
        )
        url = f"{self.base_url}/route/v1/{self.profile}/{coords}"
        try:
            data = await with_backoff(
                lambda: self._fetch(url),
                attempts=self.attempts,
                base_delay=self.base_delay,
                retry_on=(httpx.TransportError, httpx.HTTPStatusError),
                label="osrm route",
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("OSRM unavailable: %s", exc)
            return await self._fall_back(origin, destination)

        if not isinstance(data, dict):
            logger.warning("OSRM returned a non-object body")
            return await self._fall_back(origin, destination)

        routes = data.get("routes") or []
        if data.get("code") != "Ok" or not routes:
            logger.warning("OSRM returned no route: %s", data.get("message", data.get("code")))
            return await self._fall_back(origin, destination)

        best = routes[0]
        return RouteResult(
            distance_km=round(float(best.get("distance") or 0) / 1000.0, 2),
            duration_min=round(float(best.get("duration") or 0) / 60.0, 1),
            geometry=best.get("geometry") or _line(origin, destination),
        )

    async def _fetch(self, url: str) -> dict[str, Any]:
        resp = await self.client.get(
            url, params={"overview": "full", "geometries": "geojson"}
        )
        if resp.status_code >= 500:
            resp.raise_for_status()
        return resp.json()

    async def _fall_back(
        self, origin: Location, destination: Location
    ) -> Optional[RouteResult]:
        if self.fallback is None:
            return None
        return await self.fallback.route(origin, destination)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
