"""
Intent extractor adapters.

The assistant turns free text ("parcel from Avondale to Borrowdale, luxury")
into ``TripIntent``.  It is best-effort and never authoritative: any
failure or unusable reply yields ``None`` and the caller keeps its draft.

Expected reply shape::

    {"pickup": "...", "dropoff": "...", "category": "Standard", "type": "ride"}
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from src.domain.entities import Location, TripIntent
from src.domain.enums import TripMode
from src.domain.ports import IntentExtractor
from src.infrastructure.retry import with_backoff

logger = logging.getLogger(__name__)

_MODES = {"ride": TripMode.PASSENGER, "freight": TripMode.FREIGHT}


def _text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def intent_from_reply(data: Any) -> Optional[TripIntent]:
    if not isinstance(data, dict):
        return None
    mode = _MODES.get(str(data.get("type") or "").lower())
    intent = TripIntent(
        pickup_label=_text(data.get("pickup")),
        dropoff_label=_text(data.get("dropoff")),
        category=_text(data.get("category")),
        mode=mode,
    )
    if intent == TripIntent():
        return None
    return intent


class NullIntentExtractor(IntentExtractor):
    async def parse(
        self, text: str, approx_location: Optional[Location] = None
    ) -> Optional[TripIntent]:
        return None


class HttpIntentExtractor(IntentExtractor):
    def __init__(
        self,
        endpoint: str,
        api_key: str = "",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 8.0,
        attempts: int = 2,
        base_delay: float = 0.2,
    ):
        self.endpoint = endpoint
        self.api_key = api_key
        self.attempts = attempts
        self.base_delay = base_delay
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)

    async def parse(
        self, text: str, approx_location: Optional[Location] = None
    ) -> Optional[TripIntent]:
        body: dict[str, Any] = {"prompt": text}
        if approx_location is not None:
            body["location"] = {
                "lat": approx_location.latitude,
                "lng": approx_location.longitude,
            }
        headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}

        async def call() -> Any:
            resp = await self.client.post(self.endpoint, json=body, headers=headers)
            resp.raise_for_status()
            return resp.json()

        try:
            data = await with_backoff(
                call,
                attempts=self.attempts,
                base_delay=self.base_delay,
                retry_on=(httpx.TransportError,),
                label="intent parse",
            )
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("Intent extraction failed: %s", exc)
            return None
        return intent_from_reply(data)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()
