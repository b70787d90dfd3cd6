"""
Inbound relay: realtime transport -> coordinator.

Driver apps publish bids and location heartbeats on the bus instead of
calling the HTTP API.  Delivery is at-least-once and may reorder, which
the coordinator tolerates: presence is latest-write-wins and bids are
deduplicated by id.  Rejected messages are logged and dropped.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field, ValidationError

from src.domain.entities import Bid, Location
from src.domain.errors import DispatchError
from src.domain.events import DRIVER_BIDS_TOPIC, DRIVER_PRESENCE_TOPIC
from src.domain.ports import Unsubscribe
from src.services.coordinator import DispatchCoordinator

logger = logging.getLogger(__name__)

_unsubscribers: list[Unsubscribe] = []


class InboundBid(BaseModel):
    trip_id: str
    bid_id: str
    driver_id: str
    driver_name: str
    driver_rating: float = Field(5.0, ge=0, le=5)
    amount: Decimal = Field(..., gt=0)


class InboundPresence(BaseModel):
    driver_id: str
    lat: float = Field(..., ge=-90, le=90)
    lng: float = Field(..., ge=-180, le=180)
    sector: str
    available: bool = True


def make_handlers(coordinator: DispatchCoordinator):
    async def on_bid(topic: str, payload: dict[str, Any]) -> None:
        try:
            msg = InboundBid.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Malformed bid on %s: %s", topic, exc)
            return
        bid = Bid(
            id=msg.bid_id,
            trip_id=msg.trip_id,
            driver_id=msg.driver_id,
            driver_name=msg.driver_name,
            driver_rating=msg.driver_rating,
            amount=msg.amount,
        )
        try:
            await coordinator.submit_bid(msg.trip_id, bid)
        except DispatchError as exc:
            logger.warning("Bid %s from %s rejected: %s", msg.bid_id, msg.driver_id, exc)

    async def on_presence(topic: str, payload: dict[str, Any]) -> None:
        try:
            msg = InboundPresence.model_validate(payload)
        except ValidationError as exc:
            logger.warning("Malformed presence on %s: %s", topic, exc)
            return
        await coordinator.record_presence(
            msg.driver_id, Location(msg.lat, msg.lng), msg.sector, msg.available
        )

    return on_bid, on_presence


async def start_relay(coordinator: DispatchCoordinator) -> None:
    on_bid, on_presence = make_handlers(coordinator)
    _unsubscribers.append(await coordinator.bus.subscribe(DRIVER_BIDS_TOPIC, on_bid))
    _unsubscribers.append(
        await coordinator.bus.subscribe(DRIVER_PRESENCE_TOPIC, on_presence)
    )
    logger.info("Relay subscribed to %s, %s", DRIVER_BIDS_TOPIC, DRIVER_PRESENCE_TOPIC)


async def stop_relay() -> None:
    while _unsubscribers:
        await _unsubscribers.pop()()
    logger.info("Relay stopped")
