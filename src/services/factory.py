"""Builds the coordinator and its collaborators from ``Settings``."""

from __future__ import annotations

import logging

from src.config import Settings
from src.domain.bidding import BidCollector
from src.domain.ports import EventBus, IntentExtractor, RoutingProvider, TripStore
from src.domain.presence import PresenceTracker
from src.domain.pricing import FareSchedule
from src.infrastructure.bus import InMemoryEventBus, RedisEventBus
from src.infrastructure.intent import HttpIntentExtractor, NullIntentExtractor
from src.infrastructure.memory_store import InMemoryTripStore
from src.infrastructure.routing import HaversineRoutingProvider, OsrmRoutingProvider
from src.services.coordinator import DispatchCoordinator

logger = logging.getLogger(__name__)


def build_store(settings: Settings) -> TripStore:
    if settings.store_backend == "sql":
        from src.infrastructure.database import get_session_factory
        from src.infrastructure.repositories import SqlTripStore

        return SqlTripStore(get_session_factory())
    if settings.store_backend != "memory":
        raise ValueError(f"Unknown store backend: {settings.store_backend}")
    return InMemoryTripStore()


def build_bus(settings: Settings) -> EventBus:
    if settings.use_redis:
        from src.infrastructure.redis_client import get_redis

        return RedisEventBus(
            get_redis(),
            prefix=settings.redis_channel_prefix,
            attempts=settings.retry_attempts,
            base_delay=settings.retry_base_delay_seconds,
        )
    return InMemoryEventBus()


def build_routing(settings: Settings) -> RoutingProvider:
    fallback = HaversineRoutingProvider(settings.average_speed_kmh)
    if not settings.osrm_base_url:
        return fallback
    return OsrmRoutingProvider(
        settings.osrm_base_url,
        timeout=settings.routing_timeout_seconds,
        attempts=settings.retry_attempts,
        base_delay=settings.retry_base_delay_seconds,
        fallback=fallback,
    )


def build_intents(settings: Settings) -> IntentExtractor:
    if not settings.intent_endpoint_url:
        return NullIntentExtractor()
    return HttpIntentExtractor(
        settings.intent_endpoint_url,
        api_key=settings.intent_api_key,
        timeout=settings.intent_timeout_seconds,
        attempts=settings.retry_attempts,
        base_delay=settings.retry_base_delay_seconds,
    )


def build_coordinator(settings: Settings) -> DispatchCoordinator:
    coordinator = DispatchCoordinator(
        store=build_store(settings),
        bus=build_bus(settings),
        presence=PresenceTracker(
            stale_after=settings.presence_stale_seconds,
            resolution=settings.h3_resolution,
        ),
        collector=BidCollector(window_seconds=settings.bid_window_seconds),
        routing=build_routing(settings),
        intents=build_intents(settings),
        fare_schedule=FareSchedule.from_settings(settings),
        dispatch_radius_km=settings.dispatch_radius_km,
        default_sector=settings.default_sector,
    )
    logger.info(
        "Coordinator built (store=%s, redis=%s, osrm=%s)",
        settings.store_backend, settings.use_redis, bool(settings.osrm_base_url),
    )
    return coordinator


async def shutdown_coordinator(coordinator: DispatchCoordinator) -> None:
    await coordinator.bus.close()
    await coordinator.routing.close()
    await coordinator.intents.close()
