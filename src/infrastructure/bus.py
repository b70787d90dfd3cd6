"""
Realtime transport adapters.

``InMemoryEventBus`` fans events out to in-process handlers (tests,
single-node deployments).  ``RedisEventBus`` publishes JSON payloads to
Redis Pub/Sub channels; publishes are retried with backoff and failures
are logged, never raised into the caller's already-committed transition.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections import defaultdict
from typing import Any

import redis.asyncio as aioredis
from pydantic import BaseModel
from redis.exceptions import RedisError

from src.domain.ports import EventBus, EventHandler, Unsubscribe
from src.infrastructure.retry import with_backoff

logger = logging.getLogger(__name__)


def _payload(event: BaseModel) -> dict[str, Any]:
    return event.model_dump(mode="json")


class InMemoryEventBus(EventBus):
    def __init__(self) -> None:
        self._handlers: dict[str, list[EventHandler]] = defaultdict(list)

    async def publish(self, topic: str, event: BaseModel) -> None:
        payload = _payload(event)
        for handler in list(self._handlers.get(topic, ())):
            try:
                await handler(topic, payload)
            except Exception:
                logger.exception("Handler failed for topic %s", topic)

    async def subscribe(self, topic: str, handler: EventHandler) -> Unsubscribe:
        self._handlers[topic].append(handler)

        async def unsubscribe() -> None:
            handlers = self._handlers.get(topic)
            if handlers and handler in handlers:
                handlers.remove(handler)

        return unsubscribe


class RedisEventBus(EventBus):
    def __init__(
        self,
        client: aioredis.Redis,
        prefix: str = "ridein",
        attempts: int = 3,
        base_delay: float = 0.2,
    ):
        self.redis = client
        self.prefix = prefix
        self.attempts = attempts
        self.base_delay = base_delay
        self._listeners: set[asyncio.Task] = set()

    def channel(self, topic: str) -> str:
        return f"{self.prefix}:{topic}"

    async def publish(self, topic: str, event: BaseModel) -> None:
        data = json.dumps(_payload(event))
        channel = self.channel(topic)
        try:
            await with_backoff(
                lambda: self.redis.publish(channel, data),
                attempts=self.attempts,
                base_delay=self.base_delay,
                retry_on=(RedisError, OSError),
                label=f"publish {channel}",
            )
        except (RedisError, OSError):
            logger.error("Dropped event for %s after %d attempts", channel, self.attempts)

    async def subscribe(self, topic: str, handler: EventHandler) -> Unsubscribe:
        channel = self.channel(topic)
        pubsub = self.redis.pubsub(ignore_subscribe_messages=True)
        await pubsub.subscribe(channel)
        task = asyncio.create_task(self._pump(pubsub, topic, handler))
        self._listeners.add(task)
        task.add_done_callback(self._listeners.discard)

        async def unsubscribe() -> None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()

        return unsubscribe

    async def _pump(self, pubsub, topic: str, handler: EventHandler) -> None:
        async for message in pubsub.listen():
            try:
                payload = json.loads(message["data"])
            except (TypeError, ValueError):
                logger.warning("Discarding malformed message on %s", topic)
                continue
            try:
                await handler(topic, payload)
            except Exception:
                logger.exception("Handler failed for topic %s", topic)

    async def close(self) -> None:
        for task in list(self._listeners):
            task.cancel()
        if self._listeners:
            await asyncio.gather(*self._listeners, return_exceptions=True)
