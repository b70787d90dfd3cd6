"""
Background Sweeper
==================

Runs every ``SWEEP_INTERVAL_SECONDS`` (default 15 s).

Per cycle
---------
1. Drop stale driver presence entries (local, no lock needed).
2. Archive terminal trips older than ``ARCHIVE_AFTER_HOURS``.

Concurrency safety
------------------
* Archival touches the shared store, so when Redis is enabled a
  **Redis distributed lock** makes sure only one instance archives per
  cycle.  Instances that miss the lock skip step 2.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from src.config import settings
from src.domain.entities import utcnow
from src.infrastructure.locks import DistributedLock
from src.services.coordinator import DispatchCoordinator

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


@dataclass
class SweepResult:
    pruned_presence: int = 0
    archived_trips: int = 0


# ── Public API ────────────────────────────────────────────────────────


async def start_sweeper_loop(coordinator: DispatchCoordinator) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(coordinator))
    logger.info("Sweeper started (interval=%ds)", settings.sweep_interval_seconds)


async def stop_sweeper_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Sweeper stopped")


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(coordinator: DispatchCoordinator) -> None:
    """Periodic loop: run a sweep cycle then sleep."""
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle(coordinator)
        except Exception:
            logger.exception("Unhandled error in sweep cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass  # next cycle


async def run_sweep_cycle(
    coordinator: DispatchCoordinator, lock: Optional[DistributedLock] = None
) -> SweepResult:
    """Execute one sweep cycle."""
    result = SweepResult(pruned_presence=coordinator.presence.prune())
    if result.pruned_presence:
        logger.info("Pruned %d stale drivers", result.pruned_presence)

    if lock is None and settings.use_redis:
        from src.infrastructure.redis_client import get_redis

        lock = DistributedLock(get_redis(), "trip_archival", ttl_seconds=60)

    if lock is not None and not await lock.acquire():
        logger.debug("Archival lock held by another instance -- skipping")
        return result

    try:
        cutoff = utcnow() - timedelta(hours=settings.archive_after_hours)
        result.archived_trips = await coordinator.archive(cutoff)
        if result.archived_trips:
            logger.info("Archived %d terminal trips", result.archived_trips)
    finally:
        if lock is not None:
            await lock.release()
    return result
