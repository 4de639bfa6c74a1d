"""
Reservation Sweeper
===================

Runs every ``SWEEP_INTERVAL_SECONDS`` (default 60 s).

Concurrency safety
------------------
* **Redis distributed lock** ensures only one API process sweeps at a time.
* Each expired hold is settled in its own transaction, re-checked under
  ``SELECT … FOR UPDATE``, so a rider who starts paying mid-sweep wins.

Per cycle
---------
1. Release seats of bookings left ``AWAITING_PAYMENT`` with no payment
   attempt for longer than ``RESERVATION_TTL_SECONDS``.
2. Re-attach polling to active transactions that lost their poll task.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Optional

import redis.asyncio as aioredis

from src.config import settings
from src.infrastructure.locks import DistributedLock
from src.infrastructure.redis_client import get_redis
from src.services.payment import PaymentOrchestrator
from src.workers.poller import ReconciliationPoller

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_sweep_loop(
    orchestrator: PaymentOrchestrator, poller: ReconciliationPoller
) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(orchestrator, poller))
    logger.info("Reservation sweeper started (interval=%ds)", settings.sweep_interval_seconds)


async def stop_sweep_loop() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Reservation sweeper stopped")


async def run_sweep_cycle(
    orchestrator: PaymentOrchestrator,
    poller: ReconciliationPoller,
    redis: Optional[aioredis.Redis] = None,
) -> tuple[int, int]:
    """One sweep.  Returns ``(seats released, transactions resumed)``."""
    redis = redis or await get_redis()
    lock = DistributedLock(redis, "reservation_sweeper", ttl_seconds=60)

    if not await lock.acquire():
        logger.debug("Lock held by another worker – skipping sweep")
        return 0, 0

    try:
        released = await orchestrator.release_stale_reservations(
            timedelta(seconds=settings.reservation_ttl_seconds)
        )
        if not await lock.extend():
            logger.warning("Sweeper lock expired mid-cycle, skipping orphan resume")
            return released, 0
        resumed = await poller.resume_orphans(
            timedelta(seconds=settings.sweep_interval_seconds)
        )
    finally:
        await lock.release()

    return released, resumed


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(
    orchestrator: PaymentOrchestrator, poller: ReconciliationPoller
) -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle(orchestrator, poller)
        except Exception:
            logger.exception("Unhandled error in sweep cycle")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass
