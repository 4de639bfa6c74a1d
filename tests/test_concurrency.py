"""
Concurrency safety tests.

Demonstrates:
1. Concurrent riders never oversell a ride.
2. Concurrent resubmissions by one rider collapse into one booking.
3. Racing terminal outcomes settle a transaction exactly once.
4. Distributed lock prevents simultaneous acquire.
"""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock

import pytest
from sqlalchemy import func, select

from src.domain.enums import PaymentProvider, PaymentStatus, TransactionStatus
from src.domain.exceptions import InsufficientCapacity
from src.infrastructure.locks import DistributedLock
from src.infrastructure.models import BookingModel, PaymentTransactionModel, RideModel
from tests.conftest import MTN_OK


class TestSeatInventoryConcurrency:
    """Real concurrent sessions against one ride row."""

    @pytest.mark.asyncio
    async def test_no_overselling_under_contention(
        self, make_ride, booking_orchestrator, load
    ):
        ride = await make_ride(total_seats=4)

        results = await asyncio.gather(
            *(
                booking_orchestrator.create_or_update_booking(ride.id, f"rdr-{i}", 1)
                for i in range(10)
            ),
            return_exceptions=True,
        )

        booked = [r for r in results if isinstance(r, BookingModel)]
        refused = [r for r in results if isinstance(r, InsufficientCapacity)]
        assert len(booked) == 4
        assert len(refused) == 6
        assert (await load(RideModel, ride.id)).committed_seats == 4

    @pytest.mark.asyncio
    async def test_same_rider_retries_collapse_into_one_booking(
        self, make_ride, booking_orchestrator, session_factory, load
    ):
        ride = await make_ride(total_seats=4)

        results = await asyncio.gather(
            *(
                booking_orchestrator.create_or_update_booking(ride.id, "rdr-a", 2)
                for _ in range(5)
            )
        )

        assert len({booking.id for booking in results}) == 1
        assert (await load(RideModel, ride.id)).committed_seats == 2
        async with session_factory() as session:
            count = await session.scalar(select(func.count()).select_from(BookingModel))
        assert count == 1


class TestReconcileConcurrency:
    @pytest.mark.asyncio
    async def test_webhook_and_poller_race_settles_once(
        self, make_ride, booking_orchestrator, payment_orchestrator, load
    ):
        ride = await make_ride(total_seats=4)
        booking = await booking_orchestrator.create_or_update_booking(ride.id, "rdr-a", 2)
        attempt = await payment_orchestrator.initiate_payment(
            booking.id, PaymentProvider.MTN, MTN_OK
        )

        outcomes = await asyncio.gather(
            payment_orchestrator.reconcile(attempt.id, TransactionStatus.SUCCEEDED),
            payment_orchestrator.reconcile(attempt.id, TransactionStatus.EXPIRED),
            payment_orchestrator.reconcile(attempt.id, TransactionStatus.SUCCEEDED),
        )

        assert outcomes.count(True) == 1
        final = (await load(PaymentTransactionModel, attempt.id)).status
        settled = await load(BookingModel, booking.id)
        committed = (await load(RideModel, ride.id)).committed_seats
        if final == TransactionStatus.SUCCEEDED:
            assert settled.payment_status == PaymentStatus.COMPLETED
            assert committed == 2
        else:
            assert settled.payment_status == PaymentStatus.FAILED
            assert committed == 0


class TestDistributedLock:
    """Tests the Redis distributed lock logic (mocked Redis)."""

    @pytest.mark.asyncio
    async def test_acquire_succeeds(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is True
        mock_redis.set.assert_awaited_once_with(
            "lock:test-key", lock.token, nx=True, px=10_000
        )

    @pytest.mark.asyncio
    async def test_acquire_fails_if_held(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.acquire() is False

    @pytest.mark.asyncio
    async def test_release_calls_eval(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=True)
        mock_redis.eval = AsyncMock(return_value=1)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        await lock.acquire()
        await lock.release()

        mock_redis.eval.assert_called_once()

    @pytest.mark.asyncio
    async def test_extend_reports_lost_lock(self):
        mock_redis = AsyncMock()
        mock_redis.eval = AsyncMock(return_value=0)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        assert await lock.extend() is False

    @pytest.mark.asyncio
    async def test_context_manager_acquire_fail_raises(self):
        mock_redis = AsyncMock()
        mock_redis.set = AsyncMock(return_value=False)

        lock = DistributedLock(mock_redis, "test-key", ttl_seconds=10)
        with pytest.raises(RuntimeError, match="Could not acquire lock"):
            async with lock:
                pass
