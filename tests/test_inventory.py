"""Ride inventory: reserve / release against a real (SQLite) database."""

from __future__ import annotations

import pytest

from src.domain.exceptions import (
    InsufficientCapacity,
    InvalidSeatCount,
    RideNotFound,
)
from src.infrastructure.models import RideModel
from src.infrastructure.repositories import RideRepository
from src.services.inventory import RideInventory


class TestReserve:
    @pytest.mark.asyncio
    async def test_reserve_commits_seats_and_bumps_version(
        self, make_ride, session_factory, load
    ):
        ride = await make_ride(total_seats=4)
        async with session_factory() as session, session.begin():
            token = await RideInventory().reserve(session, ride.id, 3)

        assert token.seats == 3
        assert token.version == 1
        fresh = await load(RideModel, ride.id)
        assert fresh.committed_seats == 3
        assert fresh.available_seats == 1

    @pytest.mark.asyncio
    async def test_reserve_beyond_capacity_reports_available(
        self, make_ride, session_factory, load
    ):
        ride = await make_ride(total_seats=2)
        with pytest.raises(InsufficientCapacity) as exc_info:
            async with session_factory() as session, session.begin():
                await RideInventory().reserve(session, ride.id, 3)

        assert exc_info.value.available_seats == 2
        assert exc_info.value.requested_seats == 3
        assert (await load(RideModel, ride.id)).committed_seats == 0

    @pytest.mark.asyncio
    async def test_reserve_zero_seats_rejected(self, make_ride, session_factory):
        ride = await make_ride()
        with pytest.raises(InvalidSeatCount):
            async with session_factory() as session, session.begin():
                await RideInventory().reserve(session, ride.id, 0)

    @pytest.mark.asyncio
    async def test_reserve_unknown_ride(self, session_factory):
        with pytest.raises(RideNotFound):
            async with session_factory() as session, session.begin():
                await RideInventory().reserve(session, 999, 1)

    @pytest.mark.asyncio
    async def test_stale_version_loses_compare_and_swap(
        self, make_ride, session_factory, load
    ):
        ride = await make_ride(total_seats=4)
        async with session_factory() as session, session.begin():
            await RideInventory().reserve(session, ride.id, 1)

        async with session_factory() as session, session.begin():
            swapped = await RideRepository(session).increment_committed(
                ride.id, 1, expected_version=0
            )
        assert swapped is False
        assert (await load(RideModel, ride.id)).committed_seats == 1


class TestRelease:
    @pytest.mark.asyncio
    async def test_reserve_then_release_restores_availability(
        self, make_ride, session_factory, load
    ):
        ride = await make_ride(total_seats=4)
        inventory = RideInventory()
        async with session_factory() as session, session.begin():
            await inventory.reserve(session, ride.id, 3)
        async with session_factory() as session, session.begin():
            await inventory.release(session, ride.id, 3)

        fresh = await load(RideModel, ride.id)
        assert fresh.available_seats == 4
        assert fresh.version == 2

    @pytest.mark.asyncio
    async def test_release_is_floored_at_zero(self, make_ride, session_factory, load):
        ride = await make_ride(total_seats=4)
        inventory = RideInventory()
        async with session_factory() as session, session.begin():
            await inventory.reserve(session, ride.id, 1)
        async with session_factory() as session, session.begin():
            await inventory.release(session, ride.id, 3)

        assert (await load(RideModel, ride.id)).committed_seats == 0

    @pytest.mark.asyncio
    async def test_release_nothing_is_a_no_op(self, make_ride, session_factory, load):
        ride = await make_ride()
        async with session_factory() as session, session.begin():
            await RideInventory().release(session, ride.id, 0)
        assert (await load(RideModel, ride.id)).version == 0

    @pytest.mark.asyncio
    async def test_availability_reads_live_count(self, make_ride, session_factory):
        ride = await make_ride(total_seats=4)
        inventory = RideInventory()
        async with session_factory() as session, session.begin():
            await inventory.reserve(session, ride.id, 3)

        async with session_factory() as session:
            assert await inventory.availability(session, ride.id) == 1

    @pytest.mark.asyncio
    async def test_release_unknown_ride(self, session_factory):
        with pytest.raises(RideNotFound):
            async with session_factory() as session, session.begin():
                await RideInventory().release(session, 999, 1)
