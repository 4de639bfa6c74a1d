"""
Ride Inventory
==============

Atomic admission control over a ride's seat capacity.

Seats are counted as committed at reservation time, before payment
settles, so two concurrent bookers can never both be told the last seat
is theirs.  Every ``reserve`` pairs with either ``commit`` (payment
succeeded) or ``release`` (payment failed, expired or was abandoned).

Concurrency safety
------------------
``reserve`` reads the ride, checks capacity, then issues a single
conditional UPDATE guarded by the row's ``version`` token.  Losing that
compare-and-swap raises ``ConcurrentModification``; the caller restarts
its whole unit of work from a fresh read.  ``release`` is a single
atomic decrement and never conflicts.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession

from src.domain.exceptions import (
    ConcurrentModification,
    InsufficientCapacity,
    InvalidSeatCount,
    RideNotFound,
)
from src.infrastructure.models import RideModel
from src.infrastructure.repositories import RideRepository

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReservationToken:
    ride_id: int
    seats: int
    version: int  # ride version after the reservation was applied


class RideInventory:
    async def get_ride(self, session: AsyncSession, ride_id: int) -> RideModel:
        ride = await RideRepository(session).get_fresh(ride_id)
        if ride is None:
            raise RideNotFound()
        return ride

    async def availability(self, session: AsyncSession, ride_id: int) -> int:
        ride = await self.get_ride(session, ride_id)
        return ride.available_seats

    async def reserve(
        self, session: AsyncSession, ride_id: int, seats: int
    ) -> ReservationToken:
        if seats <= 0:
            raise InvalidSeatCount("Reservation must be for at least 1 seat")

        ride = await self.get_ride(session, ride_id)
        if not ride.can_accommodate(seats):
            raise InsufficientCapacity(ride.available_seats, seats)

        swapped = await RideRepository(session).increment_committed(
            ride_id, seats, expected_version=ride.version
        )
        if not swapped:
            logger.debug("Reserve lost CAS on ride %d (version %d)", ride_id, ride.version)
            raise ConcurrentModification()

        logger.info("Reserved %d seat(s) on ride %d", seats, ride_id)
        return ReservationToken(ride_id=ride_id, seats=seats, version=ride.version + 1)

    async def release(self, session: AsyncSession, ride_id: int, seats: int) -> None:
        if seats <= 0:
            return
        if not await RideRepository(session).decrement_committed(ride_id, seats):
            raise RideNotFound()
        logger.info("Released %d seat(s) on ride %d", seats, ride_id)

    def commit(self, token: ReservationToken) -> None:
        """Seats were counted at reservation time; nothing left to write."""
        logger.debug(
            "Reservation of %d seat(s) on ride %d confirmed", token.seats, token.ride_id
        )
