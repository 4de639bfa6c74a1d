"""
Booking Orchestrator
====================

The only entry point for creating, growing or cancelling a booking, and
for issuing and checking its boarding code.

Every request is reduced to one inventory delta::

    delta = requested_seats - seats the booking already holds

A positive delta is reserved, a negative one released, zero touches
nothing.  The look-up, the inventory change and the booking write share one
transaction, so a successful call applies exactly one delta and a failed
call applies none.

Cases
-----
* no booking            -> insert ``AWAITING_PAYMENT``, reserve all seats
* ``COMPLETED``         -> increases only; reserve the new seats, start a
  new payment cycle for them
* ``AWAITING_PAYMENT`` / ``PAYMENT_IN_PROGRESS`` -> idempotent resubmission,
  adjust the existing reservation
* ``FAILED``            -> retry; re-reserve the unpaid seats
"""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.domain.enums import PaymentStatus
from src.domain.exceptions import (
    BookingNotAllowed,
    BookingNotFound,
    ConcurrentModification,
    InvalidBookingState,
    InvalidSeatCount,
)
from src.infrastructure.database import utcnow
from src.infrastructure.models import BookingModel
from src.infrastructure.repositories import (
    BookingRepository,
    PaymentTransactionRepository,
)
from src.services.inventory import RideInventory
from src.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)


class BookingOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        inventory: Optional[RideInventory] = None,
        max_attempts: int = settings.booking_max_attempts,
    ):
        self.session_factory = session_factory
        self.inventory = inventory or RideInventory()
        self.max_attempts = max_attempts
        self.code_ttl = timedelta(hours=settings.verification_code_ttl_hours)

    # ── Public API ────────────────────────────────────────────────────

    async def create_or_update_booking(
        self, ride_id: int, rider_id: str, requested_seats: int
    ) -> BookingModel:
        if requested_seats <= 0:
            raise InvalidSeatCount("Seat count must be at least 1")
        if requested_seats > settings.max_seats_per_booking:
            raise InvalidSeatCount(
                f"At most {settings.max_seats_per_booking} seats per booking"
            )

        async def work(session: AsyncSession) -> BookingModel:
            return await self._upsert(session, ride_id, rider_id, requested_seats)

        return await run_in_transaction(
            self.session_factory, work, attempts=self.max_attempts
        )

    async def cancel_booking(self, booking_id: int) -> BookingModel:
        async def work(session: AsyncSession) -> BookingModel:
            booking = await BookingRepository(session).get_for_update(booking_id)
            if booking is None:
                raise BookingNotFound()
            active = await PaymentTransactionRepository(
                session
            ).get_active_for_booking(booking_id)
            if active is not None:
                raise InvalidBookingState("A payment for this booking is in progress")

            release = booking.cancel()
            await self.inventory.release(session, booking.ride_id, release)
            logger.info("Booking %d cancelled, %d seat(s) released", booking.id, release)
            return booking

        return await run_in_transaction(
            self.session_factory, work, attempts=self.max_attempts
        )

    async def get_booking(self, booking_id: int) -> BookingModel:
        async with self.session_factory() as session:
            booking = await BookingRepository(session).get_by_id(booking_id)
        if booking is None:
            raise BookingNotFound()
        return booking

    # ── Boarding verification ─────────────────────────────────────────

    async def issue_verification_code(
        self, booking_id: int, requester_id: str
    ) -> BookingModel:
        """(Re)issue the boarding code of a paid booking to its rider or driver."""

        async def work(session: AsyncSession) -> BookingModel:
            booking = await BookingRepository(session).get_for_update(booking_id)
            if booking is None:
                raise BookingNotFound()
            ride = await self.inventory.get_ride(session, booking.ride_id)
            if requester_id not in (booking.rider_id, ride.driver_id):
                raise BookingNotAllowed(
                    "Only the rider or the driver can request the verification code"
                )

            booking.issue_verification_code(utcnow() + self.code_ttl)
            await session.flush()
            logger.info("Verification code issued for booking %d", booking.id)
            return booking

        return await run_in_transaction(
            self.session_factory, work, attempts=self.max_attempts
        )

    async def verify_booking_code(
        self, booking_id: int, driver_id: str, code: str
    ) -> bool:
        """
        Driver-side boarding check.

        Returns False for a wrong, expired or already used code; raises when
        the caller is not the ride's driver or the booking is not paid.
        """

        async def work(session: AsyncSession) -> bool:
            bookings = BookingRepository(session)
            booking = await bookings.get_for_update(booking_id)
            if booking is None:
                raise BookingNotFound()
            ride = await self.inventory.get_ride(session, booking.ride_id)
            if ride.driver_id != driver_id:
                raise BookingNotAllowed("Only the ride's driver can verify bookings")
            if booking.payment_status != PaymentStatus.COMPLETED:
                raise InvalidBookingState("Booking is not paid")

            verified = await bookings.mark_code_verified(
                booking_id, code.strip().upper(), utcnow()
            )
            if verified:
                logger.info("Booking %d verified by driver %s", booking_id, driver_id)
            else:
                logger.warning("Rejected verification code for booking %d", booking_id)
            return verified

        return await run_in_transaction(
            self.session_factory, work, attempts=self.max_attempts
        )

    # ── Internals ─────────────────────────────────────────────────────

    async def _upsert(
        self,
        session: AsyncSession,
        ride_id: int,
        rider_id: str,
        requested_seats: int,
    ) -> BookingModel:
        bookings = BookingRepository(session)

        ride = await self.inventory.get_ride(session, ride_id)
        if ride.driver_id == rider_id:
            raise BookingNotAllowed("Drivers cannot book their own ride")

        existing = await bookings.get_active_for_rider(ride_id, rider_id)

        if existing is None:
            token = await self.inventory.reserve(session, ride_id, requested_seats)
            booking = BookingModel(
                ride_id=ride_id,
                rider_id=rider_id,
                seat_count=requested_seats,
                paid_seat_count=0,
                payment_status=PaymentStatus.AWAITING_PAYMENT,
            )
            try:
                await bookings.create(booking)
            except IntegrityError as exc:
                # Same rider raced us to the insert; retry finds their row
                raise ConcurrentModification() from exc
            self.inventory.commit(token)
            logger.info(
                "Booking %d created: ride=%d rider=%s seats=%d",
                booking.id,
                ride_id,
                rider_id,
                requested_seats,
            )
            return booking

        in_flight = await PaymentTransactionRepository(session).get_active_for_booking(
            existing.id
        )
        delta = existing.plan_seat_change(
            requested_seats,
            in_flight_seats=in_flight.seat_count if in_flight else None,
        )

        if delta > 0:
            token = await self.inventory.reserve(session, ride_id, delta)
            self.inventory.commit(token)
        elif delta < 0:
            await self.inventory.release(session, ride_id, -delta)

        previous = existing.seat_count
        existing.apply_seat_change(requested_seats)
        await session.flush()
        logger.info(
            "Booking %d updated: seats %d -> %d (delta %+d, status %s)",
            existing.id,
            previous,
            requested_seats,
            delta,
            existing.payment_status.value,
        )
        return existing
