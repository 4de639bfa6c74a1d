"""
Domain entities with business logic.

Patterns used
-------------
- **State Pattern** on ``Booking``: enforces valid payment lifecycle
  transitions (see ``PAYMENT_TRANSITIONS``).
- ``RideCapacity`` encapsulates the seat capacity invariant
  ``0 <= committed_seats <= total_seats``.
- ``BookingLifecycle`` owns all seat arithmetic: how many seats a booking
  holds in inventory, the inventory delta of a seat change, and how a
  payment outcome settles.
- ``BoardingVerification`` issues the code a paid rider shows the driver.

The behaviours are mixins so the ORM models in
``src.infrastructure.models`` share the exact same rules as the plain
dataclasses below.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .enums import PAYMENT_TRANSITIONS, SEAT_HOLDING_STATUSES, PaymentStatus
from .exceptions import InvalidBookingState, InvalidSeatCount, InvalidStateTransition


# ── Behaviour ─────────────────────────────────────────────────────────


class RideCapacity:
    """Needs ``total_seats`` and ``committed_seats``."""

    @property
    def available_seats(self) -> int:
        return max(0, self.total_seats - self.committed_seats)

    def can_accommodate(self, seats: int) -> bool:
        return self.committed_seats + seats <= self.total_seats


class BookingLifecycle:
    """Needs ``seat_count``, ``paid_seat_count`` and ``payment_status``."""

    @property
    def unpaid_seats(self) -> int:
        return self.seat_count - self.paid_seat_count

    def held_seats(self) -> int:
        """Seats this booking currently counts against ride inventory."""
        if self.payment_status in SEAT_HOLDING_STATUSES:
            return self.seat_count
        if self.payment_status == PaymentStatus.FAILED:
            return self.paid_seat_count
        return 0

    def transition_to(self, new_status: PaymentStatus) -> None:
        """Move to *new_status* if the transition is legal, else raise."""
        current = PaymentStatus(self.payment_status)
        if new_status == current:
            return
        allowed = PAYMENT_TRANSITIONS.get(current, set())
        if new_status not in allowed:
            raise InvalidStateTransition(
                f"Cannot transition from {current.value} to {new_status.value}"
            )
        self.payment_status = new_status

    def plan_seat_change(
        self, requested_seats: int, in_flight_seats: Optional[int] = None
    ) -> int:
        """
        Validate a new seat count and return the inventory delta it needs.

        Positive means seats to reserve, negative seats to release.  Nothing
        is mutated, so a rejected request leaves the booking untouched.
        ``in_flight_seats`` is the seat count an active payment attempt is
        paying up to; the booking may not shrink below it.
        """
        if requested_seats <= 0:
            raise InvalidSeatCount("Seat count must be at least 1")
        if requested_seats < self.paid_seat_count:
            raise InvalidSeatCount(
                f"Cannot go below the {self.paid_seat_count} seat(s) already paid"
            )
        status = PaymentStatus(self.payment_status)
        if status == PaymentStatus.CANCELLED:
            raise InvalidBookingState("Booking is cancelled")
        if status == PaymentStatus.COMPLETED and requested_seats < self.seat_count:
            raise InvalidSeatCount("A paid booking can only add seats")
        if in_flight_seats is not None and requested_seats < in_flight_seats:
            raise InvalidSeatCount(
                f"A payment for {in_flight_seats} seat(s) is in progress"
            )
        return requested_seats - self.held_seats()

    def apply_seat_change(self, requested_seats: int) -> None:
        """Record a seat count already validated by ``plan_seat_change``."""
        status = PaymentStatus(self.payment_status)
        if status == PaymentStatus.FAILED or (
            status == PaymentStatus.COMPLETED and requested_seats > self.seat_count
        ):
            self.transition_to(PaymentStatus.AWAITING_PAYMENT)
        self.seat_count = requested_seats

    def apply_payment_success(self, covered_seats: int) -> None:
        """Credit the seats a successful attempt paid for."""
        self.paid_seat_count = min(covered_seats, self.seat_count)
        if self.paid_seat_count == self.seat_count:
            self.transition_to(PaymentStatus.COMPLETED)
        else:
            self.transition_to(PaymentStatus.AWAITING_PAYMENT)

    def apply_payment_failure(self) -> int:
        """
        Settle a failed/expired/abandoned payment cycle.

        Returns the number of seats to release back to the ride.  A first
        cycle leaves the booking ``FAILED``; a top-up on a paid booking rolls
        ``seat_count`` back to the paid seats and returns to ``COMPLETED``.
        """
        status = PaymentStatus(self.payment_status)
        if status not in (
            PaymentStatus.AWAITING_PAYMENT,
            PaymentStatus.PAYMENT_IN_PROGRESS,
        ):
            return 0
        release = self.unpaid_seats
        if self.paid_seat_count > 0:
            self.seat_count = self.paid_seat_count
            self.transition_to(PaymentStatus.COMPLETED)
        else:
            self.transition_to(PaymentStatus.FAILED)
        return release

    def cancel(self) -> int:
        """Cancel an unpaid booking; returns the seats to release."""
        status = PaymentStatus(self.payment_status)
        if self.paid_seat_count > 0 or status not in (
            PaymentStatus.AWAITING_PAYMENT,
            PaymentStatus.FAILED,
        ):
            raise InvalidBookingState(
                f"Cannot cancel a booking in status {status.value}"
            )
        release = self.held_seats()
        self.transition_to(PaymentStatus.CANCELLED)
        return release


# No 0/O or 1/I, so codes read unambiguously aloud
VERIFICATION_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
VERIFICATION_CODE_LENGTH = 6


def new_verification_code() -> str:
    return "".join(
        secrets.choice(VERIFICATION_CODE_ALPHABET)
        for _ in range(VERIFICATION_CODE_LENGTH)
    )


class BoardingVerification:
    """Needs ``payment_status`` and the verification-code fields."""

    def issue_verification_code(self, expires_at: datetime) -> str:
        """
        Give a paid booking a fresh boarding code, replacing any earlier one.

        The driver checks it once at pick-up; after that the booking keeps
        its verified code for good.
        """
        if PaymentStatus(self.payment_status) != PaymentStatus.COMPLETED:
            raise InvalidBookingState("Only paid bookings get a verification code")
        if self.code_verified:
            raise InvalidBookingState("Booking was already verified")
        self.verification_code = new_verification_code()
        self.code_expiry = expires_at
        self.code_verified = False
        return self.verification_code


# ── Entities ──────────────────────────────────────────────────────────


@dataclass
class Ride(RideCapacity):
    id: Optional[int] = None
    driver_id: str = ""
    price_per_seat: Decimal = Decimal("0")
    total_seats: int = 4
    committed_seats: int = 0
    version: int = 0
    departure_time: Optional[datetime] = None


@dataclass
class Booking(BookingLifecycle, BoardingVerification):
    id: Optional[int] = None
    ride_id: int = 0
    rider_id: str = ""
    seat_count: int = 1
    paid_seat_count: int = 0
    payment_status: PaymentStatus = PaymentStatus.AWAITING_PAYMENT
    verification_code: Optional[str] = None
    code_expiry: Optional[datetime] = None
    code_verified: bool = False
    created_at: Optional[datetime] = None
