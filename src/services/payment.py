"""
Payment Orchestrator
====================

Drives one booking through a payment cycle and reconciles the provider's
eventual answer with booking state and seat inventory.

Initiation runs in three steps so no DB transaction is held across the
network call::

    A  lock booking, validate, insert attempt as INITIATED   (commit)
    -  adapter.initiate(...)                                 (no transaction)
    B  attempt PENDING + external ref, booking IN_PROGRESS   (commit)

A timed-out call still records the reference the provider may know the
payment by, so webhook and poller can settle it.

Reconciliation
--------------
``reconcile`` is the single place a terminal outcome is applied.  It moves
the attempt out of ``INITIATED``/``PENDING`` with a conditional UPDATE; only
the caller whose UPDATE matched goes on to settle the booking and the
inventory, in the same transaction.  Webhook, poller and sweeper can all
race here safely -- the losers see ``False``.

Settlement
----------
* success  -> ``paid_seat_count`` = seats the attempt covered; booking
  ``COMPLETED`` (or back to ``AWAITING_PAYMENT`` if seats were added while
  the payer was confirming). A first full payment issues the boarding code.
* failure / expiry -> unpaid seats released; first cycle ends ``FAILED``,
  a top-up rolls back to the paid seats and ``COMPLETED``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Mapping, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import settings
from src.domain.enums import (
    ACTIVE_TRANSACTION_STATUSES,
    TERMINAL_TRANSACTION_STATUSES,
    PaymentProvider,
    PaymentStatus,
    TransactionStatus,
)
from src.domain.exceptions import (
    BookingNotFound,
    InvalidBookingState,
    NothingToCharge,
    PaymentRejected,
    PaymentTimeout,
    PaymentUnknown,
    TransactionAlreadyInProgress,
)
from src.domain.pricing import chargeable_amount
from src.infrastructure.database import utcnow
from src.infrastructure.models import BookingModel, PaymentTransactionModel
from src.infrastructure.payments.base import PaymentGateway
from src.infrastructure.repositories import (
    BookingRepository,
    PaymentTransactionRepository,
)
from src.services.inventory import RideInventory
from src.services.transactions import run_in_transaction

logger = logging.getLogger(__name__)

STATUS_MESSAGES = {
    PaymentStatus.AWAITING_PAYMENT: "Awaiting payment",
    PaymentStatus.PAYMENT_IN_PROGRESS: "Waiting for the payer to confirm on their phone",
    PaymentStatus.COMPLETED: "Payment completed",
    PaymentStatus.FAILED: "Payment failed",
    PaymentStatus.CANCELLED: "Booking cancelled",
}


@dataclass(frozen=True)
class PaymentStatusView:
    booking: BookingModel
    transaction: Optional[PaymentTransactionModel]
    message: str

    @property
    def status(self) -> PaymentStatus:
        return self.booking.payment_status


class PaymentOrchestrator:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateways: Mapping[PaymentProvider, PaymentGateway],
        inventory: Optional[RideInventory] = None,
        max_attempts: int = settings.booking_max_attempts,
    ):
        self.session_factory = session_factory
        self.gateways = gateways
        self.inventory = inventory or RideInventory()
        self.max_attempts = max_attempts

    def gateway_for(self, provider: PaymentProvider) -> PaymentGateway:
        try:
            return self.gateways[provider]
        except KeyError:
            raise PaymentRejected(f"Provider {provider.value} is not configured") from None

    # ── Initiation ────────────────────────────────────────────────────

    async def initiate_payment(
        self, booking_id: int, provider: PaymentProvider, phone_number: str
    ) -> PaymentTransactionModel:
        gateway = self.gateway_for(provider)
        phone = gateway.normalize_phone(phone_number)

        async def open_attempt(session: AsyncSession) -> PaymentTransactionModel:
            return await self._open_attempt(session, booking_id, gateway, phone)

        attempt = await run_in_transaction(
            self.session_factory, open_attempt, attempts=self.max_attempts
        )
        reference = f"booking-{booking_id}-txn-{attempt.id}"

        try:
            external_ref = await gateway.initiate(attempt.amount, phone, reference)
        except PaymentRejected as exc:
            logger.warning("Payment %d rejected by %s: %s", attempt.id, provider.value, exc.message)
            await self.reconcile(attempt.id, TransactionStatus.FAILED, exc.message)
            raise
        except (PaymentTimeout, PaymentUnknown) as exc:
            # Outcome unknown; the poller settles it by whatever ref the provider holds
            logger.warning(
                "Payment %d outcome unknown (ref %s): %s",
                attempt.id,
                exc.external_ref,
                exc.message,
            )
            external_ref = exc.external_ref

        async def mark_in_flight(session: AsyncSession) -> PaymentTransactionModel:
            return await self._mark_in_flight(session, attempt.id, external_ref)

        return await run_in_transaction(
            self.session_factory, mark_in_flight, attempts=self.max_attempts
        )

    async def _open_attempt(
        self,
        session: AsyncSession,
        booking_id: int,
        gateway: PaymentGateway,
        phone: str,
    ) -> PaymentTransactionModel:
        booking = await BookingRepository(session).get_for_update(booking_id)
        if booking is None:
            raise BookingNotFound()

        transactions = PaymentTransactionRepository(session)
        active = await transactions.get_active_for_booking(booking_id)
        if active is not None:
            raise TransactionAlreadyInProgress(active.id)

        status = PaymentStatus(booking.payment_status)
        if status == PaymentStatus.CANCELLED:
            raise InvalidBookingState("Booking is cancelled")

        ride = await self.inventory.get_ride(session, booking.ride_id)
        amount = chargeable_amount(
            booking.seat_count, booking.paid_seat_count, ride.price_per_seat
        )
        if amount <= 0:
            raise NothingToCharge()
        amount = gateway.normalize_amount(amount)

        if status == PaymentStatus.FAILED:
            # Retry: the failed cycle gave the seats back, claim them again
            token = await self.inventory.reserve(
                session, booking.ride_id, booking.unpaid_seats
            )
            self.inventory.commit(token)
            booking.transition_to(PaymentStatus.AWAITING_PAYMENT)

        attempt = PaymentTransactionModel(
            booking_id=booking.id,
            provider=gateway.provider,
            phone_number=phone,
            amount=amount,
            currency=gateway.currency,
            seat_count=booking.seat_count,
            status=TransactionStatus.INITIATED,
        )
        try:
            await transactions.create(attempt)
        except IntegrityError as exc:
            raise TransactionAlreadyInProgress() from exc

        logger.info(
            "Payment %d opened for booking %d: %s %s via %s (%d seat(s))",
            attempt.id,
            booking.id,
            amount,
            gateway.currency,
            gateway.provider.value,
            attempt.seat_count,
        )
        return attempt

    async def _mark_in_flight(
        self,
        session: AsyncSession,
        transaction_id: int,
        external_ref: Optional[str],
    ) -> PaymentTransactionModel:
        transactions = PaymentTransactionRepository(session)
        attempt = await transactions.get_fresh(transaction_id)
        booking = await BookingRepository(session).get_for_update(attempt.booking_id)

        if external_ref is not None:
            moved = await transactions.transition_status(
                transaction_id,
                {TransactionStatus.INITIATED},
                TransactionStatus.PENDING,
                external_ref=external_ref,
            )
        else:
            moved = attempt.status in ACTIVE_TRANSACTION_STATUSES

        if moved and booking.payment_status == PaymentStatus.AWAITING_PAYMENT:
            booking.transition_to(PaymentStatus.PAYMENT_IN_PROGRESS)
            await session.flush()
        elif not moved:
            logger.info("Payment %d settled before it was marked in flight", transaction_id)

        return await transactions.get_fresh(transaction_id)

    # ── Reconciliation ────────────────────────────────────────────────

    async def reconcile(
        self,
        transaction_id: int,
        terminal_status: TransactionStatus,
        reason: Optional[str] = None,
    ) -> bool:
        """
        Apply a terminal outcome exactly once.

        Returns True if this call settled the transaction, False if it was
        already terminal (duplicate webhook, poller racing a webhook, ...).
        """
        if terminal_status not in TERMINAL_TRANSACTION_STATUSES:
            raise ValueError(f"{terminal_status} is not a terminal status")

        async def work(session: AsyncSession) -> bool:
            return await self._reconcile(session, transaction_id, terminal_status, reason)

        return await run_in_transaction(
            self.session_factory, work, attempts=self.max_attempts
        )

    async def _reconcile(
        self,
        session: AsyncSession,
        transaction_id: int,
        terminal_status: TransactionStatus,
        reason: Optional[str],
    ) -> bool:
        transactions = PaymentTransactionRepository(session)
        attempt = await transactions.get_fresh(transaction_id)
        if attempt is None:
            logger.warning("Reconcile for unknown transaction %d", transaction_id)
            return False

        # Booking lock first: same order as the booking and initiation flows
        booking = await BookingRepository(session).get_for_update(attempt.booking_id)

        won = await transactions.transition_status(
            transaction_id,
            ACTIVE_TRANSACTION_STATUSES,
            terminal_status,
            failure_reason=(reason or "")[:255] or None,
        )
        if not won:
            logger.info("Transaction %d already settled, ignoring %s", transaction_id, terminal_status.value)
            return False

        if terminal_status == TransactionStatus.SUCCEEDED:
            booking.apply_payment_success(attempt.seat_count)
            if (
                booking.payment_status == PaymentStatus.COMPLETED
                and booking.verification_code is None
            ):
                booking.issue_verification_code(
                    utcnow() + timedelta(hours=settings.verification_code_ttl_hours)
                )
            released = 0
        else:
            released = booking.apply_payment_failure()
            await self.inventory.release(session, booking.ride_id, released)
        await session.flush()

        logger.info(
            "Transaction %d %s: booking %d now %s (paid %d/%d, released %d)",
            transaction_id,
            terminal_status.value,
            booking.id,
            booking.payment_status.value,
            booking.paid_seat_count,
            booking.seat_count,
            released,
        )
        return True

    async def handle_callback(
        self, provider: PaymentProvider, payload: dict[str, Any]
    ) -> Optional[int]:
        """
        Webhook entry point.  Returns the id of the transaction this call
        settled, or None (unknown reference, non-terminal status, duplicate).
        """
        event = self.gateway_for(provider).parse_callback(payload)

        async with self.session_factory() as session:
            attempt = await PaymentTransactionRepository(session).get_by_external_ref(
                provider, event.external_ref
            )
        if attempt is None:
            logger.warning("%s callback for unknown reference %s", provider.value, event.external_ref)
            return None
        if not event.status.is_terminal:
            logger.info("%s callback for %s: still %s", provider.value, event.external_ref, event.status.value)
            return None

        settled = await self.reconcile(
            attempt.id, event.status.to_transaction_status(), event.reason
        )
        return attempt.id if settled else None

    # ── Sweeper ───────────────────────────────────────────────────────

    async def release_stale_reservations(
        self, older_than: timedelta = timedelta(seconds=settings.reservation_ttl_seconds)
    ) -> int:
        """Give back seats of unpaid bookings nobody started paying for."""
        cutoff = utcnow() - older_than
        async with self.session_factory() as session:
            stale = await BookingRepository(session).get_stale_awaiting(cutoff)
            booking_ids = [booking.id for booking in stale]

        released = 0
        for booking_id in booking_ids:

            async def work(session: AsyncSession, booking_id: int = booking_id) -> int:
                return await self._expire_hold(session, booking_id)

            released += await run_in_transaction(
                self.session_factory, work, attempts=self.max_attempts
            )
        if booking_ids:
            logger.info(
                "Expired %d stale reservation(s), %d seat(s) released",
                len(booking_ids),
                released,
            )
        return released

    async def _expire_hold(self, session: AsyncSession, booking_id: int) -> int:
        booking = await BookingRepository(session).get_for_update(booking_id)
        if booking is None or booking.payment_status != PaymentStatus.AWAITING_PAYMENT:
            return 0
        if await PaymentTransactionRepository(session).get_active_for_booking(booking_id):
            return 0

        release = booking.apply_payment_failure()
        await self.inventory.release(session, booking.ride_id, release)
        await session.flush()
        return release

    # ── Queries ───────────────────────────────────────────────────────

    async def payment_status(self, booking_id: int) -> PaymentStatusView:
        async with self.session_factory() as session:
            booking = await BookingRepository(session).get_by_id(booking_id)
            if booking is None:
                raise BookingNotFound()
            attempt = await PaymentTransactionRepository(
                session
            ).get_latest_for_booking(booking_id)

        message = STATUS_MESSAGES[PaymentStatus(booking.payment_status)]
        if (
            attempt is not None
            and attempt.status in (TransactionStatus.FAILED, TransactionStatus.EXPIRED)
            and attempt.failure_reason
        ):
            message = f"{message} (last attempt: {attempt.failure_reason})"
        return PaymentStatusView(booking=booking, transaction=attempt, message=message)
