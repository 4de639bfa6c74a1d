"""
Repository Pattern -- abstracts DB access so domain logic stays DB-agnostic.

Each repository receives an ``AsyncSession`` (unit-of-work) and exposes
domain-relevant queries only.  Inventory counters are never written
through ORM attributes: ``RideRepository`` exposes conditional UPDATEs
instead, so concurrent writers cannot lose each other's increments.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from .database import utcnow
from .models import BookingModel, PaymentTransactionModel, RideModel
from src.domain.enums import (
    ACTIVE_TRANSACTION_STATUSES,
    TRANSACTION_TRANSITIONS,
    PaymentProvider,
    PaymentStatus,
    TransactionStatus,
)
from src.domain.exceptions import InvalidStateTransition


class RideRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, ride: RideModel) -> RideModel:
        self.session.add(ride)
        await self.session.flush()
        return ride

    async def get_by_id(self, ride_id: int) -> Optional[RideModel]:
        return await self.session.get(RideModel, ride_id)

    async def get_fresh(self, ride_id: int) -> Optional[RideModel]:
        """Re-read the row, bypassing whatever the identity map holds."""
        result = await self.session.execute(
            select(RideModel)
            .where(RideModel.id == ride_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def increment_committed(
        self, ride_id: int, seats: int, expected_version: int
    ) -> bool:
        """Compare-and-swap on ``version``.  Returns False if it lost the race."""
        result = await self.session.execute(
            update(RideModel)
            .where(
                RideModel.id == ride_id,
                RideModel.version == expected_version,
                RideModel.committed_seats + seats <= RideModel.total_seats,
            )
            .values(
                committed_seats=RideModel.committed_seats + seats,
                version=RideModel.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def decrement_committed(self, ride_id: int, seats: int) -> bool:
        """Atomic decrement floored at zero."""
        result = await self.session.execute(
            update(RideModel)
            .where(RideModel.id == ride_id)
            .values(
                committed_seats=case(
                    (RideModel.committed_seats - seats < 0, 0),
                    else_=RideModel.committed_seats - seats,
                ),
                version=RideModel.version + 1,
                updated_at=utcnow(),
            )
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class BookingRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, booking: BookingModel) -> BookingModel:
        self.session.add(booking)
        await self.session.flush()
        return booking

    async def get_by_id(self, booking_id: int) -> Optional[BookingModel]:
        return await self.session.get(BookingModel, booking_id)

    async def get_for_update(self, booking_id: int) -> Optional[BookingModel]:
        """SELECT ... FOR UPDATE so payment and booking flows serialise per booking."""
        result = await self.session.execute(
            select(BookingModel)
            .where(BookingModel.id == booking_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_for_rider(
        self, ride_id: int, rider_id: str
    ) -> Optional[BookingModel]:
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.ride_id == ride_id,
                BookingModel.rider_id == rider_id,
                BookingModel.payment_status != PaymentStatus.CANCELLED,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_stale_awaiting(self, cutoff: datetime) -> list[BookingModel]:
        """Unpaid holds untouched since *cutoff* with no attempt in flight."""
        active = select(PaymentTransactionModel.booking_id).where(
            PaymentTransactionModel.status.in_(list(ACTIVE_TRANSACTION_STATUSES))
        )
        result = await self.session.execute(
            select(BookingModel)
            .where(
                BookingModel.payment_status == PaymentStatus.AWAITING_PAYMENT,
                BookingModel.updated_at < cutoff,
                BookingModel.id.not_in(active),
            )
            .order_by(BookingModel.updated_at)
        )
        return list(result.scalars().all())

    async def mark_code_verified(self, booking_id: int, code: str, now: datetime) -> bool:
        """
        Consume a boarding code.  It must match and still be unused before
        its expiry; exactly one caller can win for a given code.
        """
        result = await self.session.execute(
            update(BookingModel)
            .where(
                BookingModel.id == booking_id,
                BookingModel.verification_code == code,
                BookingModel.code_expiry > now,
                BookingModel.code_verified.is_(False),
            )
            .values(code_verified=True, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1


class PaymentTransactionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self, transaction: PaymentTransactionModel
    ) -> PaymentTransactionModel:
        self.session.add(transaction)
        await self.session.flush()
        return transaction

    async def get_by_id(
        self, transaction_id: int
    ) -> Optional[PaymentTransactionModel]:
        return await self.session.get(PaymentTransactionModel, transaction_id)

    async def get_fresh(
        self, transaction_id: int
    ) -> Optional[PaymentTransactionModel]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.id == transaction_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def get_active_for_booking(
        self, booking_id: int
    ) -> Optional[PaymentTransactionModel]:
        result = await self.session.execute(
            select(PaymentTransactionModel).where(
                PaymentTransactionModel.booking_id == booking_id,
                PaymentTransactionModel.status.in_(list(ACTIVE_TRANSACTION_STATUSES)),
            )
        )
        return result.scalar_one_or_none()

    async def get_latest_for_booking(
        self, booking_id: int
    ) -> Optional[PaymentTransactionModel]:
        result = await self.session.execute(
            select(PaymentTransactionModel)
            .where(PaymentTransactionModel.booking_id == booking_id)
            .order_by(PaymentTransactionModel.id.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def get_by_external_ref(
        self, provider: PaymentProvider, external_ref: str
    ) -> Optional[PaymentTransactionModel]:
        result = await self.session.execute(
            select(PaymentTransactionModel).where(
                PaymentTransactionModel.provider == provider,
                PaymentTransactionModel.external_ref == external_ref,
            )
        )
        return result.scalar_one_or_none()

    async def get_active(
        self, created_before: Optional[datetime] = None
    ) -> list[PaymentTransactionModel]:
        query = select(PaymentTransactionModel).where(
            PaymentTransactionModel.status.in_(list(ACTIVE_TRANSACTION_STATUSES))
        )
        if created_before is not None:
            query = query.where(PaymentTransactionModel.created_at < created_before)
        result = await self.session.execute(
            query.order_by(PaymentTransactionModel.created_at)
        )
        return list(result.scalars().all())

    async def transition_status(
        self,
        transaction_id: int,
        from_statuses: frozenset[TransactionStatus] | set[TransactionStatus],
        to_status: TransactionStatus,
        **values,
    ) -> bool:
        """
        Conditional status update -- the linearisation point for
        reconciliation.  Only one caller can move a given transaction out of
        *from_statuses*; everyone else sees ``False``.
        """
        for current in from_statuses:
            if to_status not in TRANSACTION_TRANSITIONS[current]:
                raise InvalidStateTransition(
                    f"Payment transaction cannot move from {current.value} "
                    f"to {to_status.value}"
                )

        result = await self.session.execute(
            update(PaymentTransactionModel)
            .where(
                PaymentTransactionModel.id == transaction_id,
                PaymentTransactionModel.status.in_(list(from_statuses)),
            )
            .values(status=to_status, updated_at=utcnow(), **values)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1
