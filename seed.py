"""
Seed script -- populates the database with sample data for reviewers.

Run after migrations:
    python seed.py

Creates:
  - 6 sample rides between Cameroonian cities
  - 7 sample bookings (mix of AWAITING_PAYMENT, COMPLETED, FAILED, CANCELLED);
    paid ones carry a boarding code
  - 2 payment transactions (one succeeded, one failed)

Ride ``committed_seats`` is derived from the bookings so the seat
invariant holds from the start.
"""

import asyncio
from datetime import timedelta
from decimal import Decimal

from sqlalchemy import text

from src.config import settings
from src.domain.enums import PaymentProvider, PaymentStatus, TransactionStatus
from src.infrastructure.database import async_session_factory, engine, utcnow
from src.infrastructure.models import (
    BookingModel,
    PaymentTransactionModel,
    RideModel,
)

RIDES = [
    {"driver": "drv-ngono", "from": "Douala", "to": "Yaoundé", "hours": 20, "price": "5000", "seats": 4},
    {"driver": "drv-fotso", "from": "Yaoundé", "to": "Douala", "hours": 26, "price": "5000", "seats": 3},
    {"driver": "drv-mbarga", "from": "Douala", "to": "Kribi", "hours": 44, "price": "4000", "seats": 4},
    {"driver": "drv-tchoua", "from": "Bafoussam", "to": "Yaoundé", "hours": 30, "price": "4500", "seats": 6},
    {"driver": "drv-eyenga", "from": "Douala", "to": "Limbe", "hours": 8, "price": "2500", "seats": 4},
    {"driver": "drv-ngono", "from": "Yaoundé", "to": "Bafoussam", "hours": 70, "price": "4500", "seats": 2},
]

# (ride index, rider, seats, paid, status)
BOOKINGS = [
    (0, "rdr-amina", 2, 2, PaymentStatus.COMPLETED),
    (0, "rdr-paul", 1, 0, PaymentStatus.AWAITING_PAYMENT),
    (1, "rdr-clarisse", 3, 3, PaymentStatus.COMPLETED),
    (2, "rdr-junior", 2, 0, PaymentStatus.FAILED),
    (3, "rdr-amina", 1, 0, PaymentStatus.CANCELLED),
    (3, "rdr-brice", 4, 2, PaymentStatus.AWAITING_PAYMENT),
    (4, "rdr-paul", 1, 1, PaymentStatus.COMPLETED),
]


async def seed():
    async with async_session_factory() as session:
        # Check if already seeded
        result = await session.execute(text("SELECT count(*) FROM rides"))
        if result.scalar() > 0:
            print("Database already seeded. Skipping.")
            return

        # ── Rides ─────────────────────────────────────────────────────
        now = utcnow()
        ride_models = []
        for r in RIDES:
            m = RideModel(
                driver_id=r["driver"],
                from_city=r["from"],
                to_city=r["to"],
                departure_time=now + timedelta(hours=r["hours"]),
                price_per_seat=Decimal(r["price"]),
                total_seats=r["seats"],
                committed_seats=0,
                version=0,
            )
            session.add(m)
            ride_models.append(m)
        await session.flush()
        print(f"  Created {len(ride_models)} rides")

        # ── Bookings ──────────────────────────────────────────────────
        booking_models = []
        for ride_idx, rider, seats, paid, status in BOOKINGS:
            ride = ride_models[ride_idx]
            m = BookingModel(
                ride_id=ride.id,
                rider_id=rider,
                seat_count=seats,
                paid_seat_count=paid,
                payment_status=status,
            )
            if status == PaymentStatus.COMPLETED:
                m.issue_verification_code(
                    now + timedelta(hours=settings.verification_code_ttl_hours)
                )
            ride.committed_seats += m.held_seats()
            session.add(m)
            booking_models.append(m)
        await session.flush()
        print(f"  Created {len(booking_models)} bookings")

        # ── Payment transactions ──────────────────────────────────────
        paid = booking_models[0]
        failed = booking_models[3]
        session.add_all(
            [
                PaymentTransactionModel(
                    booking_id=paid.id,
                    provider=PaymentProvider.MTN,
                    phone_number="237670000005",
                    amount=Decimal("10000"),
                    currency="XAF",
                    seat_count=paid.seat_count,
                    external_ref="seed-mtn-0001",
                    status=TransactionStatus.SUCCEEDED,
                ),
                PaymentTransactionModel(
                    booking_id=failed.id,
                    provider=PaymentProvider.ORANGE,
                    phone_number="237690000002",
                    amount=Decimal("8000"),
                    currency="XAF",
                    seat_count=failed.seat_count,
                    external_ref="seed-om-0001",
                    status=TransactionStatus.FAILED,
                    failure_reason="Insufficient balance",
                ),
            ]
        )
        await session.flush()
        print("  Created 2 payment transactions")

        await session.commit()
        print("\nSeed complete!")


async def main():
    print("Seeding database...")
    await seed()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
