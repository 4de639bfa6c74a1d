"""
SQLAlchemy ORM models  (maps to PostgreSQL).

Tables
------
* ``rides``                 -- trips offered by drivers, with seat inventory
* ``bookings``              -- one rider's claim on seats of one ride, and the
  boarding code the driver checks
* ``payment_transactions``  -- attempts to settle money for a booking

Invariants enforced by the schema
---------------------------------
* ``0 <= committed_seats <= total_seats`` (CHECK).
* One non-cancelled booking per (ride, rider) (partial UNIQUE index).
* One ``INITIATED``/``PENDING`` transaction per booking (partial UNIQUE index).

Indexes
-------
* **B-Tree** on ``payment_status``, ``updated_at`` and transaction
  ``status`` for the sweeper, and on ``(provider, external_ref)`` for
  webhook look-ups.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
)

from .database import Base, utcnow
from src.domain.entities import BoardingVerification, BookingLifecycle, RideCapacity
from src.domain.enums import (
    PaymentProvider,
    PaymentStatus,
    TransactionStatus,
)


class RideModel(RideCapacity, Base):
    __tablename__ = "rides"

    id = Column(Integer, primary_key=True, autoincrement=True)
    driver_id = Column(String(64), nullable=False)
    from_city = Column(String(120), nullable=False)
    to_city = Column(String(120), nullable=False)
    departure_time = Column(DateTime(timezone=True), nullable=False)
    price_per_seat = Column(Numeric(12, 2), nullable=False)

    total_seats = Column(Integer, nullable=False)
    committed_seats = Column(Integer, default=0, nullable=False)
    # Optimistic-concurrency token, bumped by every inventory mutation
    version = Column(Integer, default=0, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint(
            "committed_seats >= 0 AND committed_seats <= total_seats",
            name="ck_rides_committed_within_capacity",
        ),
        CheckConstraint("price_per_seat > 0", name="ck_rides_price_positive"),
        Index("idx_rides_driver", "driver_id"),
    )


class BookingModel(BookingLifecycle, BoardingVerification, Base):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ride_id = Column(Integer, ForeignKey("rides.id"), nullable=False)
    rider_id = Column(String(64), nullable=False)
    seat_count = Column(Integer, nullable=False)
    paid_seat_count = Column(Integer, default=0, nullable=False)
    payment_status = Column(
        Enum(PaymentStatus),
        default=PaymentStatus.AWAITING_PAYMENT,
        nullable=False,
    )

    # Boarding code the driver checks once at pick-up
    verification_code = Column(String(6), nullable=True)
    code_expiry = Column(DateTime(timezone=True), nullable=True)
    code_verified = Column(Boolean, default=False, nullable=False)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("seat_count > 0", name="ck_bookings_seat_count_positive"),
        CheckConstraint(
            "paid_seat_count >= 0 AND paid_seat_count <= seat_count",
            name="ck_bookings_paid_within_seats",
        ),
        Index(
            "uq_bookings_active_ride_rider",
            "ride_id",
            "rider_id",
            unique=True,
            postgresql_where=payment_status != PaymentStatus.CANCELLED,
            sqlite_where=payment_status != PaymentStatus.CANCELLED,
        ),
        Index("idx_bookings_status", "payment_status"),
        Index("idx_bookings_updated", "updated_at"),
    )


class PaymentTransactionModel(Base):
    __tablename__ = "payment_transactions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    provider = Column(Enum(PaymentProvider), nullable=False)
    phone_number = Column(String(20), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False)
    # Booking seat count this attempt pays up to
    seat_count = Column(Integer, nullable=False)
    external_ref = Column(String(128), nullable=True)
    status = Column(
        Enum(TransactionStatus),
        default=TransactionStatus.INITIATED,
        nullable=False,
    )
    failure_reason = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), default=utcnow)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_transactions_amount_positive"),
        Index(
            "uq_payment_transactions_active_booking",
            "booking_id",
            unique=True,
            postgresql_where=status.in_(
                [TransactionStatus.INITIATED, TransactionStatus.PENDING]
            ),
            sqlite_where=status.in_(
                [TransactionStatus.INITIATED, TransactionStatus.PENDING]
            ),
        ),
        Index("idx_payment_transactions_status", "status"),
        Index("idx_payment_transactions_ref", "provider", "external_ref"),
    )
