"""Initial schema: rides, bookings and payment transactions.

Revision ID: 001
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

# Enums are stored by member name, as the ORM models map them
PAYMENT_STATUS = sa.Enum(
    "AWAITING_PAYMENT",
    "PAYMENT_IN_PROGRESS",
    "COMPLETED",
    "FAILED",
    "CANCELLED",
    name="paymentstatus",
)
TRANSACTION_STATUS = sa.Enum(
    "INITIATED", "PENDING", "SUCCEEDED", "FAILED", "EXPIRED", name="transactionstatus"
)
PAYMENT_PROVIDER = sa.Enum("MTN", "ORANGE", name="paymentprovider")


def upgrade() -> None:
    # ── rides ─────────────────────────────────────────────────────────
    op.create_table(
        "rides",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("driver_id", sa.String(64), nullable=False),
        sa.Column("from_city", sa.String(120), nullable=False),
        sa.Column("to_city", sa.String(120), nullable=False),
        sa.Column("departure_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("price_per_seat", sa.Numeric(12, 2), nullable=False),
        sa.Column("total_seats", sa.Integer, nullable=False),
        sa.Column("committed_seats", sa.Integer, nullable=False, server_default="0"),
        sa.Column("version", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "committed_seats >= 0 AND committed_seats <= total_seats",
            name="ck_rides_committed_within_capacity",
        ),
        sa.CheckConstraint("price_per_seat > 0", name="ck_rides_price_positive"),
    )
    op.create_index("idx_rides_driver", "rides", ["driver_id"])

    # ── bookings ──────────────────────────────────────────────────────
    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("ride_id", sa.Integer, sa.ForeignKey("rides.id"), nullable=False),
        sa.Column("rider_id", sa.String(64), nullable=False),
        sa.Column("seat_count", sa.Integer, nullable=False),
        sa.Column("paid_seat_count", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "payment_status",
            PAYMENT_STATUS,
            nullable=False,
            server_default="AWAITING_PAYMENT",
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("seat_count > 0", name="ck_bookings_seat_count_positive"),
        sa.CheckConstraint(
            "paid_seat_count >= 0 AND paid_seat_count <= seat_count",
            name="ck_bookings_paid_within_seats",
        ),
    )
    # One active booking per (ride, rider)
    op.create_index(
        "uq_bookings_active_ride_rider",
        "bookings",
        ["ride_id", "rider_id"],
        unique=True,
        postgresql_where=sa.text("payment_status <> 'CANCELLED'"),
    )
    op.create_index("idx_bookings_status", "bookings", ["payment_status"])
    op.create_index("idx_bookings_updated", "bookings", ["updated_at"])

    # ── payment_transactions ──────────────────────────────────────────
    op.create_table(
        "payment_transactions",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "booking_id", sa.Integer, sa.ForeignKey("bookings.id"), nullable=False
        ),
        sa.Column("provider", PAYMENT_PROVIDER, nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(12, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("seat_count", sa.Integer, nullable=False),
        sa.Column("external_ref", sa.String(128), nullable=True),
        sa.Column(
            "status", TRANSACTION_STATUS, nullable=False, server_default="INITIATED"
        ),
        sa.Column("failure_reason", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint(
            "amount > 0", name="ck_payment_transactions_amount_positive"
        ),
    )
    # At most one in-flight attempt per booking
    op.create_index(
        "uq_payment_transactions_active_booking",
        "payment_transactions",
        ["booking_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('INITIATED', 'PENDING')"),
    )
    op.create_index(
        "idx_payment_transactions_status", "payment_transactions", ["status"]
    )
    op.create_index(
        "idx_payment_transactions_ref",
        "payment_transactions",
        ["provider", "external_ref"],
    )


def downgrade() -> None:
    op.drop_table("payment_transactions")
    op.drop_table("bookings")
    op.drop_table("rides")
    op.execute("DROP TYPE IF EXISTS paymentprovider")
    op.execute("DROP TYPE IF EXISTS transactionstatus")
    op.execute("DROP TYPE IF EXISTS paymentstatus")
