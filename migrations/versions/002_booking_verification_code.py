"""Boarding verification code on bookings.

Revision ID: 002
Revises: 001
Create Date: 2026-10-16
"""

from alembic import op
import sqlalchemy as sa


revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.add_column("bookings", sa.Column("verification_code", sa.String(6), nullable=True))
    op.add_column(
        "bookings", sa.Column("code_expiry", sa.DateTime(timezone=True), nullable=True)
    )
    op.add_column(
        "bookings",
        sa.Column(
            "code_verified", sa.Boolean(), nullable=False, server_default=sa.false()
        ),
    )


def downgrade() -> None:
    op.drop_column("bookings", "code_verified")
    op.drop_column("bookings", "code_expiry")
    op.drop_column("bookings", "verification_code")
