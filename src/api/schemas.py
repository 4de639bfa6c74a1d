"""Pydantic request / response schemas for the REST API."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

from src.domain.enums import PaymentProvider, PaymentStatus, TransactionStatus


# ── Requests ──────────────────────────────────────────────────────────


class RideCreateRequest(BaseModel):
    driver_id: str = Field(..., min_length=1, max_length=64)
    from_city: str = Field(..., min_length=1, max_length=100)
    to_city: str = Field(..., min_length=1, max_length=100)
    departure_time: datetime
    price_per_seat: Decimal = Field(..., gt=0)
    total_seats: int = Field(4, ge=1, le=8)


class BookingRequest(BaseModel):
    ride_id: int
    rider_id: str = Field(..., min_length=1, max_length=64)
    seats: int = Field(
        ...,
        description=(
            "Total seats the rider wants on this ride.  Re-sending the same "
            "count is a no-op; a higher count on a paid booking adds seats."
        ),
    )


class PaymentRequest(BaseModel):
    provider: PaymentProvider
    phone_number: str = Field(..., min_length=9, max_length=20)


class VerificationCodeRequest(BaseModel):
    requester_id: str = Field(..., min_length=1, max_length=64)


class VerifyCodeRequest(BaseModel):
    driver_id: str = Field(..., min_length=1, max_length=64)
    code: str = Field(..., min_length=6, max_length=6)


# ── Responses ─────────────────────────────────────────────────────────


class RideResponse(BaseModel):
    id: int
    driver_id: str
    from_city: str
    to_city: str
    departure_time: datetime
    price_per_seat: Decimal
    total_seats: int
    committed_seats: int
    available_seats: int

    model_config = {"from_attributes": True}


class BookingResponse(BaseModel):
    id: int
    ride_id: int
    rider_id: str
    seat_count: int
    paid_seat_count: int
    payment_status: PaymentStatus
    code_verified: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class VerificationCodeResponse(BaseModel):
    booking_id: int
    verification_code: str
    code_expiry: datetime


class VerifyCodeResponse(BaseModel):
    booking_id: int
    verified: bool
    message: str


class PaymentTransactionResponse(BaseModel):
    id: int
    booking_id: int
    provider: PaymentProvider
    phone_number: str
    amount: Decimal
    currency: str
    seat_count: int
    external_ref: Optional[str] = None
    status: TransactionStatus
    failure_reason: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class PaymentStatusResponse(BaseModel):
    status: PaymentStatus
    message: str
    seat_count: int
    paid_seat_count: int
    transaction: Optional[PaymentTransactionResponse] = None


class WebhookAck(BaseModel):
    received: bool = True
    applied: bool = False


class HealthResponse(BaseModel):
    status: str = "ok"
    tracked_transactions: int = 0


class ErrorResponse(BaseModel):
    detail: str
    code: str
    available_seats: Optional[int] = None
