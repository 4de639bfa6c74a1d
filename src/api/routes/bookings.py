"""
Booking endpoints
=================

POST /api/v1/bookings                        -- create or update a booking (upsert)
GET  /api/v1/bookings/{id}                   -- booking state
POST /api/v1/bookings/{id}/cancel            -- cancel an unpaid booking
POST /api/v1/bookings/{id}/verification-code -- (re)issue the boarding code
POST /api/v1/bookings/{id}/verify-code       -- driver checks the code
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_booking_orchestrator
from src.api.middleware import limiter
from src.api.schemas import (
    BookingRequest,
    BookingResponse,
    ErrorResponse,
    VerificationCodeRequest,
    VerificationCodeResponse,
    VerifyCodeRequest,
    VerifyCodeResponse,
)
from src.services.booking import BookingOrchestrator

router = APIRouter(prefix="/bookings", tags=["bookings"])


@router.post(
    "",
    response_model=BookingResponse,
    summary="Create or update a booking",
    description=(
        "At most one active booking exists per (ride, rider).  Re-sending a "
        "request adjusts that booking to the requested seat count; only the "
        "difference is reserved or released."
    ),
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Not enough seats, or concurrent update"},
        422: {"model": ErrorResponse},
    },
)
@limiter.limit("100/minute")
async def create_or_update_booking(
    request: Request,
    body: BookingRequest,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    return await orchestrator.create_or_update_booking(
        body.ride_id, body.rider_id, body.seats
    )


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Get a booking",
)
@limiter.limit("100/minute")
async def get_booking(
    request: Request,
    booking_id: int,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    return await orchestrator.get_booking(booking_id)


@router.post(
    "/{booking_id}/cancel",
    response_model=BookingResponse,
    summary="Cancel an unpaid booking",
    description="Releases the booking's held seats.  Paid bookings cannot be cancelled.",
)
@limiter.limit("100/minute")
async def cancel_booking(
    request: Request,
    booking_id: int,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    return await orchestrator.cancel_booking(booking_id)


@router.post(
    "/{booking_id}/verification-code",
    response_model=VerificationCodeResponse,
    summary="Issue a boarding code",
    description=(
        "Paid bookings get a six-character code when payment completes.  The "
        "rider or the driver can request a fresh one until it has been used."
    ),
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Booking unpaid or already verified"},
    },
)
@limiter.limit("20/minute")
async def issue_verification_code(
    request: Request,
    booking_id: int,
    body: VerificationCodeRequest,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    booking = await orchestrator.issue_verification_code(booking_id, body.requester_id)
    return VerificationCodeResponse(
        booking_id=booking.id,
        verification_code=booking.verification_code,
        code_expiry=booking.code_expiry,
    )


@router.post(
    "/{booking_id}/verify-code",
    response_model=VerifyCodeResponse,
    summary="Verify a rider's boarding code",
    description="Driver only.  A code verifies once and only before it expires.",
    responses={
        403: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "Booking not paid"},
    },
)
@limiter.limit("20/minute")
async def verify_booking_code(
    request: Request,
    booking_id: int,
    body: VerifyCodeRequest,
    orchestrator: BookingOrchestrator = Depends(get_booking_orchestrator),
):
    verified = await orchestrator.verify_booking_code(
        booking_id, body.driver_id, body.code
    )
    return VerifyCodeResponse(
        booking_id=booking_id,
        verified=verified,
        message="Booking verified" if verified else "Invalid or expired verification code",
    )
