"""
Payment endpoints
=================

POST /api/v1/bookings/{booking_id}/payment         -- start a payment (202 Accepted)
GET  /api/v1/bookings/{booking_id}/payment/status  -- poll the outcome
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from src.api.dependencies import get_payment_orchestrator, get_poller
from src.api.middleware import limiter
from src.api.schemas import (
    ErrorResponse,
    PaymentRequest,
    PaymentStatusResponse,
    PaymentTransactionResponse,
)
from src.domain.enums import ACTIVE_TRANSACTION_STATUSES
from src.services.payment import PaymentOrchestrator
from src.workers.poller import ReconciliationPoller

router = APIRouter(prefix="/bookings", tags=["payments"])


@router.post(
    "/{booking_id}/payment",
    status_code=202,
    response_model=PaymentTransactionResponse,
    summary="Pay for the unpaid seats of a booking",
    responses={
        202: {"description": "Payer prompted; the outcome is reconciled asynchronously."},
        402: {"model": ErrorResponse},
        409: {"model": ErrorResponse, "description": "A payment is already in progress"},
        422: {"model": ErrorResponse},
    },
)
@limiter.limit("100/minute")
async def initiate_payment(
    request: Request,
    booking_id: int,
    body: PaymentRequest,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
    poller: ReconciliationPoller = Depends(get_poller),
):
    attempt = await orchestrator.initiate_payment(
        booking_id, body.provider, body.phone_number
    )
    if attempt.status in ACTIVE_TRANSACTION_STATUSES:
        poller.track(attempt.id)
    return attempt


@router.get(
    "/{booking_id}/payment/status",
    response_model=PaymentStatusResponse,
    summary="Payment status of a booking",
)
@limiter.limit("100/minute")
async def payment_status(
    request: Request,
    booking_id: int,
    orchestrator: PaymentOrchestrator = Depends(get_payment_orchestrator),
):
    view = await orchestrator.payment_status(booking_id)
    return PaymentStatusResponse(
        status=view.status,
        message=view.message,
        seat_count=view.booking.seat_count,
        paid_seat_count=view.booking.paid_seat_count,
        transaction=(
            PaymentTransactionResponse.model_validate(view.transaction)
            if view.transaction
            else None
        ),
    )
