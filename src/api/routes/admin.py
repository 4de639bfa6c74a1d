"""
Admin / observability endpoints
===============================

GET /api/v1/admin/active-transactions -- payment attempts still awaiting an outcome
GET /api/v1/admin/health              -- simple health check
"""

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.api.dependencies import get_db, get_poller
from src.api.middleware import limiter
from src.api.schemas import HealthResponse, PaymentTransactionResponse
from src.infrastructure.repositories import PaymentTransactionRepository
from src.workers.poller import ReconciliationPoller

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get(
    "/active-transactions",
    response_model=list[PaymentTransactionResponse],
    summary="List payment transactions that are not yet terminal",
)
@limiter.limit("100/minute")
async def get_active_transactions(
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    return await PaymentTransactionRepository(db).get_active()


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(poller: ReconciliationPoller = Depends(get_poller)):
    return HealthResponse(tracked_transactions=len(poller.tracked))
