"""FastAPI dependency injection helpers."""

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession

from src.services.booking import BookingOrchestrator
from src.services.payment import PaymentOrchestrator
from src.workers.poller import ReconciliationPoller


async def get_db(request: Request) -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with request.app.state.session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_booking_orchestrator(request: Request) -> BookingOrchestrator:
    return request.app.state.booking_orchestrator


def get_payment_orchestrator(request: Request) -> PaymentOrchestrator:
    return request.app.state.payment_orchestrator


def get_poller(request: Request) -> ReconciliationPoller:
    return request.app.state.poller
