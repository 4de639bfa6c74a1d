"""
FastAPI application factory.

* Registers routes for rides, bookings, payments, provider webhooks and admin.
* Wires the orchestrators, payment gateways and the reconciliation poller
  onto ``app.state``.
* Starts / stops the reservation sweeper via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging
from typing import Mapping, Optional

import httpx
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.api.middleware import limiter
from src.api.routes import admin, bookings, payments, rides, webhooks
from src.config import settings
from src.domain.enums import PaymentProvider
from src.domain.exceptions import BookingError, InsufficientCapacity
from src.infrastructure.database import async_session_factory, dispose_engine
from src.infrastructure.payments.base import PaymentGateway
from src.infrastructure.payments.registry import build_gateways
from src.infrastructure.redis_client import close_redis
from src.services.booking import BookingOrchestrator
from src.services.payment import PaymentOrchestrator
from src.workers import sweeper as _sweeper
from src.workers.poller import ReconciliationPoller

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the sweeper; on shutdown stop background work, then close pooled connections."""
    await _sweeper.start_sweep_loop(app.state.payment_orchestrator, app.state.poller)
    yield
    await _sweeper.stop_sweep_loop()
    await app.state.poller.stop()
    await app.state.http_client.aclose()
    await close_redis()
    await dispose_engine()


async def booking_error_handler(request: Request, exc: BookingError) -> JSONResponse:
    body = {"detail": exc.message, "code": exc.code}
    if isinstance(exc, InsufficientCapacity):
        body["available_seats"] = exc.available_seats
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=exc.status_code, content=body)


def create_app(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
    gateways: Optional[Mapping[PaymentProvider, PaymentGateway]] = None,
    poller: Optional[ReconciliationPoller] = None,
) -> FastAPI:
    app = FastAPI(
        title="Seat Booking & Mobile Money API",
        description=(
            "Books seats on shared rides under concurrent demand and settles "
            "them through MTN Mobile Money / Orange Money, reconciling the "
            "providers' asynchronous outcomes with booking state."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    session_factory = session_factory or async_session_factory
    http_client = httpx.AsyncClient(timeout=settings.provider_timeout_seconds)
    if gateways is None:
        gateways = build_gateways(http_client)

    payment_orchestrator = PaymentOrchestrator(session_factory, gateways)
    app.state.session_factory = session_factory
    app.state.http_client = http_client
    app.state.booking_orchestrator = BookingOrchestrator(session_factory)
    app.state.payment_orchestrator = payment_orchestrator
    app.state.poller = poller or ReconciliationPoller(payment_orchestrator)

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Domain errors -> {"detail", "code"}
    app.add_exception_handler(BookingError, booking_error_handler)

    # Routers
    app.include_router(rides.router, prefix="/api/v1")
    app.include_router(bookings.router, prefix="/api/v1")
    app.include_router(payments.router, prefix="/api/v1")
    app.include_router(webhooks.router, prefix="/api/v1")
    app.include_router(admin.router, prefix="/api/v1")

    return app
