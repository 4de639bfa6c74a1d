"""
Shared test fixtures.

Uses a file-backed SQLite database (via aiosqlite) so tests run without
Docker / PostgreSQL / Redis.  The production models run unchanged: CHECK
constraints and the partial unique indexes are enforced by SQLite too.

Every transaction opens with ``BEGIN IMMEDIATE`` and each session gets its
own connection (``NullPool``), so concurrent sessions queue on SQLite's
write lock the way they would queue on row locks in PostgreSQL.
"""

from decimal import Decimal
from typing import AsyncGenerator

import pytest
import pytest_asyncio
from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from src.domain.enums import PaymentProvider
from src.infrastructure.database import Base, utcnow
from src.infrastructure.models import RideModel
from src.infrastructure.payments.sandbox import SandboxGateway
from src.services.booking import BookingOrchestrator
from src.services.payment import PaymentOrchestrator

# Sandbox outcome is picked by the last digit (see SandboxGateway)
MTN_OK = "670000005"
MTN_DECLINED = "670000001"
MTN_FAILS = "670000002"
MTN_HANGS = "670000003"
MTN_TIMES_OUT = "670000004"
ORANGE_OK = "690000005"


# ── Test DB (SQLite file) ─────────────────────────────────────────────


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Create tables in a fresh database file, then dispose."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'test.db'}",
        poolclass=NullPool,
        connect_args={"timeout": 30},
    )

    @event.listens_for(test_engine.sync_engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield test_engine

    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


# ── Services ──────────────────────────────────────────────────────────


@pytest.fixture
def gateways() -> dict[PaymentProvider, SandboxGateway]:
    return {provider: SandboxGateway(provider) for provider in PaymentProvider}


@pytest.fixture
def booking_orchestrator(session_factory) -> BookingOrchestrator:
    return BookingOrchestrator(session_factory, max_attempts=5)


@pytest.fixture
def payment_orchestrator(session_factory, gateways) -> PaymentOrchestrator:
    return PaymentOrchestrator(session_factory, gateways)


# ── Data helpers ──────────────────────────────────────────────────────


@pytest.fixture
def make_ride(session_factory):
    """Factory: insert a ride and return it."""

    async def _make(
        total_seats: int = 4, price_per_seat: str = "5000", driver_id: str = "drv-1"
    ) -> RideModel:
        async with session_factory() as session:
            ride = RideModel(
                driver_id=driver_id,
                from_city="Douala",
                to_city="Yaoundé",
                departure_time=utcnow(),
                price_per_seat=Decimal(price_per_seat),
                total_seats=total_seats,
                committed_seats=0,
                version=0,
            )
            session.add(ride)
            await session.commit()
            return ride

    return _make


@pytest.fixture
def load(session_factory):
    """Fetch a fresh copy of a row in its own session."""

    async def _load(model, pk):
        async with session_factory() as session:
            return await session.get(model, pk)

    return _load
