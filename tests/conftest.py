"""Shared fixtures: a file-backed SQLite database, a controllable clock and payment stub."""

import asyncio
from datetime import datetime, timedelta

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from cinebook.config import Settings
from cinebook.locks import LocalLockRegistry
from cinebook.models import Base, Booking, Reservation
from cinebook.payments import PaymentOutcome, PaymentResult
from cinebook.schemas.showtime import ShowtimeCreate
from cinebook.services.inventory_service import InventoryService
from cinebook.services.reservation_service import ReservationService
from cinebook.services.showtime_service import ShowtimeService

START = datetime(2026, 3, 14, 18, 0, 0)


class FakeClock:
    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


class StubPaymentGateway:
    """Records charges and refunds; outcome and behavior are set per test."""

    def __init__(self):
        self.outcome = PaymentOutcome.SUCCESS
        self.hang = False
        self.on_charge = None
        self.charges: list[tuple[int, str, str]] = []
        self.refunds: list[str] = []

    async def charge(self, amount: int, reference: str, proof: str) -> PaymentResult:
        self.charges.append((amount, reference, proof))
        if self.on_charge is not None:
            await self.on_charge(reference)
        if self.hang:
            await asyncio.Event().wait()

        if self.outcome == PaymentOutcome.SUCCESS:
            return PaymentResult(
                PaymentOutcome.SUCCESS, transaction_id=f"txn_{len(self.charges)}"
            )
        return PaymentResult(self.outcome, reason="card declined")

    async def refund(self, transaction_id: str) -> None:
        self.refunds.append(transaction_id)


def catalog_showtime(showtime_id: str = "S1") -> ShowtimeCreate:
    return ShowtimeCreate(
        showtime_id=showtime_id,
        movie_id="M-dune-2",
        theater_id="T-downtown",
        auditorium="Hall 1",
        starts_at=START + timedelta(hours=2),
        sections=[
            {
                "name": "Premium",
                "unit_price": 350,
                "rows": [
                    {"label": "A", "seats": 8, "booked": [1, 2]},
                    {"label": "B", "seats": 8},
                ],
            },
            {"name": "Balcony", "unit_price": 250, "rows": [{"label": "C", "seats": 10}]},
            {"name": "Regular", "unit_price": 150, "rows": [{"label": "D", "seats": 10}]},
        ],
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def settings() -> Settings:
    return Settings(
        HOLD_TTL_SECONDS=300,
        MAX_SEATS_PER_HOLD=6,
        PAYMENT_TIMEOUT_SECONDS=5,
        LEDGER_MAX_RETRIES=2,
        LEDGER_RETRY_BACKOFF_MS=1,
    )


@pytest.fixture
def locks() -> LocalLockRegistry:
    return LocalLockRegistry()


@pytest.fixture
def payment_gateway() -> StubPaymentGateway:
    return StubPaymentGateway()


@pytest.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'cinebook.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def showtime(session_factory, clock) -> str:
    async with session_factory() as session:
        await ShowtimeService(session, clock).create_showtime(catalog_showtime())
    return "S1"


@pytest.fixture
async def make_service(session_factory, locks, payment_gateway, clock, settings):
    """Build a ReservationService on its own session, like one request would."""
    sessions = []

    def factory() -> ReservationService:
        session = session_factory()
        sessions.append(session)
        return ReservationService(session, locks, payment_gateway, clock, settings)

    yield factory

    for session in sessions:
        await session.close()


@pytest.fixture
def seat_map(session_factory, clock):
    """Fresh seat map snapshot read through a new session."""

    async def read(showtime_id: str = "S1"):
        async with session_factory() as session:
            return await InventoryService(session, clock).get_seat_map(showtime_id)

    return read


async def booking_count(session_factory) -> int:
    async with session_factory() as session:
        return await session.scalar(select(func.count()).select_from(Booking))


async def load_reservation(session_factory, reservation_id: str) -> Reservation:
    async with session_factory() as session:
        return await session.get(Reservation, reservation_id)
