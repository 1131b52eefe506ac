"""API dependencies."""

from collections.abc import Callable
from datetime import datetime
from typing import Annotated

from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from cinebook.config import get_settings
from cinebook.database import get_db
from cinebook.locks import LocalLockRegistry, LockRegistry, RedisLockRegistry
from cinebook.payments import CallbackPaymentGateway, PaymentGateway, SimulatedPaymentGateway
from cinebook.redis_client import get_redis
from cinebook.services.inventory_service import InventoryService
from cinebook.services.ledger_service import BookingLedger
from cinebook.services.reservation_service import ReservationService
from cinebook.services.showtime_service import ShowtimeService

settings = get_settings()

_lock_registry: LockRegistry | None = None
_payment_gateway: PaymentGateway | None = None


async def get_lock_registry() -> LockRegistry:
    """Process-wide showtime lock registry."""
    global _lock_registry
    if _lock_registry is None:
        if settings.LOCK_BACKEND == "redis":
            _lock_registry = RedisLockRegistry(await get_redis())
        else:
            _lock_registry = LocalLockRegistry()
    return _lock_registry


def get_payment_gateway() -> PaymentGateway:
    """Process-wide payment collaborator."""
    global _payment_gateway
    if _payment_gateway is None:
        if settings.PAYMENT_MODE == "callback":
            _payment_gateway = CallbackPaymentGateway()
        else:
            _payment_gateway = SimulatedPaymentGateway(
                delay_seconds=settings.PAYMENT_SIMULATED_DELAY_MS / 1000
            )
    return _payment_gateway


def get_clock() -> Callable[[], datetime]:
    return datetime.now


# Type aliases
DBSession = Annotated[AsyncSession, Depends(get_db)]
Locks = Annotated[LockRegistry, Depends(get_lock_registry)]
Payments = Annotated[PaymentGateway, Depends(get_payment_gateway)]
Clock = Annotated[Callable[[], datetime], Depends(get_clock)]


async def get_current_user_id(
    x_user_id: Annotated[str | None, Header()] = None,
) -> str:
    """
    Get current user ID from header.

    The identity provider authenticates the caller upstream; the id is
    trusted as an opaque string.
    """
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header is required",
        )
    return x_user_id


CurrentUser = Annotated[str, Depends(get_current_user_id)]


def get_showtime_service(db: DBSession, clock: Clock) -> ShowtimeService:
    """Get showtime service."""
    return ShowtimeService(db, clock)


def get_inventory_service(db: DBSession, clock: Clock) -> InventoryService:
    """Get inventory service."""
    return InventoryService(db, clock)


def get_booking_ledger(db: DBSession) -> BookingLedger:
    """Get booking ledger."""
    return BookingLedger(db)


def get_reservation_service(
    db: DBSession,
    locks: Locks,
    payment_gateway: Payments,
    clock: Clock,
) -> ReservationService:
    """Get reservation service."""
    return ReservationService(db, locks, payment_gateway, clock)


# Annotated dependencies
ShowtimeServiceDep = Annotated[ShowtimeService, Depends(get_showtime_service)]
InventoryServiceDep = Annotated[InventoryService, Depends(get_inventory_service)]
BookingLedgerDep = Annotated[BookingLedger, Depends(get_booking_ledger)]
ReservationServiceDep = Annotated[ReservationService, Depends(get_reservation_service)]
