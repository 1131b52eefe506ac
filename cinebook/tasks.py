"""Background tasks for the booking service."""

import asyncio
import logging

from cinebook.config import get_settings
from cinebook.database import get_db_context
from cinebook.locks import LockRegistry
from cinebook.payments import PaymentGateway
from cinebook.services.reservation_service import ReservationService

logger = logging.getLogger(__name__)

settings = get_settings()


async def reap_expired_holds(
    locks: LockRegistry,
    payment_gateway: PaymentGateway,
    interval_seconds: float | None = None,
) -> None:
    """
    Background task reclaiming expired holds.

    Runs periodically to:
    1. Mark PENDING reservations past their TTL as EXPIRED
    2. Release their seats back to AVAILABLE
    """
    interval = interval_seconds or settings.REAPER_INTERVAL_SECONDS
    logger.info(f"Starting expired hold reaper (every {interval}s)")

    while True:
        try:
            async with get_db_context() as db:
                service = ReservationService(db, locks, payment_gateway)
                expired_count = await service.expire_stale_reservations()

                if expired_count > 0:
                    logger.info(f"Reclaimed {expired_count} expired holds")

        except Exception as e:
            logger.error(f"Error in reaper task: {e}", exc_info=True)

        await asyncio.sleep(interval)


class BackgroundTaskManager:
    """Manager for background tasks."""

    def __init__(self):
        self.tasks: list[asyncio.Task] = []

    async def start(self, locks: LockRegistry, payment_gateway: PaymentGateway) -> None:
        """Start all background tasks."""
        self.tasks.append(
            asyncio.create_task(reap_expired_holds(locks, payment_gateway))
        )
        logger.info("Background tasks started")

    async def stop(self) -> None:
        """Stop all background tasks."""
        for task in self.tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self.tasks.clear()
        logger.info("Background tasks stopped")


# Global instance
background_tasks = BackgroundTaskManager()
