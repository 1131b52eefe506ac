"""Booking ledger: append-only store of confirmed bookings."""

from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from ulid import ULID

from cinebook.errors import BookingNotFound
from cinebook.models.booking import Booking, BookingSeat
from cinebook.services.pricing import Quote


@dataclass(frozen=True)
class BookingDraft:
    """Everything needed to record a booking for a confirmed reservation."""

    reservation_id: str
    idempotency_key: str
    user_id: str
    quote: Quote
    payment_transaction_id: str | None
    confirmed_at: datetime


class BookingLedger:
    """
    Append-only booking records, queryable by user and showtime.

    ``append`` only flushes; it joins the caller's transaction so seats are
    marked BOOKED and the booking recorded together or not at all.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def generate_booking_id() -> str:
        """Generate unique booking id using ULID."""
        return f"BK-{str(ULID())}"

    async def append(self, draft: BookingDraft, booking_id: str | None = None) -> Booking:
        """
        Record a booking, idempotently on the reservation id.

        A retried append for a reservation that already has a booking returns
        the stored record unchanged; nothing is ever overwritten.
        """
        existing = await self.get_by_reservation(draft.reservation_id)
        if existing is not None:
            return existing

        booking = Booking(
            booking_id=booking_id or self.generate_booking_id(),
            reservation_id=draft.reservation_id,
            idempotency_key=draft.idempotency_key,
            user_id=draft.user_id,
            showtime_id=draft.quote.showtime_id,
            seat_codes=draft.quote.seat_codes,
            total_amount=draft.quote.total,
            payment_transaction_id=draft.payment_transaction_id,
            confirmed_at=draft.confirmed_at,
            booking_seats=[
                BookingSeat(
                    showtime_id=draft.quote.showtime_id,
                    seat_code=line.seat_code,
                    section_name=line.section_name,
                    price=line.unit_price,
                    position=position,
                )
                for position, line in enumerate(draft.quote.lines)
            ],
        )
        self.db.add(booking)
        await self.db.flush()
        return booking

    async def get(self, booking_id: str) -> Booking:
        """Get booking by ID."""
        booking = await self.db.get(Booking, booking_id)
        if booking is None:
            raise BookingNotFound(f"Booking {booking_id} not found")
        return booking

    async def get_by_reservation(self, reservation_id: str) -> Booking | None:
        result = await self.db.execute(
            select(Booking).where(Booking.reservation_id == reservation_id)
        )
        return result.scalar_one_or_none()

    async def list_by_user(self, user_id: str) -> list[Booking]:
        """Bookings of a user, most recently confirmed first."""
        result = await self.db.execute(
            select(Booking)
            .where(Booking.user_id == user_id)
            .order_by(Booking.confirmed_at.desc(), Booking.booking_id.desc())
        )
        return list(result.scalars().all())

    async def list_by_showtime(self, showtime_id: str) -> list[Booking]:
        """Bookings of a showtime, most recently confirmed first."""
        result = await self.db.execute(
            select(Booking)
            .where(Booking.showtime_id == showtime_id)
            .order_by(Booking.confirmed_at.desc(), Booking.booking_id.desc())
        )
        return list(result.scalars().all())
