"""Showtime seat inventory."""

from collections.abc import Callable, Sequence
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from cinebook.errors import (
    InvalidSeatSelection,
    InvalidShowtime,
    SeatConflict,
    StaleReservation,
    UnknownSeat,
)
from cinebook.models.seat import Seat, SeatStatus
from cinebook.models.showtime import Showtime


class InventoryService:
    """
    Authoritative seat state of every showtime.

    The mutating methods (``try_mark_held``, ``mark_booked``, ``release``)
    must be called while holding the showtime lock, and they only flush: the
    caller commits, so a mutation can share a transaction with the ledger.
    """

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    async def get_seat_map(self, showtime_id: str) -> dict[str, SeatStatus]:
        """
        Read-only snapshot of seat status for display.

        Never takes the showtime lock; a seat whose hold has expired is
        reported AVAILABLE. Never use this to decide whether a hold succeeds.
        """
        result = await self.db.execute(
            select(Seat)
            .where(Seat.showtime_id == showtime_id)
            .order_by(Seat.section_id, Seat.row_label, Seat.seat_number)
            .execution_options(populate_existing=True)
        )
        seats = list(result.scalars().all())
        if not seats:
            if await self.db.get(Showtime, showtime_id) is None:
                raise InvalidShowtime(f"Showtime {showtime_id} not found")
            return {}

        now = self.clock()
        return {
            seat.seat_code: (
                SeatStatus.AVAILABLE if seat.is_available(now) else seat.status
            )
            for seat in seats
        }

    async def get_seats_for_update(
        self,
        showtime_id: str,
        seat_codes: Sequence[str],
    ) -> list[Seat]:
        """
        Load the given seats with row locks, in request order.

        Rows are refreshed from the database so a long-lived session never
        decides on stale status. Raises UnknownSeat for codes that are not
        part of the showtime.
        """
        result = await self.db.execute(
            select(Seat)
            .where(Seat.showtime_id == showtime_id, Seat.seat_code.in_(seat_codes))
            .order_by(Seat.seat_pk)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        by_code = {seat.seat_code: seat for seat in result.scalars().all()}

        unknown = [code for code in seat_codes if code not in by_code]
        if unknown:
            if await self.db.get(Showtime, showtime_id) is None:
                raise InvalidShowtime(f"Showtime {showtime_id} not found")
            raise UnknownSeat(unknown, showtime_id)

        return [by_code[code] for code in seat_codes]

    async def try_mark_held(
        self,
        showtime_id: str,
        seat_codes: Sequence[str],
        reservation_id: str,
        expires_at: datetime,
    ) -> list[Seat]:
        """
        Move exactly the requested seats from AVAILABLE to HELD, or none.

        Raises:
            SeatConflict: naming every requested seat that is HELD (by a live
                hold) or BOOKED. No seat is changed in that case.
        """
        if len(set(seat_codes)) != len(seat_codes):
            raise InvalidSeatSelection("Duplicate seats in request", seat_codes)

        seats = await self.get_seats_for_update(showtime_id, seat_codes)

        now = self.clock()
        unavailable = [seat.seat_code for seat in seats if not seat.is_available(now)]
        if unavailable:
            raise SeatConflict(unavailable)

        for seat in seats:
            seat.status = SeatStatus.HELD
            seat.held_by = reservation_id
            seat.hold_expires_at = expires_at
            seat.version += 1

        await self.db.flush()
        return seats

    async def mark_booked(
        self,
        showtime_id: str,
        seat_codes: Sequence[str],
        reservation_id: str,
        booking_id: str,
    ) -> list[Seat]:
        """
        Move seats HELD by ``reservation_id`` to BOOKED.

        Raises:
            StaleReservation: if any seat is not currently held by the
                reservation (e.g. its hold was reclaimed).
        """
        seats = await self.get_seats_for_update(showtime_id, seat_codes)

        stale = [
            seat.seat_code
            for seat in seats
            if seat.status != SeatStatus.HELD or seat.held_by != reservation_id
        ]
        if stale:
            raise StaleReservation(
                f"Seats no longer held by reservation {reservation_id}", stale
            )

        for seat in seats:
            seat.status = SeatStatus.BOOKED
            seat.booking_id = booking_id
            seat.held_by = None
            seat.hold_expires_at = None
            seat.version += 1

        await self.db.flush()
        return seats

    async def release(
        self,
        showtime_id: str,
        seat_codes: Sequence[str],
        reservation_id: str,
    ) -> int:
        """
        Move seats HELD by ``reservation_id`` back to AVAILABLE.

        Seats that are already AVAILABLE, booked, or held by someone else are
        left untouched, so releasing twice is a no-op.

        Returns:
            Number of seats released
        """
        result = await self.db.execute(
            select(Seat)
            .where(
                Seat.showtime_id == showtime_id,
                Seat.seat_code.in_(seat_codes),
                Seat.status == SeatStatus.HELD,
                Seat.held_by == reservation_id,
            )
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        seats = list(result.scalars().all())

        for seat in seats:
            seat.status = SeatStatus.AVAILABLE
            seat.held_by = None
            seat.hold_expires_at = None
            seat.version += 1

        if seats:
            await self.db.flush()
        return len(seats)
