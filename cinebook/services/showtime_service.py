"""Showtime service: initializes seat inventory from catalog definitions."""

import logging
from collections.abc import Callable
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from cinebook.errors import InvalidShowtime, ShowtimeExists
from cinebook.models.seat import Seat, SeatStatus
from cinebook.models.showtime import Section, Showtime
from cinebook.schemas.showtime import ShowtimeCreate

logger = logging.getLogger(__name__)


class ShowtimeService:
    """Service for showtime operations."""

    def __init__(self, db: AsyncSession, clock: Callable[[], datetime] = datetime.now):
        self.db = db
        self.clock = clock

    async def create_showtime(self, data: ShowtimeCreate) -> Showtime:
        """
        Create a showtime with its sections and seats.

        Seats listed as booked in the definition were sold outside this
        system; they start BOOKED without a ledger booking id.
        """
        if await self.db.get(Showtime, data.showtime_id) is not None:
            raise ShowtimeExists(f"Showtime {data.showtime_id} already exists")

        showtime = Showtime(
            showtime_id=data.showtime_id,
            movie_id=data.movie_id,
            theater_id=data.theater_id,
            auditorium=data.auditorium,
            starts_at=data.starts_at,
            created_at=self.clock(),
        )
        self.db.add(showtime)

        seat_count = 0
        for position, section_data in enumerate(data.sections):
            section = Section(
                name=section_data.name,
                unit_price=section_data.unit_price,
                position=position,
            )
            showtime.sections.append(section)

            for row in section_data.rows:
                booked = set(row.booked)
                for number in range(1, row.seats + 1):
                    section.seats.append(
                        Seat(
                            showtime=showtime,
                            row_label=row.label,
                            seat_number=number,
                            seat_code=f"{row.label}{number}",
                            status=(
                                SeatStatus.BOOKED
                                if number in booked
                                else SeatStatus.AVAILABLE
                            ),
                            version=0,
                        )
                    )
                    seat_count += 1

        await self.db.commit()
        logger.info(
            f"Created showtime {showtime.showtime_id} with "
            f"{len(data.sections)} sections and {seat_count} seats"
        )
        return await self.get_showtime(showtime.showtime_id)

    async def get_showtime(self, showtime_id: str) -> Showtime:
        """Get a showtime with its sections and their seats loaded."""
        result = await self.db.execute(
            select(Showtime)
            .where(Showtime.showtime_id == showtime_id)
            .options(selectinload(Showtime.sections).selectinload(Section.seats))
            .execution_options(populate_existing=True)
        )
        showtime = result.scalar_one_or_none()
        if showtime is None:
            raise InvalidShowtime(f"Showtime {showtime_id} not found")
        return showtime

    async def list_showtimes(
        self,
        movie_id: str | None = None,
        theater_id: str | None = None,
    ) -> list[Showtime]:
        query = select(Showtime).options(
            selectinload(Showtime.sections).selectinload(Section.seats)
        )

        if movie_id:
            query = query.where(Showtime.movie_id == movie_id)
        if theater_id:
            query = query.where(Showtime.theater_id == theater_id)

        query = query.order_by(Showtime.starts_at)
        result = await self.db.execute(query)
        return list(result.scalars().all())
