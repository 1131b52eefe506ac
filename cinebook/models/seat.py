"""Seat model."""

import enum
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cinebook.models.base import Base

if TYPE_CHECKING:
    from cinebook.models.showtime import Section, Showtime


class SeatStatus(str, enum.Enum):
    """Seat status enum."""

    AVAILABLE = "AVAILABLE"
    HELD = "HELD"
    BOOKED = "BOOKED"


class Seat(Base):
    """
    Seat of one showtime.

    ``seat_code`` is the row label followed by the seat number (``A3``) and is
    the seat id clients use. ``held_by`` and ``hold_expires_at`` are set only
    while the seat is HELD; ``booking_id`` is set once it is BOOKED through
    the ledger.
    """

    __tablename__ = "seats"

    seat_pk: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    showtime_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("showtimes.showtime_id"), nullable=False
    )
    section_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("sections.section_id"), nullable=False
    )
    row_label: Mapped[str] = mapped_column(String(10), nullable=False)
    seat_number: Mapped[int] = mapped_column(Integer, nullable=False)
    seat_code: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[SeatStatus] = mapped_column(
        Enum(SeatStatus), default=SeatStatus.AVAILABLE, nullable=False
    )
    held_by: Mapped[str | None] = mapped_column(String(40))
    hold_expires_at: Mapped[datetime | None] = mapped_column(DateTime)
    booking_id: Mapped[str | None] = mapped_column(String(40))
    version: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    # Relationships
    showtime: Mapped["Showtime"] = relationship("Showtime", back_populates="seats")
    section: Mapped["Section"] = relationship("Section", back_populates="seats")

    __table_args__ = (
        UniqueConstraint("showtime_id", "seat_code", name="uk_showtime_seat"),
        Index("idx_seat_showtime_status", "showtime_id", "status"),
        Index("idx_seat_held_by", "held_by"),
    )

    def is_available(self, now: datetime) -> bool:
        """AVAILABLE, or HELD by a hold that has already expired."""
        if self.status == SeatStatus.AVAILABLE:
            return True
        return (
            self.status == SeatStatus.HELD
            and self.hold_expires_at is not None
            and self.hold_expires_at <= now
        )
