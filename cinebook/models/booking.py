"""Booking ledger models."""

from datetime import datetime

from sqlalchemy import (
    JSON,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cinebook.models.base import Base


class Booking(Base):
    """Immutable record of a confirmed reservation."""

    __tablename__ = "bookings"

    booking_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    reservation_id: Mapped[str] = mapped_column(
        String(40), ForeignKey("reservations.reservation_id"), nullable=False
    )
    idempotency_key: Mapped[str] = mapped_column(String(100), nullable=False)
    user_id: Mapped[str] = mapped_column(String(50), nullable=False)
    showtime_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("showtimes.showtime_id"), nullable=False
    )
    seat_codes: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    total_amount: Mapped[int] = mapped_column(Integer, nullable=False)
    payment_transaction_id: Mapped[str | None] = mapped_column(String(100))
    confirmed_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Relationships
    booking_seats: Mapped[list["BookingSeat"]] = relationship(
        "BookingSeat",
        back_populates="booking",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="BookingSeat.position",
    )

    __table_args__ = (
        UniqueConstraint("reservation_id", name="uk_booking_reservation"),
        Index("idx_booking_user_confirmed", "user_id", "confirmed_at"),
        Index("idx_booking_showtime_confirmed", "showtime_id", "confirmed_at"),
    )


class BookingSeat(Base):
    """One seat of a booking; a seat can appear in at most one booking."""

    __tablename__ = "booking_seats"

    booking_seat_id: Mapped[int] = mapped_column(
        Integer, primary_key=True, autoincrement=True
    )
    booking_id: Mapped[str] = mapped_column(
        String(40), ForeignKey("bookings.booking_id"), nullable=False
    )
    showtime_id: Mapped[str] = mapped_column(String(50), nullable=False)
    seat_code: Mapped[str] = mapped_column(String(20), nullable=False)
    section_name: Mapped[str] = mapped_column(String(50), nullable=False)
    price: Mapped[int] = mapped_column(Integer, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False)

    # Relationships
    booking: Mapped["Booking"] = relationship("Booking", back_populates="booking_seats")

    __table_args__ = (
        UniqueConstraint("showtime_id", "seat_code", name="uk_booked_seat"),
        Index("idx_booking_seat_booking", "booking_id"),
    )
