"""Reservation model."""

import enum
from datetime import datetime

from sqlalchemy import JSON, DateTime, Enum, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from cinebook.models.base import Base


class ReservationStatus(str, enum.Enum):
    """Reservation status enum."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    EXPIRED = "EXPIRED"
    CANCELLED = "CANCELLED"


class PaymentStatus(str, enum.Enum):
    """Payment status enum."""

    NONE = "NONE"
    PROCESSING = "PROCESSING"
    CAPTURED = "CAPTURED"
    DECLINED = "DECLINED"
    REFUNDED = "REFUNDED"


class Reservation(Base):
    """Reservation model representing a time-boxed hold on seats."""

    __tablename__ = "reservations"

    reservation_id: Mapped[str] = mapped_column(String(40), primary_key=True)
    showtime_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("showtimes.showtime_id"), nullable=False
    )
    user_id: Mapped[str] = mapped_column(String(50), nullable=False)
    session_id: Mapped[str | None] = mapped_column(String(100))
    seat_codes: Mapped[list[str]] = mapped_column(JSON, nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[ReservationStatus] = mapped_column(
        Enum(ReservationStatus), default=ReservationStatus.PENDING, nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    idempotency_key: Mapped[str | None] = mapped_column(String(100))
    payment_status: Mapped[PaymentStatus] = mapped_column(
        Enum(PaymentStatus), default=PaymentStatus.NONE, nullable=False
    )
    payment_transaction_id: Mapped[str | None] = mapped_column(String(100))
    closed_at: Mapped[datetime | None] = mapped_column(DateTime)
    close_reason: Mapped[str | None] = mapped_column(String(50))

    __table_args__ = (
        Index("idx_reservation_status_expires", "status", "expires_at"),
        Index("idx_reservation_user", "user_id"),
        Index("idx_reservation_showtime", "showtime_id"),
    )

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at
