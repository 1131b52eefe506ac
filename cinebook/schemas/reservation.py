"""Reservation schemas."""

from datetime import datetime

from pydantic import Field

from cinebook.models.reservation import PaymentStatus, ReservationStatus
from cinebook.schemas.common import BaseSchema


class HoldCreate(BaseSchema):
    """Schema for requesting a hold on seats."""

    showtime_id: str = Field(..., min_length=1, max_length=50)
    seat_ids: list[str] = Field(..., min_length=1)
    session_id: str | None = Field(None, max_length=100)


class ConfirmRequest(BaseSchema):
    """Schema for confirming a hold with a payment proof."""

    payment_proof: str = Field(..., min_length=1, max_length=200)
    idempotency_key: str | None = Field(None, min_length=1, max_length=100)


class ReservationResponse(BaseSchema):
    """Schema for reservation response."""

    reservation_id: str
    showtime_id: str
    user_id: str
    session_id: str | None
    seat_codes: list[str]
    amount: int
    status: ReservationStatus
    payment_status: PaymentStatus
    created_at: datetime
    expires_at: datetime
    closed_at: datetime | None = None
    close_reason: str | None = None
