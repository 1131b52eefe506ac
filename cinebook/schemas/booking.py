"""Booking schemas."""

from datetime import datetime

from cinebook.schemas.common import BaseSchema


class BookingSeatResponse(BaseSchema):
    seat_code: str
    section_name: str
    price: int


class BookingResponse(BaseSchema):
    """Schema for booking response."""

    booking_id: str
    reservation_id: str
    user_id: str
    showtime_id: str
    seat_codes: list[str]
    total_amount: int
    payment_transaction_id: str | None = None
    confirmed_at: datetime
    booking_seats: list[BookingSeatResponse] = []
