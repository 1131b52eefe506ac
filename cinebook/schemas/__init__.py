"""Pydantic schemas for API request/response."""

from cinebook.schemas.booking import BookingResponse, BookingSeatResponse
from cinebook.schemas.common import ErrorResponse, SuccessResponse
from cinebook.schemas.payment import PaymentCallback
from cinebook.schemas.reservation import (
    ConfirmRequest,
    HoldCreate,
    ReservationResponse,
)
from cinebook.schemas.showtime import (
    RowCreate,
    SeatMapResponse,
    SectionCreate,
    ShowtimeCreate,
    ShowtimeResponse,
)

__all__ = [
    "ErrorResponse",
    "SuccessResponse",
    "RowCreate",
    "SectionCreate",
    "ShowtimeCreate",
    "ShowtimeResponse",
    "SeatMapResponse",
    "HoldCreate",
    "ConfirmRequest",
    "ReservationResponse",
    "BookingResponse",
    "BookingSeatResponse",
    "PaymentCallback",
]
