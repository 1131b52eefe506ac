"""SQLAlchemy models."""

from cinebook.models.base import Base
from cinebook.models.booking import Booking, BookingSeat
from cinebook.models.reservation import Reservation
from cinebook.models.seat import Seat
from cinebook.models.showtime import Section, Showtime

__all__ = [
    "Base",
    "Showtime",
    "Section",
    "Seat",
    "Reservation",
    "Booking",
    "BookingSeat",
]
