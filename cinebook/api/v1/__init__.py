"""API v1 routers package."""

from cinebook.api.v1.bookings import router as bookings_router
from cinebook.api.v1.payments import router as payments_router
from cinebook.api.v1.reservations import router as reservations_router
from cinebook.api.v1.showtimes import router as showtimes_router

__all__ = [
    "showtimes_router",
    "reservations_router",
    "bookings_router",
    "payments_router",
]
