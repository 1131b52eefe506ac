"""API v1 main router."""

from fastapi import APIRouter

from cinebook.api.v1.bookings import router as bookings_router
from cinebook.api.v1.payments import router as payments_router
from cinebook.api.v1.reservations import router as reservations_router
from cinebook.api.v1.showtimes import router as showtimes_router

router = APIRouter(prefix="/v1")

router.include_router(showtimes_router, prefix="/showtimes", tags=["Showtimes"])
router.include_router(reservations_router, prefix="/reservations", tags=["Reservations"])
router.include_router(bookings_router, prefix="/bookings", tags=["Bookings"])
router.include_router(payments_router, prefix="/payments", tags=["Payments"])
