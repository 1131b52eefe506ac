"""Bookings API endpoints."""

from fastapi import APIRouter

from cinebook.api.v1.dependencies import BookingLedgerDep, CurrentUser
from cinebook.errors import NotBookingOwner
from cinebook.schemas.booking import BookingResponse

router = APIRouter()


@router.get(
    "",
    response_model=list[BookingResponse],
    summary="Get user bookings",
)
async def get_user_bookings(
    current_user: CurrentUser,
    ledger: BookingLedgerDep,
) -> list[BookingResponse]:
    """Get all bookings for the current user, most recent first."""
    bookings = await ledger.list_by_user(current_user)
    return [BookingResponse.model_validate(b) for b in bookings]


@router.get(
    "/{booking_id}",
    response_model=BookingResponse,
    summary="Get booking details",
)
async def get_booking(
    booking_id: str,
    current_user: CurrentUser,
    ledger: BookingLedgerDep,
) -> BookingResponse:
    booking = await ledger.get(booking_id)

    if booking.user_id != current_user:
        raise NotBookingOwner("Cannot access another user's booking")

    return BookingResponse.model_validate(booking)
