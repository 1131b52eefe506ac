"""Showtimes API endpoints."""

from fastapi import APIRouter, status

from cinebook.api.v1.dependencies import (
    BookingLedgerDep,
    InventoryServiceDep,
    ShowtimeServiceDep,
)
from cinebook.models.seat import SeatStatus
from cinebook.models.showtime import Showtime
from cinebook.schemas.booking import BookingResponse
from cinebook.schemas.showtime import (
    SeatMapResponse,
    SectionResponse,
    ShowtimeCreate,
    ShowtimeResponse,
)

router = APIRouter()


def _showtime_response(showtime: Showtime) -> ShowtimeResponse:
    return ShowtimeResponse(
        showtime_id=showtime.showtime_id,
        movie_id=showtime.movie_id,
        theater_id=showtime.theater_id,
        auditorium=showtime.auditorium,
        starts_at=showtime.starts_at,
        sections=[
            SectionResponse(
                name=section.name,
                unit_price=section.unit_price,
                seat_count=len(section.seats),
            )
            for section in showtime.sections
        ],
    )


@router.post(
    "",
    response_model=ShowtimeResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create showtime",
)
async def create_showtime(
    showtime_data: ShowtimeCreate,
    showtime_service: ShowtimeServiceDep,
) -> ShowtimeResponse:
    """
    Initialize a showtime's seat inventory from a catalog definition.

    Seats listed as booked in a row start out BOOKED.
    """
    showtime = await showtime_service.create_showtime(showtime_data)
    return _showtime_response(showtime)


@router.get(
    "",
    response_model=list[ShowtimeResponse],
    summary="List showtimes",
)
async def list_showtimes(
    showtime_service: ShowtimeServiceDep,
    movie_id: str | None = None,
    theater_id: str | None = None,
) -> list[ShowtimeResponse]:
    showtimes = await showtime_service.list_showtimes(movie_id, theater_id)
    return [_showtime_response(s) for s in showtimes]


@router.get(
    "/{showtime_id}",
    response_model=ShowtimeResponse,
    summary="Get showtime details",
)
async def get_showtime(
    showtime_id: str,
    showtime_service: ShowtimeServiceDep,
) -> ShowtimeResponse:
    showtime = await showtime_service.get_showtime(showtime_id)
    return _showtime_response(showtime)


@router.get(
    "/{showtime_id}/seats",
    response_model=SeatMapResponse,
    summary="Get seat map",
)
async def get_seat_map(
    showtime_id: str,
    inventory_service: InventoryServiceDep,
) -> SeatMapResponse:
    """
    Seat status snapshot for display.

    Holding seats is decided only by the reservation endpoint; a seat shown
    AVAILABLE here can still be taken by the time a hold is requested.
    """
    seats = await inventory_service.get_seat_map(showtime_id)
    return SeatMapResponse(
        showtime_id=showtime_id,
        seats=seats,
        available_count=sum(1 for s in seats.values() if s == SeatStatus.AVAILABLE),
    )


@router.get(
    "/{showtime_id}/bookings",
    response_model=list[BookingResponse],
    summary="Get showtime bookings",
)
async def get_showtime_bookings(
    showtime_id: str,
    showtime_service: ShowtimeServiceDep,
    ledger: BookingLedgerDep,
) -> list[BookingResponse]:
    """Confirmed bookings of a showtime, most recent first."""
    await showtime_service.get_showtime(showtime_id)
    bookings = await ledger.list_by_showtime(showtime_id)
    return [BookingResponse.model_validate(b) for b in bookings]
