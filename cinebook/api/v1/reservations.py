"""Reservations API endpoints."""

from fastapi import APIRouter, status

from cinebook.api.v1.dependencies import CurrentUser, ReservationServiceDep
from cinebook.schemas.booking import BookingResponse
from cinebook.schemas.reservation import (
    ConfirmRequest,
    HoldCreate,
    ReservationResponse,
)

router = APIRouter()


@router.post(
    "",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Hold seats",
)
async def create_hold(
    hold_data: HoldCreate,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> ReservationResponse:
    """
    Hold seats for the current user, all or nothing.

    If any requested seat is already held or booked nothing is held and the
    409 response lists the contended seats. Holds expire after the
    configured TTL (default 5 minutes) unless confirmed.
    """
    reservation = await reservation_service.create_hold(
        showtime_id=hold_data.showtime_id,
        seat_ids=hold_data.seat_ids,
        user_id=current_user,
        session_id=hold_data.session_id,
    )
    return ReservationResponse.model_validate(reservation)


@router.get(
    "",
    response_model=list[ReservationResponse],
    summary="Get user reservations",
)
async def get_user_reservations(
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
    active_only: bool = True,
) -> list[ReservationResponse]:
    """Get reservations for the current user."""
    reservations = await reservation_service.list_user_reservations(
        user_id=current_user,
        active_only=active_only,
    )
    return [ReservationResponse.model_validate(r) for r in reservations]


@router.get(
    "/{reservation_id}",
    response_model=ReservationResponse,
    summary="Get reservation details",
)
async def get_reservation(
    reservation_id: str,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> ReservationResponse:
    reservation = await reservation_service.get_reservation(reservation_id, current_user)
    return ReservationResponse.model_validate(reservation)


@router.post(
    "/{reservation_id}/confirm",
    response_model=BookingResponse,
    summary="Confirm reservation",
)
async def confirm_reservation(
    reservation_id: str,
    confirm_data: ConfirmRequest,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> BookingResponse:
    """
    Pay for a hold and turn it into a booking.

    Retrying with the same idempotency key returns the same booking.
    """
    booking = await reservation_service.confirm(
        reservation_id=reservation_id,
        payment_proof=confirm_data.payment_proof,
        idempotency_key=confirm_data.idempotency_key,
        user_id=current_user,
    )
    return BookingResponse.model_validate(booking)


@router.delete(
    "/{reservation_id}",
    response_model=ReservationResponse,
    summary="Cancel reservation",
)
async def cancel_reservation(
    reservation_id: str,
    current_user: CurrentUser,
    reservation_service: ReservationServiceDep,
) -> ReservationResponse:
    """Release a pending hold early."""
    reservation = await reservation_service.cancel(reservation_id, current_user)
    return ReservationResponse.model_validate(reservation)
