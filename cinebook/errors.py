"""Booking error taxonomy.

Every error carries a stable ``error_code`` and the HTTP status the API
renders it with, plus the seat ids it implicates (if any) so callers can
re-offer alternatives instead of showing a bare failure.
"""

from collections.abc import Iterable


class BookingError(Exception):
    """Base class for all booking domain errors."""

    error_code = "BOOKING_ERROR"
    status_code = 400

    def __init__(self, message: str, seats: Iterable[str] | None = None):
        super().__init__(message)
        self.message = message
        self.seats: list[str] = list(seats or [])

    def to_dict(self) -> dict:
        return {
            "error": self.error_code,
            "detail": self.message,
            "seats": self.seats,
        }


class SeatConflict(BookingError):
    """One or more requested seats are held or booked by someone else."""

    error_code = "SEAT_CONFLICT"
    status_code = 409

    def __init__(self, seats: Iterable[str], message: str | None = None):
        seats = list(seats)
        super().__init__(
            message or f"Seats not available: {', '.join(seats)}",
            seats,
        )


class ReservationExpired(BookingError):
    """The hold TTL elapsed before the reservation was confirmed."""

    error_code = "RESERVATION_EXPIRED"
    status_code = 410


class StaleReservation(ReservationExpired):
    """Seats are no longer held by the reservation trying to book them."""

    error_code = "STALE_RESERVATION"


class PaymentFailed(BookingError):
    """Payment was declined or timed out; the hold has been released."""

    error_code = "PAYMENT_FAILED"
    status_code = 402


class AlreadyConfirmed(BookingError):
    """Reservation was already confirmed under a different idempotency key."""

    error_code = "ALREADY_CONFIRMED"
    status_code = 409


class ConfirmationInProgress(BookingError):
    """Another confirm attempt for the reservation is still running."""

    error_code = "CONFIRMATION_IN_PROGRESS"
    status_code = 409


class ReservationNotPending(BookingError):
    error_code = "RESERVATION_NOT_PENDING"
    status_code = 409


class ReservationCancelled(BookingError):
    error_code = "RESERVATION_CANCELLED"
    status_code = 409


class UnknownSeat(BookingError):
    """Seat ids that are not part of the showtime's declared sections."""

    error_code = "UNKNOWN_SEAT"
    status_code = 422

    def __init__(self, seats: Iterable[str], showtime_id: str | None = None):
        seats = list(seats)
        where = f" in showtime {showtime_id}" if showtime_id else ""
        super().__init__(f"Unknown seats{where}: {', '.join(seats)}", seats)


class InvalidSeatSelection(BookingError):
    error_code = "INVALID_SEAT_SELECTION"
    status_code = 422


class InvalidShowtime(BookingError):
    error_code = "INVALID_SHOWTIME"
    status_code = 404


class ShowtimeExists(BookingError):
    error_code = "SHOWTIME_EXISTS"
    status_code = 409


class ReservationNotFound(BookingError):
    error_code = "RESERVATION_NOT_FOUND"
    status_code = 404


class BookingNotFound(BookingError):
    error_code = "BOOKING_NOT_FOUND"
    status_code = 404


class NotReservationOwner(BookingError):
    error_code = "NOT_RESERVATION_OWNER"
    status_code = 403


class NotBookingOwner(BookingError):
    error_code = "NOT_BOOKING_OWNER"
    status_code = 403


class StorageFailure(BookingError):
    """Ledger append kept failing after the payment was captured."""

    error_code = "STORAGE_FAILURE"
    status_code = 503


class InventoryBusy(BookingError):
    """The showtime lock could not be acquired in time."""

    error_code = "INVENTORY_BUSY"
    status_code = 503
