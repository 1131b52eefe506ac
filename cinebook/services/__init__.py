"""Services package."""

from cinebook.services.inventory_service import InventoryService
from cinebook.services.ledger_service import BookingDraft, BookingLedger
from cinebook.services.pricing import PriceTable, PricingEngine, Quote, SeatPrice
from cinebook.services.reservation_service import ReservationService
from cinebook.services.showtime_service import ShowtimeService

__all__ = [
    "ShowtimeService",
    "InventoryService",
    "PricingEngine",
    "PriceTable",
    "Quote",
    "SeatPrice",
    "BookingLedger",
    "BookingDraft",
    "ReservationService",
]
