"""Seat pricing.

Prices are integers in minor currency units, so a total is always the exact
sum of its seats' unit prices regardless of how many seats are involved.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType

from cinebook.errors import InvalidShowtime, UnknownSeat
from cinebook.models.showtime import Showtime


@dataclass(frozen=True)
class SeatPrice:
    seat_code: str
    section_name: str
    unit_price: int


@dataclass(frozen=True)
class PriceTable:
    """Seat code -> price for one showtime, fixed when the showtime is created."""

    showtime_id: str
    prices: Mapping[str, SeatPrice] = field(default_factory=dict)

    @classmethod
    def from_showtime(cls, showtime: Showtime | None) -> "PriceTable":
        """Build from a showtime whose sections and their seats are loaded."""
        if showtime is None:
            raise InvalidShowtime("Showtime not found")

        prices = {}
        for section in showtime.sections:
            for seat in section.seats:
                prices[seat.seat_code] = SeatPrice(
                    seat_code=seat.seat_code,
                    section_name=section.name,
                    unit_price=section.unit_price,
                )
        return cls(showtime.showtime_id, MappingProxyType(prices))


@dataclass(frozen=True)
class Quote:
    showtime_id: str
    lines: tuple[SeatPrice, ...]

    @property
    def total(self) -> int:
        return sum(line.unit_price for line in self.lines)

    @property
    def seat_codes(self) -> list[str]:
        return [line.seat_code for line in self.lines]


class PricingEngine:
    """Side-effect free price resolution against a showtime's price table."""

    @staticmethod
    def unit_price(table: PriceTable, seat_code: str) -> int:
        try:
            return table.prices[seat_code].unit_price
        except KeyError:
            raise UnknownSeat([seat_code], table.showtime_id)

    @staticmethod
    def quote(table: PriceTable, seat_codes: Iterable[str]) -> Quote:
        """Price each seat in request order; unknown seats are all reported at once."""
        seat_codes = list(seat_codes)
        unknown = [code for code in seat_codes if code not in table.prices]
        if unknown:
            raise UnknownSeat(unknown, table.showtime_id)
        return Quote(
            showtime_id=table.showtime_id,
            lines=tuple(table.prices[code] for code in seat_codes),
        )

    @classmethod
    def total(cls, table: PriceTable, seat_codes: Iterable[str]) -> int:
        return cls.quote(table, seat_codes).total
