"""Showtime schemas."""

from datetime import datetime

from pydantic import Field, field_validator, model_validator

from cinebook.models.seat import SeatStatus
from cinebook.schemas.common import BaseSchema


class RowCreate(BaseSchema):
    """A row of seats numbered 1..seats; ``booked`` lists seats already sold."""

    label: str = Field(..., min_length=1, max_length=5, pattern=r"^[A-Za-z]+$")
    seats: int = Field(..., gt=0, le=100)
    booked: list[int] = []

    @field_validator("label")
    @classmethod
    def upper_label(cls, value: str) -> str:
        return value.upper()

    @field_validator("booked")
    @classmethod
    def unique_booked(cls, value: list[int]) -> list[int]:
        if len(set(value)) != len(value):
            raise ValueError("booked seat numbers must be unique")
        return value

    @model_validator(mode="after")
    def booked_within_row(self) -> "RowCreate":
        outside = [n for n in self.booked if n < 1 or n > self.seats]
        if outside:
            raise ValueError(f"booked seats outside row {self.label}: {outside}")
        return self


class SectionCreate(BaseSchema):
    name: str = Field(..., min_length=1, max_length=50)
    unit_price: int = Field(..., gt=0, description="Price in minor currency units")
    rows: list[RowCreate] = Field(..., min_length=1)


class ShowtimeCreate(BaseSchema):
    """Fully specified showtime as supplied by the catalog."""

    showtime_id: str = Field(..., min_length=1, max_length=50)
    movie_id: str = Field(..., min_length=1, max_length=50)
    theater_id: str = Field(..., min_length=1, max_length=50)
    auditorium: str | None = Field(None, max_length=100)
    starts_at: datetime
    sections: list[SectionCreate] = Field(..., min_length=1)

    @model_validator(mode="after")
    def unique_names(self) -> "ShowtimeCreate":
        names = [section.name for section in self.sections]
        if len(set(names)) != len(names):
            raise ValueError("section names must be unique")
        labels = [row.label for section in self.sections for row in section.rows]
        if len(set(labels)) != len(labels):
            raise ValueError("row labels must be unique across sections")
        return self


class SectionResponse(BaseSchema):
    name: str
    unit_price: int
    seat_count: int


class ShowtimeResponse(BaseSchema):
    showtime_id: str
    movie_id: str
    theater_id: str
    auditorium: str | None
    starts_at: datetime
    sections: list[SectionResponse]


class SeatMapResponse(BaseSchema):
    """Display snapshot of seat status; not authoritative for holds."""

    showtime_id: str
    seats: dict[str, SeatStatus]
    available_count: int
