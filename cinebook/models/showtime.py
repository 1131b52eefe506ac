"""Showtime and section models."""

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from cinebook.models.base import Base

if TYPE_CHECKING:
    from cinebook.models.seat import Seat


class Showtime(Base):
    """A single screening of a movie in a theater auditorium."""

    __tablename__ = "showtimes"

    showtime_id: Mapped[str] = mapped_column(String(50), primary_key=True)
    movie_id: Mapped[str] = mapped_column(String(50), nullable=False)
    theater_id: Mapped[str] = mapped_column(String(50), nullable=False)
    auditorium: Mapped[str | None] = mapped_column(String(100))
    starts_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)

    # Relationships
    sections: Mapped[list["Section"]] = relationship(
        "Section",
        back_populates="showtime",
        cascade="all, delete-orphan",
        order_by="Section.position",
    )
    seats: Mapped[list["Seat"]] = relationship("Seat", back_populates="showtime")

    __table_args__ = (
        Index("idx_showtime_movie", "movie_id"),
        Index("idx_showtime_theater", "theater_id"),
    )


class Section(Base):
    """Pricing tier of an auditorium; the unit price is in minor currency units."""

    __tablename__ = "sections"

    section_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    showtime_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("showtimes.showtime_id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(50), nullable=False)
    unit_price: Mapped[int] = mapped_column(Integer, nullable=False)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Relationships
    showtime: Mapped["Showtime"] = relationship("Showtime", back_populates="sections")
    seats: Mapped[list["Seat"]] = relationship("Seat", back_populates="section")

    __table_args__ = (
        UniqueConstraint("showtime_id", "name", name="uk_showtime_section"),
    )
