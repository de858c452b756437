"""
Show and per-seat inventory models.

Key design decisions:
- Seats are rows of their own (`show_seats`) so every status change is a
  conditional UPDATE on exactly the rows involved
- Seat status is a four-way enum; BLOCKED and UNAVAILABLE are distinct states
- `available_seats` / `booked_seats` are denormalized on the show row and
  maintained by deltas in the same transaction as the seat update
- `version` is bumped on every seat mutation of the show
"""

import enum

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Column,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from booking_engine.db.base import Base, TimestampMixin, UTCDateTime, utcnow


class ShowStatus(str, enum.Enum):
    OPEN = "OPEN"
    FEWSEATSLEFT = "FEWSEATSLEFT"
    SOLDOUT = "SOLDOUT"
    STARTED = "STARTED"
    FINISHED = "FINISHED"
    CANCELLED = "CANCELLED"


# Statuses derived from seat occupancy; the rest are driven by time or admins
OCCUPANCY_STATUSES = (ShowStatus.OPEN, ShowStatus.FEWSEATSLEFT, ShowStatus.SOLDOUT)
BOOKABLE_STATUSES = (ShowStatus.OPEN, ShowStatus.FEWSEATSLEFT)


class SeatStatus(str, enum.Enum):
    AVAILABLE = "AVAILABLE"
    BLOCKED = "BLOCKED"
    BOOKED = "BOOKED"
    UNAVAILABLE = "UNAVAILABLE"


class Show(Base, TimestampMixin):
    __tablename__ = "shows"

    id = Column(Integer, primary_key=True, index=True)
    movie_id = Column(Integer, ForeignKey("movies.id"), nullable=False, index=True)
    theater_id = Column(Integer, ForeignKey("theaters.id"), nullable=False, index=True)
    screen_id = Column(Integer, ForeignKey("screens.id"), nullable=False)
    show_time = Column(UTCDateTime, nullable=False)
    end_time = Column(UTCDateTime, nullable=False)
    language = Column(String(50), nullable=True)
    experience = Column(String(50), nullable=True)  # 2D, 3D, IMAX, ...

    # {"GOLD": {"base_price": 200, "additional_charges": [...], "final_price": 200}}
    pricing = Column(JSON, nullable=False, default=dict)

    total_seats = Column(Integer, nullable=False, default=0)
    available_seats = Column(Integer, nullable=False, default=0)
    booked_seats = Column(Integer, nullable=False, default=0)
    status = Column(Enum(ShowStatus, native_enum=False, length=20), nullable=False, default=ShowStatus.OPEN)

    view_count = Column(Integer, nullable=False, default=0)
    booking_attempts = Column(Integer, nullable=False, default=0)
    popularity_score = Column(Float, nullable=False, default=0.0)

    version = Column(Integer, nullable=False, default=1)

    seats = relationship(
        "ShowSeat",
        back_populates="show",
        order_by="ShowSeat.id",
        cascade="all, delete-orphan",
        lazy="raise",
    )

    __table_args__ = (
        CheckConstraint("available_seats >= 0", name="check_show_available_non_negative"),
        CheckConstraint("booked_seats >= 0", name="check_show_booked_non_negative"),
        CheckConstraint("available_seats + booked_seats <= total_seats", name="check_show_counters_lte_total"),
        Index("ix_shows_show_time", "show_time"),
        Index("ix_shows_status_show_time", "status", "show_time"),
    )

    def __repr__(self) -> str:
        return f"<Show(id={self.id}, movie={self.movie_id}, status={self.status}, available={self.available_seats}/{self.total_seats})>"


class ShowSeat(Base):
    __tablename__ = "show_seats"

    id = Column(Integer, primary_key=True)
    show_id = Column(Integer, ForeignKey("shows.id"), nullable=False)
    seat_id = Column(String(10), nullable=False)  # "A1", "B5"
    row = Column(Integer, nullable=False)
    column = Column(Integer, nullable=False)
    category = Column(String(50), nullable=False)
    status = Column(Enum(SeatStatus, native_enum=False, length=20), nullable=False, default=SeatStatus.AVAILABLE)
    booking_id = Column(Integer, nullable=True, index=True)
    updated_at = Column(UTCDateTime, nullable=False, default=utcnow)

    show = relationship("Show", back_populates="seats")

    __table_args__ = (
        UniqueConstraint("show_id", "seat_id", name="uq_show_seat"),
        # Covers the hot path: WHERE show_id = ? AND seat_id IN (...) AND status = ?
        Index("ix_show_seats_show_status", "show_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<ShowSeat(show={self.show_id}, seat={self.seat_id}, status={self.status})>"
