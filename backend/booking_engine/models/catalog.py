"""
Catalog records owned by the movie/theater catalog services.

Only the fields the booking engine reads (layout, duration, location) or
increments (movie statistics) are modelled here.
"""

from sqlalchemy import JSON, Column, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from booking_engine.db.base import Base, TimestampMixin


class Movie(Base, TimestampMixin):
    __tablename__ = "movies"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    duration_minutes = Column(Integer, nullable=False)

    # Statistics maintained on confirmed bookings
    total_bookings = Column(Integer, nullable=False, default=0)
    revenue = Column(Float, nullable=False, default=0.0)
    popularity_score = Column(Float, nullable=False, default=0.0)

    def __repr__(self) -> str:
        return f"<Movie(id={self.id}, title={self.title})>"


class Theater(Base, TimestampMixin):
    __tablename__ = "theaters"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    city = Column(String(100), nullable=False, index=True)

    screens = relationship("Screen", back_populates="theater", lazy="selectin")

    def __repr__(self) -> str:
        return f"<Theater(id={self.id}, name={self.name}, city={self.city})>"


class Screen(Base):
    __tablename__ = "screens"

    id = Column(Integer, primary_key=True, index=True)
    theater_id = Column(Integer, ForeignKey("theaters.id"), nullable=False)
    screen_number = Column(Integer, nullable=False)
    name = Column(String(100), nullable=True)
    # [{"seat_id": "A1", "row": 0, "column": 0, "category": "GOLD", "active": true}, ...]
    layout = Column(JSON, nullable=False, default=list)

    theater = relationship("Theater", back_populates="screens")

    __table_args__ = (
        UniqueConstraint("theater_id", "screen_number", name="uq_theater_screen_number"),
    )
