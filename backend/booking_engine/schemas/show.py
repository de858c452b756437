"""
Pydantic schemas for show-related request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import AwareDatetime, BaseModel, Field

from booking_engine.models.show import SeatStatus, ShowStatus


class AdditionalChargeCreate(BaseModel):
    type: str = Field(..., min_length=1, max_length=50)
    amount: float = Field(..., ge=0)
    is_percentage: bool = False


class PriceTierCreate(BaseModel):
    base_price: float = Field(..., ge=0)
    additional_charges: list[AdditionalChargeCreate] = []


class ShowCreate(BaseModel):
    movie_id: int
    theater_id: int
    screen_id: int
    show_time: AwareDatetime
    language: Optional[str] = Field(None, max_length=50)
    experience: Optional[str] = Field(None, max_length=50)
    pricing: dict[str, PriceTierCreate] = Field(..., min_length=1)


class ShowResponse(BaseModel):
    id: int
    movie_id: int
    theater_id: int
    screen_id: int
    show_time: datetime
    end_time: datetime
    language: Optional[str]
    experience: Optional[str]
    pricing: dict
    total_seats: int
    available_seats: int
    booked_seats: int
    status: ShowStatus
    view_count: int
    booking_attempts: int
    popularity_score: float

    model_config = {"from_attributes": True}


class ShowListResponse(BaseModel):
    shows: list[ShowResponse]
    total: int
    page: int
    page_size: int
    cached: bool = False


class SeatResponse(BaseModel):
    seat_id: str
    row: int
    column: int
    category: str
    status: SeatStatus

    model_config = {"from_attributes": True}


class SeatMapResponse(BaseModel):
    show_id: int
    status: ShowStatus
    available_seats: int
    seats: list[SeatResponse]
