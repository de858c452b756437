"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from booking_engine.models.booking import BookingStatus, PaymentStatus, RefundStatus, TicketStatus


class BookingCreate(BaseModel):
    show_id: int
    seat_ids: list[str] = Field(..., min_length=1)
    coupon_code: Optional[str] = Field(None, max_length=50)


class BookedSeat(BaseModel):
    seat_id: str
    row: int
    column: int
    category: str
    base_price: float
    final_price: float


class BookingResponse(BaseModel):
    id: int
    booking_number: str
    user_id: str
    show_id: int
    movie_id: int
    theater_id: int
    show_time: datetime
    seats: list[BookedSeat]
    coupon_code: Optional[str]
    subtotal_amount: float
    discount_amount: float
    additional_charges: float
    total_amount: float
    status: BookingStatus
    payment_status: PaymentStatus
    ticket_status: TicketStatus
    qr_code_url: Optional[str]
    held_at: datetime
    paid_at: Optional[datetime]
    cancelled_at: Optional[datetime]
    cancellation_reason: Optional[str]
    refund_amount: Optional[float]
    refund_status: Optional[RefundStatus]
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentOrderResponse(BaseModel):
    booking_id: int
    order_ref: str
    amount: float
    currency: str
    key_id: str


class PaymentConfirm(BaseModel):
    order_ref: str = Field(..., min_length=1)
    payment_ref: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    payment_method: Optional[str] = Field(None, max_length=30)


class BookingCancel(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)
