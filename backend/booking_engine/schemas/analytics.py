"""
Pydantic schemas for booking and coupon reports.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class BookingAnalyticsResponse(BaseModel):
    model_config = {"from_attributes": True}

    start: datetime
    end: datetime
    total_bookings: int
    confirmed_bookings: int
    cancelled_bookings: int
    total_revenue: float
    average_ticket_price: float
    bookings_with_coupon: int
    total_discount: float
    cancellation_rate: float
    bookings_by_hour: dict[str, int]
    bookings_by_date: dict[str, int]
    bookings_by_payment_method: dict[str, int]


class CouponUsage(BaseModel):
    code: str
    usage_count: int
    usage_limit: Optional[int] = None


class CouponAnalyticsResponse(BaseModel):
    model_config = {"from_attributes": True}

    total_coupons: int
    total_usage: int
    redemption_rate: float
    status_distribution: dict[str, int]
    most_used: list[CouponUsage]
