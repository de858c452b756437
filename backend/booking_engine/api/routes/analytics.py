"""
Reporting endpoints. Dates are whole UTC days: `start` from midnight,
`end` up to the last second of that day.
"""

from datetime import date, datetime, time, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.security import get_current_user_id
from booking_engine.db.session import get_db
from booking_engine.schemas.analytics import BookingAnalyticsResponse, CouponAnalyticsResponse
from booking_engine.services import analytics_service

router = APIRouter(prefix="/analytics", tags=["Analytics"])


def _day_start(day: Optional[date]) -> Optional[datetime]:
    return datetime.combine(day, time.min, tzinfo=timezone.utc) if day else None


def _day_end(day: Optional[date]) -> Optional[datetime]:
    return datetime.combine(day, time(23, 59, 59), tzinfo=timezone.utc) if day else None


@router.get("/bookings", response_model=BookingAnalyticsResponse)
async def booking_analytics_endpoint(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    movie_id: Optional[int] = Query(None),
    theater_id: Optional[int] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Booking totals for the window; defaults to the last 30 days."""
    return await analytics_service.get_booking_analytics(
        db, _day_start(start_date), _day_end(end_date), movie_id=movie_id, theater_id=theater_id
    )


@router.get("/coupons", response_model=CouponAnalyticsResponse)
async def coupon_analytics_endpoint(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await analytics_service.get_coupon_analytics(db, _day_start(start_date), _day_end(end_date))
