"""
Reporting over bookings and coupons.

Booking figures cover bookings created inside the window. Status counts
come straight from SQL; breakdowns that depend on the seat snapshot or
on the show time are folded in Python so the queries stay portable
between PostgreSQL and SQLite.
"""

from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.exceptions import ValidationError
from booking_engine.core.logging import get_logger
from booking_engine.db.base import utcnow
from booking_engine.models.booking import Booking, BookingStatus
from booking_engine.models.coupon import Coupon

logger = get_logger(__name__)

DEFAULT_WINDOW = timedelta(days=30)
TOP_COUPONS = 5


@dataclass
class BookingAnalytics:
    start: datetime
    end: datetime
    total_bookings: int = 0
    confirmed_bookings: int = 0
    cancelled_bookings: int = 0
    total_revenue: float = 0.0
    average_ticket_price: float = 0.0
    bookings_with_coupon: int = 0
    total_discount: float = 0.0
    cancellation_rate: float = 0.0
    bookings_by_hour: dict[str, int] = field(default_factory=dict)
    bookings_by_date: dict[str, int] = field(default_factory=dict)
    bookings_by_payment_method: dict[str, int] = field(default_factory=dict)


@dataclass
class CouponAnalytics:
    total_coupons: int = 0
    total_usage: int = 0
    redemption_rate: float = 0.0
    status_distribution: dict[str, int] = field(default_factory=dict)
    most_used: list[dict] = field(default_factory=list)


def _window(start: Optional[datetime], end: Optional[datetime]) -> tuple[datetime, datetime]:
    end = end or utcnow()
    start = start or (end - DEFAULT_WINDOW).replace(hour=0, minute=0, second=0, microsecond=0)
    if start > end:
        raise ValidationError("start must not be after end")
    return start, end


async def get_booking_analytics(
    db: AsyncSession,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    movie_id: Optional[int] = None,
    theater_id: Optional[int] = None,
) -> BookingAnalytics:
    """
    Summarise bookings created between `start` and `end` (inclusive).

    Revenue, ticket price and the hour, date, payment method and coupon
    breakdowns count CONFIRMED bookings only. The cancellation rate is
    cancelled over all bookings in the window. Hours and dates are those
    of the show, in UTC.
    """
    start, end = _window(start, end)
    filters = [Booking.created_at >= start, Booking.created_at <= end]
    if movie_id is not None:
        filters.append(Booking.movie_id == movie_id)
    if theater_id is not None:
        filters.append(Booking.theater_id == theater_id)

    rows = await db.execute(select(Booking.status, func.count(Booking.id)).where(*filters).group_by(Booking.status))
    by_status = {status: count for status, count in rows.all()}

    report = BookingAnalytics(start=start, end=end)
    report.total_bookings = sum(by_status.values())
    report.confirmed_bookings = by_status.get(BookingStatus.CONFIRMED, 0)
    report.cancelled_bookings = by_status.get(BookingStatus.CANCELLED, 0)
    if report.total_bookings:
        report.cancellation_rate = round(report.cancelled_bookings / report.total_bookings, 4)

    confirmed = await db.execute(
        select(
            Booking.total_amount,
            Booking.discount_amount,
            Booking.seats,
            Booking.show_time,
            Booking.payment_method,
            Booking.coupon_id,
        ).where(*filters, Booking.status == BookingStatus.CONFIRMED)
    )

    seat_prices = []
    by_hour, by_date, by_method = Counter(), Counter(), Counter()
    for total, discount, seats, show_time, method, coupon_id in confirmed.all():
        report.total_revenue += total
        seat_prices.extend(seat["final_price"] for seat in seats or [])
        by_hour[str(show_time.hour)] += 1
        by_date[show_time.date().isoformat()] += 1
        by_method[method or "UNKNOWN"] += 1
        if coupon_id is not None:
            report.bookings_with_coupon += 1
            report.total_discount += discount

    report.total_revenue = round(report.total_revenue, 2)
    report.total_discount = round(report.total_discount, 2)
    if seat_prices:
        report.average_ticket_price = round(sum(seat_prices) / len(seat_prices), 2)
    report.bookings_by_hour = dict(sorted(by_hour.items(), key=lambda item: int(item[0])))
    report.bookings_by_date = dict(sorted(by_date.items()))
    report.bookings_by_payment_method = dict(by_method)

    logger.info(
        "booking_analytics_computed",
        start=start.isoformat(),
        end=end.isoformat(),
        movie_id=movie_id,
        theater_id=theater_id,
        total=report.total_bookings,
    )
    return report


async def get_coupon_analytics(
    db: AsyncSession,
    valid_from: Optional[datetime] = None,
    valid_until: Optional[datetime] = None,
) -> CouponAnalytics:
    """
    Usage across coupons whose validity lies within the given bounds.

    The redemption rate divides the uses of limited coupons by their summed
    limits, capped at 1.0. Unlimited coupons only count towards total usage.
    """
    query = select(Coupon)
    if valid_from is not None:
        query = query.where(Coupon.valid_from >= valid_from)
    if valid_until is not None:
        query = query.where(Coupon.valid_until <= valid_until)
    coupons = (await db.execute(query.execution_options(populate_existing=True))).scalars().all()

    report = CouponAnalytics(total_coupons=len(coupons))
    report.status_distribution = dict(Counter(coupon.status.value for coupon in coupons))
    report.total_usage = sum(coupon.usage_count for coupon in coupons)

    limit = sum(coupon.usage_limit for coupon in coupons if coupon.usage_limit is not None)
    if limit:
        limited_usage = sum(coupon.usage_count for coupon in coupons if coupon.usage_limit is not None)
        report.redemption_rate = round(min(1.0, limited_usage / limit), 4)

    ranked = sorted(coupons, key=lambda coupon: (-coupon.usage_count, coupon.code))
    report.most_used = [
        {"code": coupon.code, "usage_count": coupon.usage_count, "usage_limit": coupon.usage_limit}
        for coupon in ranked[:TOP_COUPONS]
        if coupon.usage_count > 0
    ]
    return report
