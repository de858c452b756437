"""
Coupon validation and discount computation.

Rules are checked in a fixed order and the first failing rule decides the
reason returned to the caller. Only an unknown code is an error; every other
rejection is a normal `valid=False` result, so a booking with a bad coupon
still goes through at full price.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.exceptions import NotFoundError
from booking_engine.core.logging import get_logger
from booking_engine.core.metrics import record_coupon_validation
from booking_engine.db.base import utcnow
from booking_engine.models.booking import PAID_STATUSES, Booking, BookingStatus
from booking_engine.models.coupon import Coupon, CouponStatus, DiscountType, normalize_code

logger = get_logger(__name__)


@dataclass
class CouponValidation:
    valid: bool
    discount: float = 0.0
    final_amount: float = 0.0
    reason: Optional[str] = None
    coupon: Optional[Coupon] = None


@dataclass
class PurchaseContext:
    """What a coupon is checked against."""

    user_id: str
    movie_id: int
    theater_id: int
    experience: Optional[str]
    city: Optional[str]
    amount: float


def calculate_discount(coupon: Coupon, amount: float) -> float:
    if coupon.discount_type == DiscountType.PERCENTAGE:
        discount = amount * coupon.value / 100
    else:
        discount = min(coupon.value, amount)
    # The cap binds both discount types
    if coupon.max_discount is not None:
        discount = min(discount, coupon.max_discount)
    return round(max(discount, 0.0), 2)


def _allowed(allow_list: Optional[list], value) -> bool:
    if not allow_list:
        return True
    if isinstance(value, str):
        return value.lower() in {str(item).lower() for item in allow_list}
    return value in allow_list


def _static_rejection(coupon: Coupon, ctx: PurchaseContext, now: datetime) -> Optional[str]:
    if coupon.status != CouponStatus.ACTIVE:
        return f"Coupon is {coupon.status.value.lower()}"
    if coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit:
        return "Coupon usage limit reached"
    if now < coupon.valid_from:
        return "Coupon is not yet valid"
    if now > coupon.valid_until:
        return "Coupon has expired"
    if coupon.min_booking_amount is not None and ctx.amount < coupon.min_booking_amount:
        return f"Minimum booking amount is {coupon.min_booking_amount:.2f}"
    if not _allowed(coupon.applicable_movies, ctx.movie_id):
        return "Coupon not applicable to this movie"
    if not _allowed(coupon.applicable_theaters, ctx.theater_id):
        return "Coupon not applicable at this theater"
    if not _allowed(coupon.applicable_experiences, ctx.experience):
        return "Coupon not applicable to this experience"
    if not _allowed(coupon.applicable_cities, ctx.city):
        return "Coupon not applicable in this city"
    return None


async def _user_rejection(db: AsyncSession, coupon: Coupon, user_id: str) -> Optional[str]:
    if coupon.first_booking_only:
        previous = await db.scalar(
            select(func.count(Booking.id)).where(
                Booking.user_id == user_id,
                Booking.status.in_(PAID_STATUSES),
            )
        )
        if previous:
            return "Coupon is valid on the first booking only"

    if coupon.usage_per_user is not None:
        if await _user_uses(db, coupon.id, user_id) >= coupon.usage_per_user:
            return "Coupon usage limit per user reached"
    return None


async def _user_uses(db: AsyncSession, coupon_id: int, user_id: str, exclude_booking_id: Optional[int] = None) -> int:
    """Confirmed bookings of `user_id` that redeemed the coupon."""
    query = select(func.count(Booking.id)).where(
        Booking.user_id == user_id,
        Booking.coupon_id == coupon_id,
        Booking.status == BookingStatus.CONFIRMED,
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    return await db.scalar(query)


async def get_coupon_by_code(db: AsyncSession, code: str) -> Coupon:
    # Codes are stored normalised, so the unique index makes this exact match unambiguous
    result = await db.execute(select(Coupon).where(Coupon.code == normalize_code(code)))
    coupon = result.scalar_one_or_none()
    if not coupon:
        raise NotFoundError(f"Coupon {code} not found")
    return coupon


async def evaluate(
    db: AsyncSession,
    coupon: Coupon,
    ctx: PurchaseContext,
    now: Optional[datetime] = None,
) -> CouponValidation:
    now = now or utcnow()
    reason = _static_rejection(coupon, ctx, now) or await _user_rejection(db, coupon, ctx.user_id)
    if reason:
        return CouponValidation(valid=False, final_amount=ctx.amount, reason=reason, coupon=coupon)

    discount = calculate_discount(coupon, ctx.amount)
    return CouponValidation(
        valid=True,
        discount=discount,
        final_amount=round(ctx.amount - discount, 2),
        coupon=coupon,
    )


async def validate(
    db: AsyncSession,
    code: str,
    ctx: PurchaseContext,
    now: Optional[datetime] = None,
) -> CouponValidation:
    """Check `code` against a candidate purchase. Raises NotFoundError for an unknown code."""
    coupon = await get_coupon_by_code(db, code)
    validation = await evaluate(db, coupon, ctx, now)

    record_coupon_validation(validation.valid)
    logger.info(
        "coupon_validated",
        code=coupon.code,
        user_id=ctx.user_id,
        valid=validation.valid,
        discount=validation.discount,
        reason=validation.reason,
    )
    return validation


async def record_usage(db: AsyncSession, coupon_id: int) -> bool:
    """
    Count one confirmed use of a coupon; marks it DEPLETED when the global
    limit is reached. Returns False if the limit was already exhausted.
    """
    result = await db.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            or_(Coupon.usage_limit.is_(None), Coupon.usage_count < Coupon.usage_limit),
        )
        .values(usage_count=Coupon.usage_count + 1, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.execute(
        update(Coupon)
        .where(
            Coupon.id == coupon_id,
            Coupon.usage_limit.is_not(None),
            Coupon.usage_count >= Coupon.usage_limit,
            Coupon.status == CouponStatus.ACTIVE,
        )
        .values(status=CouponStatus.DEPLETED)
        .execution_options(synchronize_session=False)
    )

    if result.rowcount == 0:
        logger.warning("coupon_usage_over_limit", coupon_id=coupon_id)
        return False
    return True


async def redemption_rejection(db: AsyncSession, coupon_id: int, user_id: str, booking_id: int) -> Optional[str]:
    """Read-only preview of `redeem`, used before the customer is sent to pay."""
    coupon = await db.get(Coupon, coupon_id, populate_existing=True)
    if coupon is None or (coupon.usage_limit is not None and coupon.usage_count >= coupon.usage_limit):
        return "Coupon usage limit reached"
    if coupon.usage_per_user is not None:
        used = await _user_uses(db, coupon_id, user_id, exclude_booking_id=booking_id)
        if used >= coupon.usage_per_user:
            return "Coupon usage limit per user reached"
    return None


async def redeem(db: AsyncSession, coupon_id: int, user_id: str, booking_id: int) -> Optional[str]:
    """
    Count the coupon against a booking being confirmed.

    Holds stay unmetered, so several bookings can carry the same coupon until
    payment. Both limits are enforced here: the global one by the conditional
    increment, the per-user one by a recount taken after the increment has
    locked the coupon row. Returns the rejection reason, or None when redeemed.
    Callers must roll back on a rejection, the increment may already be applied.
    """
    if not await record_usage(db, coupon_id):
        return "Coupon usage limit reached"

    coupon = await db.get(Coupon, coupon_id, populate_existing=True)
    if coupon.usage_per_user is not None:
        used = await _user_uses(db, coupon_id, user_id, exclude_booking_id=booking_id)
        if used >= coupon.usage_per_user:
            logger.warning("coupon_user_limit_reached", coupon_id=coupon_id, user_id=user_id, booking_id=booking_id)
            return "Coupon usage limit per user reached"
    return None


async def list_applicable_coupons(
    db: AsyncSession,
    ctx: PurchaseContext,
    now: Optional[datetime] = None,
) -> list[CouponValidation]:
    """Active coupons the purchase qualifies for, best discount first."""
    now = now or utcnow()
    result = await db.execute(
        select(Coupon).where(
            Coupon.status == CouponStatus.ACTIVE,
            Coupon.valid_from <= now,
            Coupon.valid_until >= now,
        )
    )

    applicable = []
    for coupon in result.scalars().all():
        validation = await evaluate(db, coupon, ctx, now)
        if validation.valid:
            applicable.append(validation)
    return sorted(applicable, key=lambda v: v.discount, reverse=True)
