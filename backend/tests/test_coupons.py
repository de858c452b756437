"""
Tests for coupon validation rules and usage accounting.
"""

from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from booking_engine.core.exceptions import NotFoundError
from booking_engine.db.base import utcnow
from booking_engine.models import Booking, BookingStatus, Coupon, CouponStatus, DiscountType
from booking_engine.services import coupon_service
from booking_engine.services.coupon_service import PurchaseContext

from conftest import USER_ID, make_coupon, reload


def purchase(amount: float = 1000, **overrides) -> PurchaseContext:
    fields = dict(
        user_id=USER_ID,
        movie_id=1,
        theater_id=1,
        experience="IMAX",
        city="Mumbai",
        amount=amount,
    )
    fields.update(overrides)
    return PurchaseContext(**fields)


def past_booking(number: str, status: BookingStatus, coupon: Coupon = None) -> Booking:
    return Booking(
        booking_number=number,
        user_id=USER_ID,
        show_id=1,
        movie_id=1,
        theater_id=1,
        show_time=utcnow() - timedelta(days=10),
        seats=[],
        status=status,
        held_at=utcnow() - timedelta(days=11),
        coupon_id=coupon.id if coupon else None,
        coupon_code=coupon.code if coupon else None,
    )


@pytest.mark.asyncio
async def test_percentage_discount_is_capped(db_session):
    """SAVE10: 10% capped at 50 with minimum 100; on 1000 -> 50 off, 950 final."""
    db_session.add(make_coupon("SAVE10"))
    await db_session.commit()

    validation = await coupon_service.validate(db_session, "SAVE10", purchase(1000))

    assert validation.valid
    assert validation.discount == 50
    assert validation.final_amount == 950


@pytest.mark.asyncio
async def test_percentage_discount_below_cap(db_session):
    db_session.add(make_coupon("SAVE10"))
    await db_session.commit()

    validation = await coupon_service.validate(db_session, "SAVE10", purchase(300))
    assert validation.discount == 30
    assert validation.final_amount == 270


@pytest.mark.asyncio
async def test_fixed_discount_never_exceeds_amount(db_session):
    db_session.add(
        make_coupon("FLAT500", discount_type=DiscountType.FIXED, value=500, min_booking_amount=None, max_discount=None)
    )
    await db_session.commit()

    validation = await coupon_service.validate(db_session, "FLAT500", purchase(350))
    assert validation.discount == 350
    assert validation.final_amount == 0


@pytest.mark.asyncio
async def test_unknown_code_raises(db_session):
    with pytest.raises(NotFoundError):
        await coupon_service.validate(db_session, "NOPE", purchase())


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides, reason",
    [
        ({"status": CouponStatus.EXPIRED}, "expired"),
        ({"usage_limit": 5, "usage_count": 5}, "usage limit"),
        ({"valid_until": utcnow() - timedelta(hours=1)}, "expired"),
        ({"valid_from": utcnow() + timedelta(days=1)}, "not yet valid"),
        ({"min_booking_amount": 2000}, "Minimum"),
        ({"applicable_movies": [42]}, "movie"),
        ({"applicable_theaters": [42]}, "theater"),
        ({"applicable_experiences": ["4DX"]}, "experience"),
        ({"applicable_cities": ["Pune"]}, "city"),
    ],
)
async def test_rule_rejections(db_session, overrides, reason):
    db_session.add(make_coupon("RULES", **overrides))
    await db_session.commit()

    validation = await coupon_service.validate(db_session, "RULES", purchase())

    assert not validation.valid
    assert validation.discount == 0
    assert validation.final_amount == 1000
    assert reason in validation.reason


@pytest.mark.asyncio
async def test_allow_lists_match(db_session):
    db_session.add(make_coupon(
        "MUMBAIIMAX",
        applicable_movies=[1, 2],
        applicable_theaters=[1],
        applicable_experiences=["imax"],
        applicable_cities=["mumbai"],
    ))
    await db_session.commit()

    validation = await coupon_service.validate(db_session, "MUMBAIIMAX", purchase())
    assert validation.valid


@pytest.mark.asyncio
async def test_first_booking_only(db_session):
    db_session.add(make_coupon("WELCOME", first_booking_only=True))
    await db_session.commit()

    assert (await coupon_service.validate(db_session, "WELCOME", purchase())).valid

    # Abandoned holds do not count as a previous booking
    db_session.add(past_booking("MBEXPIRED0001", BookingStatus.EXPIRED))
    await db_session.commit()
    assert (await coupon_service.validate(db_session, "WELCOME", purchase())).valid

    db_session.add(past_booking("MBPAID0000001", BookingStatus.CONFIRMED))
    await db_session.commit()
    validation = await coupon_service.validate(db_session, "WELCOME", purchase())
    assert not validation.valid
    assert "first booking" in validation.reason


@pytest.mark.asyncio
async def test_per_user_limit(db_session):
    coupon = make_coupon("ONCE", usage_per_user=1)
    db_session.add(coupon)
    await db_session.commit()

    assert (await coupon_service.validate(db_session, "ONCE", purchase())).valid

    db_session.add(past_booking("MBONCE0000001", BookingStatus.CONFIRMED, coupon))
    await db_session.commit()

    validation = await coupon_service.validate(db_session, "ONCE", purchase())
    assert not validation.valid
    assert "per user" in validation.reason

    other_user = await coupon_service.validate(db_session, "ONCE", purchase(user_id="user-2"))
    assert other_user.valid


@pytest.mark.asyncio
async def test_record_usage_depletes_at_limit(db_session):
    coupon = make_coupon("LIMITED", usage_limit=2)
    db_session.add(coupon)
    await db_session.commit()

    assert await coupon_service.record_usage(db_session, coupon.id)
    coupon = await reload(db_session, Coupon, coupon.id)
    assert coupon.usage_count == 1
    assert coupon.status == CouponStatus.ACTIVE

    assert await coupon_service.record_usage(db_session, coupon.id)
    coupon = await reload(db_session, Coupon, coupon.id)
    assert coupon.usage_count == 2
    assert coupon.status == CouponStatus.DEPLETED

    assert not await coupon_service.record_usage(db_session, coupon.id)
    coupon = await reload(db_session, Coupon, coupon.id)
    assert coupon.usage_count == 2


@pytest.mark.asyncio
async def test_list_applicable_coupons_best_first(db_session):
    db_session.add_all([
        make_coupon("SAVE10"),
        make_coupon("FLAT100", discount_type=DiscountType.FIXED, value=100, max_discount=None),
        make_coupon("PUNEONLY", applicable_cities=["Pune"]),
        make_coupon("OLD", status=CouponStatus.EXPIRED),
    ])
    await db_session.commit()

    applicable = await coupon_service.list_applicable_coupons(db_session, purchase(1000))

    assert [v.coupon.code for v in applicable] == ["FLAT100", "SAVE10"]
    assert [v.discount for v in applicable] == [100, 50]


def test_calculate_discount():
    coupon = Coupon(discount_type=DiscountType.PERCENTAGE, value=15, max_discount=None)
    assert coupon_service.calculate_discount(coupon, 333.33) == 50.0
    capped = Coupon(discount_type=DiscountType.FIXED, value=100, max_discount=50)
    assert coupon_service.calculate_discount(capped, 1000) == 50
    uncapped = Coupon(discount_type=DiscountType.FIXED, value=100, max_discount=None)
    assert coupon_service.calculate_discount(uncapped, 80) == 80


def test_coupon_code_is_normalised():
    assert Coupon(code="  save10 ").code == "SAVE10"


@pytest.mark.asyncio
async def test_codes_differing_only_in_case_collide(db_session):
    db_session.add(make_coupon("SAVE10"))
    await db_session.commit()

    db_session.add(make_coupon("save10"))
    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()

    validation = await coupon_service.validate(db_session, "Save10", purchase(1000))
    assert validation.coupon.code == "SAVE10"
    assert validation.discount == 50
