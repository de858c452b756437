"""
Coupon validation endpoint.
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.security import get_current_user_id
from booking_engine.db.session import get_db
from booking_engine.schemas.coupon import CouponValidateRequest, CouponValidationResponse
from booking_engine.services import catalog_service, coupon_service, show_service

router = APIRouter(prefix="/coupons", tags=["Coupons"])


@router.post("/validate", response_model=CouponValidationResponse)
async def validate_coupon_endpoint(
    request: CouponValidateRequest,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Check a code against a purchase of `amount` for a show. Unknown codes return 404."""
    show = await show_service.get_show(db, request.show_id)
    theater = await catalog_service.get_theater(db, show.theater_id)
    validation = await coupon_service.validate(
        db,
        request.code,
        coupon_service.PurchaseContext(
            user_id=user_id,
            movie_id=show.movie_id,
            theater_id=show.theater_id,
            experience=show.experience,
            city=theater.city,
            amount=request.amount,
        ),
    )
    return CouponValidationResponse(
        code=validation.coupon.code,
        valid=validation.valid,
        discount=validation.discount,
        final_amount=validation.final_amount,
        reason=validation.reason,
        discount_type=validation.coupon.discount_type.value,
    )
