"""
Show endpoints with Redis caching on list operations.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.logging import get_logger
from booking_engine.core.security import get_current_user_id
from booking_engine.db.session import get_db
from booking_engine.schemas.coupon import ApplicableCouponsResponse, CouponValidationResponse
from booking_engine.schemas.show import SeatMapResponse, SeatResponse, ShowCreate, ShowListResponse, ShowResponse
from booking_engine.services import catalog_service, coupon_service, seat_inventory, show_service
from booking_engine.services.cache_service import (
    get_cached_shows,
    invalidate_show_cache,
    make_show_list_key,
    set_cached_shows,
)

logger = get_logger(__name__)
router = APIRouter(prefix="/shows", tags=["Shows"])


@router.post("/", response_model=ShowResponse, status_code=status.HTTP_201_CREATED)
async def create_show_endpoint(
    show_data: ShowCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Schedule a show; seats are created from the screen's active layout."""
    show = await show_service.create_show(db, show_data)
    await invalidate_show_cache()
    return show


@router.get("/", response_model=ShowListResponse)
async def list_shows_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    movie_id: Optional[int] = Query(None),
    theater_id: Optional[int] = Query(None),
    upcoming_only: bool = Query(True),
    db: AsyncSession = Depends(get_db),
):
    """
    List shows with pagination.
    Cached in Redis; invalidated on every seat or status change.
    """
    key = make_show_list_key(page, page_size, movie_id, theater_id, upcoming_only)
    cached = await get_cached_shows(key)
    if cached:
        logger.info("shows_list_cache_hit", page=page)
        cached["cached"] = True
        return ShowListResponse(**cached)

    shows, total = await show_service.list_shows(db, page, page_size, movie_id, theater_id, upcoming_only)

    response_data = {
        "shows": [ShowResponse.model_validate(s).model_dump(mode="json") for s in shows],
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached_shows(key, response_data)

    return ShowListResponse(**response_data)


@router.get("/{show_id}", response_model=ShowResponse)
async def get_show_endpoint(
    show_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a single show. Not cached; counts a view."""
    return await show_service.view_show(db, show_id)


@router.get("/{show_id}/seats", response_model=SeatMapResponse)
async def get_seat_map_endpoint(
    show_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Live seat map, always read from the database."""
    show = await show_service.get_show(db, show_id)
    seats = await seat_inventory.get_seat_map(db, show_id)
    return SeatMapResponse(
        show_id=show.id,
        status=show.status,
        available_seats=show.available_seats,
        seats=[SeatResponse.model_validate(seat) for seat in seats],
    )


@router.get("/{show_id}/coupons", response_model=ApplicableCouponsResponse)
async def list_show_coupons_endpoint(
    show_id: int,
    amount: float = Query(..., ge=0),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Coupons the caller could apply to a purchase of `amount` for this show."""
    show = await show_service.get_show(db, show_id)
    theater = await catalog_service.get_theater(db, show.theater_id)
    validations = await coupon_service.list_applicable_coupons(
        db,
        coupon_service.PurchaseContext(
            user_id=user_id,
            movie_id=show.movie_id,
            theater_id=show.theater_id,
            experience=show.experience,
            city=theater.city,
            amount=amount,
        ),
    )
    return ApplicableCouponsResponse(
        coupons=[
            CouponValidationResponse(
                code=v.coupon.code,
                valid=v.valid,
                discount=v.discount,
                final_amount=v.final_amount,
                discount_type=v.coupon.discount_type.value,
            )
            for v in validations
        ]
    )
