"""
Booking lifecycle endpoints.

Seat-changing calls invalidate the show list cache since available_seats
and the derived show status may have changed.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.logging import get_logger
from booking_engine.core.security import get_current_user_id
from booking_engine.db.session import get_db
from booking_engine.models.booking import BookingStatus
from booking_engine.schemas.booking import (
    BookingCancel,
    BookingCreate,
    BookingResponse,
    PaymentConfirm,
    PaymentOrderResponse,
)
from booking_engine.services import booking_service
from booking_engine.services.cache_service import invalidate_show_cache

logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Hold seats and price the booking.

    Seats are blocked with a single conditional update; if any seat is
    already held or booked the whole request fails with 409 and nothing is held.
    """
    booking = await booking_service.initiate_booking(
        db, user_id, booking_data.show_id, booking_data.seat_ids, booking_data.coupon_code
    )
    await invalidate_show_cache()
    return booking


@router.get("/", response_model=list[BookingResponse])
async def list_my_bookings(
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings for the authenticated user."""
    return await booking_service.list_user_bookings(db, user_id, booking_status)


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking_endpoint(
    booking_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    return await booking_service.get_user_booking(db, booking_id, user_id)


@router.post("/{booking_id}/payment", response_model=PaymentOrderResponse)
async def start_payment_endpoint(
    booking_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Create the gateway order for the booking total."""
    await booking_service.get_user_booking(db, booking_id, user_id)
    booking, order = await booking_service.start_payment(db, booking_id)
    return PaymentOrderResponse(
        booking_id=booking.id,
        order_ref=order.order_ref,
        amount=order.amount,
        currency=order.currency,
        key_id=order.key_id,
    )


@router.delete("/{booking_id}/coupon", response_model=BookingResponse)
async def remove_coupon_endpoint(
    booking_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Drop the coupon from an unpaid booking and pay the full price instead."""
    await booking_service.get_user_booking(db, booking_id, user_id)
    return await booking_service.remove_coupon(db, booking_id)


@router.post("/{booking_id}/confirm", response_model=BookingResponse)
async def confirm_booking_endpoint(
    booking_id: int,
    payment: PaymentConfirm,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Confirm after payment. A second call for the same booking returns 409."""
    await booking_service.get_user_booking(db, booking_id, user_id)
    booking = await booking_service.confirm_booking(
        db,
        booking_id,
        order_ref=payment.order_ref,
        payment_ref=payment.payment_ref,
        signature=payment.signature,
        payment_method=payment.payment_method,
    )
    await invalidate_show_cache()
    return booking


@router.post("/{booking_id}/cancel", response_model=BookingResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    cancel_data: BookingCancel,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a confirmed booking and release its seats."""
    await booking_service.get_user_booking(db, booking_id, user_id)
    booking = await booking_service.cancel_booking(db, booking_id, cancel_data.reason, actor=user_id)
    await invalidate_show_cache()
    return booking


@router.post("/{booking_id}/refund", response_model=BookingResponse)
async def request_refund_endpoint(
    booking_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await booking_service.get_user_booking(db, booking_id, user_id)
    return await booking_service.request_refund(db, booking_id)


@router.post("/{booking_id}/refund/process", response_model=BookingResponse)
async def process_refund_endpoint(
    booking_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Pay out a pending (or previously failed) refund through the gateway."""
    await booking_service.get_user_booking(db, booking_id, user_id)
    return await booking_service.process_refund(db, booking_id)


@router.post("/{booking_id}/ticket", response_model=BookingResponse)
async def resend_ticket_endpoint(
    booking_id: int,
    email: bool = Query(True),
    sms: bool = Query(True),
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    await booking_service.get_user_booking(db, booking_id, user_id)
    return await booking_service.send_ticket_notification(db, booking_id, email=email, sms=sms)


@router.delete("/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_booking_endpoint(
    booking_id: int,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Abandon an unpaid booking; held seats are released."""
    await booking_service.get_user_booking(db, booking_id, user_id)
    await booking_service.delete_booking(db, booking_id)
    await invalidate_show_cache()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/check-in/{booking_number}", response_model=BookingResponse)
async def check_in_endpoint(
    booking_number: str,
    user_id: str = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Scan a ticket at the venue."""
    booking = await booking_service.check_in(db, booking_number)
    logger.info("ticket_scanned", booking_number=booking_number, scanned_by=user_id)
    return booking
