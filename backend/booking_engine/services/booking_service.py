"""
Booking lifecycle with concurrency-safe seat holds.

STATE MACHINE
=============

  INITIATED -> PAYMENT_PENDING -> CONFIRMED -> CANCELLED -> REFUNDED
       \              \
        +-------------+--> EXPIRED   (hold timeout, expiry sweep only)

  Hard delete is allowed from INITIATED, PAYMENT_PENDING and EXPIRED.

CONCURRENCY STRATEGY: Conditional transitions
=============================================

Problem:
  The expiry sweep and a customer's payment callback can hit the same booking
  at the same moment. A client can also retry the confirm call. If each of
  them reads the status, decides, and writes, both can win: seats released
  and booked at once, or statistics counted twice.

Solution:
  Every status change is a single conditional UPDATE:

    UPDATE bookings SET status = 'CONFIRMED' WHERE id = :id AND status = 'PAYMENT_PENDING'

  Exactly one caller sees rowcount == 1; everyone else gets InvalidStateError
  and changes nothing. Multi-step operations (hold seats + create booking,
  confirm booking + book seats + statistics) run inside a savepoint, so a
  failure in any step leaves no partial state behind.

  Seat state is only ever changed through `seat_inventory`.
"""

import time
import uuid
from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.config import get_settings
from booking_engine.core.exceptions import (
    ConflictError,
    ExternalServiceError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from booking_engine.core.logging import get_logger
from booking_engine.core.metrics import (
    booking_latency,
    expired_holds,
    payment_gateway_errors,
    record_booking_transition,
)
from booking_engine.db.base import utcnow
from booking_engine.models.booking import (
    DELETABLE_STATUSES,
    HOLDING_STATUSES,
    Booking,
    BookingStatus,
    PaymentStatus,
    RefundStatus,
    TicketStatus,
)
from booking_engine.models.catalog import Movie, Theater
from booking_engine.models.show import BOOKABLE_STATUSES, Show, ShowSeat
from booking_engine.services import catalog_service, coupon_service, popularity_service, seat_inventory
from booking_engine.services.interfaces import NotificationService, PaymentGateway, PaymentGatewayError, PaymentOrder
from booking_engine.services.strategy_factory import get_notifier, get_payment_gateway

logger = get_logger(__name__)
settings = get_settings()

LIVE_TICKET_STATUSES = (TicketStatus.PENDING, TicketStatus.GENERATED, TicketStatus.DELIVERED)


def generate_booking_number() -> str:
    return f"{settings.BOOKING_NUMBER_PREFIX}{uuid.uuid4().hex[:12].upper()}"


def _validate_seat_request(seat_ids: Iterable[str]) -> list[str]:
    ids = [seat_id.strip() for seat_id in seat_ids]
    if not ids or not all(ids):
        raise ValidationError("At least one seat must be selected")
    if len(set(ids)) != len(ids):
        raise ValidationError("The same seat was selected more than once")
    if len(ids) > settings.MAX_SEATS_PER_BOOKING:
        raise ValidationError(f"At most {settings.MAX_SEATS_PER_BOOKING} seats can be booked at once")
    return ids


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def get_booking(db: AsyncSession, booking_id: int) -> Booking:
    # Transitions are bulk UPDATEs, so always re-read the row
    booking = await db.get(Booking, booking_id, populate_existing=True)
    if not booking:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


async def get_user_booking(db: AsyncSession, booking_id: int, user_id: str) -> Booking:
    """Same as `get_booking` but hides other users' bookings."""
    booking = await get_booking(db, booking_id)
    if booking.user_id != user_id:
        raise NotFoundError(f"Booking {booking_id} not found")
    return booking


async def get_booking_by_number(db: AsyncSession, booking_number: str) -> Booking:
    result = await db.execute(
        select(Booking)
        .where(Booking.booking_number == booking_number)
        .execution_options(populate_existing=True)
    )
    booking = result.scalar_one_or_none()
    if not booking:
        raise NotFoundError(f"Booking {booking_number} not found")
    return booking


async def list_user_bookings(
    db: AsyncSession,
    user_id: str,
    status: Optional[BookingStatus] = None,
) -> list[Booking]:
    query = select(Booking).where(Booking.user_id == user_id)
    if status is not None:
        query = query.where(Booking.status == status)
    result = await db.execute(query.order_by(Booking.created_at.desc(), Booking.id.desc()))
    return list(result.scalars().all())


async def list_show_bookings(
    db: AsyncSession,
    show_id: int,
    status: Optional[BookingStatus] = None,
) -> list[Booking]:
    query = select(Booking).where(Booking.show_id == show_id)
    if status is not None:
        query = query.where(Booking.status == status)
    result = await db.execute(query.order_by(Booking.id.asc()))
    return list(result.scalars().all())


async def _held_seat_ids(db: AsyncSession, booking: Booking) -> list[str]:
    """Seats listed on the booking plus any seat rows still pointing at it."""
    result = await db.execute(select(ShowSeat.seat_id).where(ShowSeat.booking_id == booking.id))
    return list(dict.fromkeys([*booking.seat_ids, *result.scalars().all()]))


# ---------------------------------------------------------------------------
# Initiate
# ---------------------------------------------------------------------------

async def _insert_booking(db: AsyncSession, **fields) -> Booking:
    """Insert a booking, drawing a new number on a uniqueness collision."""
    for attempt in range(1, settings.BOOKING_NUMBER_MAX_ATTEMPTS + 1):
        booking = Booking(booking_number=generate_booking_number(), **fields)
        try:
            async with db.begin_nested():
                db.add(booking)
                await db.flush()
            return booking
        except IntegrityError:
            logger.warning("booking_number_collision", booking_number=booking.booking_number, attempt=attempt)

    raise ConflictError("Could not allocate a unique booking number, please retry")


def _price_seats(show: Show, seats: list[ShowSeat]) -> list[dict]:
    priced = []
    for seat in seats:
        tier = (show.pricing or {}).get(seat.category)
        if not tier:
            raise InvalidStateError(f"No price configured for seat category {seat.category}")
        priced.append({
            "seat_id": seat.seat_id,
            "row": seat.row,
            "column": seat.column,
            "category": seat.category,
            "base_price": float(tier["base_price"]),
            "final_price": float(tier.get("final_price", tier["base_price"])),
        })
    return priced


async def _apply_coupon(
    db: AsyncSession,
    code: str,
    ctx: coupon_service.PurchaseContext,
) -> Optional[coupon_service.CouponValidation]:
    # A bad coupon never blocks the purchase; the booking proceeds at full price
    try:
        validation = await coupon_service.validate(db, code, ctx)
    except NotFoundError:
        logger.info("coupon_ignored", code=code, reason="not_found")
        return None
    if not validation.valid:
        logger.info("coupon_ignored", code=code, reason=validation.reason)
        return None
    return validation


async def initiate_booking(
    db: AsyncSession,
    user_id: str,
    show_id: int,
    seat_ids: Iterable[str],
    coupon_code: Optional[str] = None,
) -> Booking:
    """
    Hold seats and create a priced booking awaiting payment.

    All or nothing: if seats conflict, pricing fails or anything else goes
    wrong after the hold, no seat stays BLOCKED and no booking exists.
    """
    start = time.perf_counter()
    ids = _validate_seat_request(seat_ids)
    now = utcnow()

    show = await db.get(Show, show_id, populate_existing=True)
    if not show:
        raise NotFoundError(f"Show {show_id} not found")
    movie: Movie = await catalog_service.get_movie(db, show.movie_id)
    theater: Theater = await catalog_service.get_theater(db, show.theater_id)

    if show.status not in BOOKABLE_STATUSES:
        raise InvalidStateError(f"Show is {show.status.value} and not open for booking")
    if show.show_time <= now:
        raise InvalidStateError("Show has already started")

    async with db.begin_nested():
        booking = await _insert_booking(
            db,
            user_id=user_id,
            show_id=show.id,
            movie_id=movie.id,
            theater_id=theater.id,
            show_time=show.show_time,
            experience=show.experience,
            language=show.language,
            seats=[],
            status=BookingStatus.INITIATED,
            held_at=now,
        )

        await seat_inventory.reserve(db, show.id, ids, booking.id)

        result = await db.execute(
            select(ShowSeat).where(ShowSeat.show_id == show.id, ShowSeat.seat_id.in_(ids))
        )
        by_id = {seat.seat_id: seat for seat in result.scalars().all()}
        priced = _price_seats(show, [by_id[seat_id] for seat_id in ids])
        subtotal = round(sum(seat["final_price"] for seat in priced), 2)

        validation = None
        if coupon_code:
            validation = await _apply_coupon(
                db,
                coupon_code,
                coupon_service.PurchaseContext(
                    user_id=user_id,
                    movie_id=movie.id,
                    theater_id=theater.id,
                    experience=show.experience,
                    city=theater.city,
                    amount=subtotal,
                ),
            )

        discount = validation.discount if validation else 0.0
        charges = round(subtotal * settings.CONVENIENCE_FEE_RATE, 2)

        booking.seats = priced
        booking.subtotal_amount = subtotal
        booking.discount_amount = discount
        booking.additional_charges = charges
        booking.total_amount = round(subtotal - discount + charges, 2)
        if validation:
            booking.coupon_id = validation.coupon.id
            booking.coupon_code = validation.coupon.code
            booking.coupon_type = validation.coupon.discount_type.value
        booking.status = BookingStatus.PAYMENT_PENDING
        await db.flush()

        await popularity_service.record_booking_attempt(db, show.id)

    booking_latency.observe(time.perf_counter() - start)
    record_booking_transition("initiated")
    logger.info(
        "booking_initiated",
        booking_id=booking.id,
        booking_number=booking.booking_number,
        user_id=user_id,
        show_id=show.id,
        seats=ids,
        total=booking.total_amount,
        coupon=booking.coupon_code,
    )
    return booking


# ---------------------------------------------------------------------------
# Payment
# ---------------------------------------------------------------------------

async def start_payment(
    db: AsyncSession,
    booking_id: int,
    gateway: Optional[PaymentGateway] = None,
) -> tuple[Booking, PaymentOrder]:
    """Create the gateway order the customer pays against."""
    gateway = gateway or get_payment_gateway()
    booking = await get_booking(db, booking_id)
    if booking.status != BookingStatus.PAYMENT_PENDING:
        raise InvalidStateError(f"Booking is {booking.status.value}, payment cannot be started")
    if booking.coupon_id:
        rejection = await coupon_service.redemption_rejection(db, booking.coupon_id, booking.user_id, booking.id)
        if rejection:
            raise InvalidStateError(f"{rejection}; remove the coupon to pay the full price")

    try:
        order = await gateway.initiate(booking.total_amount, settings.CURRENCY, booking.booking_number)
    except PaymentGatewayError as exc:
        payment_gateway_errors.labels(operation="initiate").inc()
        logger.error("payment_initiate_failed", booking_id=booking_id, error=str(exc))
        raise ExternalServiceError("Payment gateway unavailable") from exc

    result = await db.execute(
        update(Booking)
        .where(Booking.id == booking_id, Booking.status == BookingStatus.PAYMENT_PENDING)
        .values(payment_order_ref=order.order_ref, payment_attempts=Booking.payment_attempts + 1)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateError("Booking is no longer awaiting payment")

    logger.info("payment_started", booking_id=booking_id, order_ref=order.order_ref, amount=order.amount)
    return await get_booking(db, booking_id), order


async def remove_coupon(db: AsyncSession, booking_id: int) -> Booking:
    """
    Re-price an unpaid booking at full price.
    Any payment order already created is dropped since its amount no longer matches.
    """
    booking = await get_booking(db, booking_id)
    if booking.coupon_id is None:
        raise InvalidStateError("Booking has no coupon applied")

    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.PAYMENT_PENDING,
            Booking.coupon_id == booking.coupon_id,
        )
        .values(
            coupon_id=None,
            coupon_code=None,
            coupon_type=None,
            discount_amount=0.0,
            total_amount=round(booking.subtotal_amount + booking.additional_charges, 2),
            payment_order_ref=None,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateError("Booking is no longer awaiting payment")

    logger.info("booking_coupon_removed", booking_id=booking_id, coupon=booking.coupon_code)
    return await get_booking(db, booking_id)


async def confirm_booking(
    db: AsyncSession,
    booking_id: int,
    order_ref: str,
    payment_ref: str,
    signature: str,
    payment_method: Optional[str] = None,
    gateway: Optional[PaymentGateway] = None,
    notifier: Optional[NotificationService] = None,
) -> Booking:
    """
    Confirm a paid booking.

    Not re-entrant: only the first call for a PAYMENT_PENDING booking wins;
    a second call raises InvalidStateError and counts nothing twice.
    """
    gateway = gateway or get_payment_gateway()
    booking = await get_booking(db, booking_id)
    if booking.status != BookingStatus.PAYMENT_PENDING:
        raise InvalidStateError(f"Booking is {booking.status.value}, expected PAYMENT_PENDING")
    if booking.payment_order_ref and booking.payment_order_ref != order_ref:
        raise ValidationError("Payment order does not belong to this booking")

    try:
        verified = await gateway.verify(order_ref, payment_ref, signature)
    except PaymentGatewayError as exc:
        payment_gateway_errors.labels(operation="verify").inc()
        logger.error("payment_verify_failed", booking_id=booking_id, error=str(exc))
        raise ExternalServiceError("Payment gateway unavailable") from exc
    if not verified:
        payment_gateway_errors.labels(operation="verify").inc()
        raise ExternalServiceError("Payment could not be verified")

    now = utcnow()
    async with db.begin_nested():
        result = await db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == BookingStatus.PAYMENT_PENDING)
            .values(
                status=BookingStatus.CONFIRMED,
                payment_order_ref=order_ref,
                payment_reference=payment_ref,
                payment_transaction_id=payment_ref,
                payment_method=payment_method,
                payment_status=PaymentStatus.SUCCESS,
                paid_at=now,
                ticket_status=TicketStatus.GENERATED,
                qr_code_url=f"{settings.TICKET_BASE_URL}/{booking.booking_number}",
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateError("Booking is no longer awaiting payment")

        await seat_inventory.confirm(db, booking.show_id, booking.seat_ids, booking.id)
        if booking.coupon_id:
            rejection = await coupon_service.redeem(db, booking.coupon_id, booking.user_id, booking.id)
            if rejection:
                raise InvalidStateError(f"{rejection}; remove the coupon to pay the full price")
        await popularity_service.record_sale(db, booking.show_id, booking.movie_id, booking.total_amount)

    booking = await get_booking(db, booking_id)
    record_booking_transition("confirmed")
    logger.info(
        "booking_confirmed",
        booking_id=booking.id,
        booking_number=booking.booking_number,
        payment_ref=payment_ref,
        total=booking.total_amount,
    )

    return await _deliver_ticket(db, booking, notifier or get_notifier())


async def _deliver_ticket(
    db: AsyncSession,
    booking: Booking,
    notifier: NotificationService,
    email: bool = True,
    sms: bool = True,
) -> Booking:
    # Delivery never affects the booking outcome
    try:
        result = await notifier.send_ticket(booking, email=email, sms=sms)
    except Exception:
        logger.exception("ticket_delivery_failed", booking_id=booking.id)
        return booking

    if not result.delivered:
        logger.warning("ticket_not_delivered", booking_id=booking.id, email=email, sms=sms)
        return booking

    # Channels that already succeeded on an earlier send stay flagged
    await db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.ticket_status.in_((TicketStatus.GENERATED, TicketStatus.DELIVERED)),
        )
        .values(
            ticket_status=TicketStatus.DELIVERED,
            email_sent=booking.email_sent or result.email,
            sms_sent=booking.sms_sent or result.sms,
            last_notification_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    logger.info("ticket_delivered", booking_id=booking.id, email=result.email, sms=result.sms)
    return await get_booking(db, booking.id)


async def send_ticket_notification(
    db: AsyncSession,
    booking_id: int,
    notifier: Optional[NotificationService] = None,
    email: bool = True,
    sms: bool = True,
) -> Booking:
    """Re-send the ticket of a confirmed booking on the requested channels."""
    if not (email or sms):
        raise ValidationError("Select at least one notification channel")
    booking = await get_booking(db, booking_id)
    if booking.status != BookingStatus.CONFIRMED or booking.ticket_status not in (
        TicketStatus.GENERATED,
        TicketStatus.DELIVERED,
    ):
        raise InvalidStateError("Ticket is not available for this booking")
    return await _deliver_ticket(db, booking, notifier or get_notifier(), email=email, sms=sms)


# ---------------------------------------------------------------------------
# Cancel / refund / delete
# ---------------------------------------------------------------------------

async def cancel_booking(
    db: AsyncSession,
    booking_id: int,
    reason: Optional[str],
    actor: str,
) -> Booking:
    """Cancel a confirmed booking before the show and give its seats back."""
    booking = await get_booking(db, booking_id)
    now = utcnow()
    if booking.status != BookingStatus.CONFIRMED:
        raise InvalidStateError(f"Booking is {booking.status.value}, only confirmed bookings can be cancelled")
    if booking.ticket_status == TicketStatus.CHECKED_IN:
        raise InvalidStateError("Booking has already been checked in")
    if booking.show_time <= now:
        raise InvalidStateError("Show has already started")

    async with db.begin_nested():
        result = await db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.status == BookingStatus.CONFIRMED)
            .values(
                status=BookingStatus.CANCELLED,
                cancellation_reason=reason,
                cancelled_at=now,
                cancelled_by=actor,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateError("Booking is no longer confirmed")

        await seat_inventory.release(db, booking.show_id, await _held_seat_ids(db, booking), booking_id=booking.id)

    record_booking_transition("cancelled")
    logger.info("booking_cancelled", booking_id=booking_id, actor=actor, reason=reason)
    return await get_booking(db, booking_id)


def calculate_refund_amount(booking: Booking) -> float:
    """Full refund, or a reduced one when cancelled close to the show."""
    late_cutoff = booking.show_time - timedelta(hours=settings.LATE_CANCELLATION_WINDOW_HOURS)
    rate = settings.LATE_CANCELLATION_REFUND_RATE if booking.cancelled_at >= late_cutoff else 1.0
    return round(booking.total_amount * rate, 2)


async def request_refund(db: AsyncSession, booking_id: int) -> Booking:
    booking = await get_booking(db, booking_id)
    if booking.status != BookingStatus.CANCELLED:
        raise InvalidStateError(f"Booking is {booking.status.value}, only cancelled bookings can be refunded")
    if booking.refund_status is not None:
        raise InvalidStateError("Refund already requested")

    amount = calculate_refund_amount(booking)
    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.CANCELLED,
            Booking.refund_status.is_(None),
        )
        .values(
            refund_id=f"RF{uuid.uuid4().hex[:12].upper()}",
            refund_amount=amount,
            refund_status=RefundStatus.PENDING,
            refund_requested_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateError("Refund already requested")

    logger.info("refund_requested", booking_id=booking_id, amount=amount, total=booking.total_amount)
    return await get_booking(db, booking_id)


async def process_refund(
    db: AsyncSession,
    booking_id: int,
    gateway: Optional[PaymentGateway] = None,
) -> Booking:
    """
    Pay out a requested refund.
    A gateway failure marks the refund FAILED; it can be processed again later.
    """
    gateway = gateway or get_payment_gateway()
    booking = await get_booking(db, booking_id)
    current = booking.refund_status
    if booking.status != BookingStatus.CANCELLED or current not in (RefundStatus.PENDING, RefundStatus.FAILED):
        raise InvalidStateError("No refund awaiting processing for this booking")

    try:
        refund_ref = await gateway.refund(booking.payment_transaction_id, booking.refund_amount)
    except PaymentGatewayError as exc:
        payment_gateway_errors.labels(operation="refund").inc()
        logger.warning("refund_failed", booking_id=booking_id, error=str(exc))
        await db.execute(
            update(Booking)
            .where(Booking.id == booking_id, Booking.refund_status == current)
            .values(refund_status=RefundStatus.FAILED)
            .execution_options(synchronize_session=False)
        )
        return await get_booking(db, booking_id)

    now = utcnow()
    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.status == BookingStatus.CANCELLED,
            Booking.refund_status == current,
        )
        .values(
            status=BookingStatus.REFUNDED,
            payment_status=PaymentStatus.REFUNDED,
            refund_status=RefundStatus.PROCESSED,
            refund_transaction_id=refund_ref,
            refund_processed_at=now,
            updated_at=now,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateError("Refund was processed concurrently")

    record_booking_transition("refunded")
    logger.info("refund_processed", booking_id=booking_id, refund_ref=refund_ref, amount=booking.refund_amount)
    return await get_booking(db, booking_id)


async def delete_booking(db: AsyncSession, booking_id: int) -> None:
    """Remove an unpaid booking, releasing any seats it still holds."""
    booking = await get_booking(db, booking_id)
    if booking.status not in DELETABLE_STATUSES:
        raise InvalidStateError(f"Booking is {booking.status.value} and cannot be deleted")

    async with db.begin_nested():
        await seat_inventory.release(db, booking.show_id, await _held_seat_ids(db, booking), booking_id=booking.id)
        result = await db.execute(
            delete(Booking)
            .where(Booking.id == booking_id, Booking.status.in_(DELETABLE_STATUSES))
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise InvalidStateError("Booking changed state and cannot be deleted")

    db.expunge(booking)
    record_booking_transition("deleted")
    logger.info("booking_deleted", booking_id=booking_id, booking_number=booking.booking_number)


# ---------------------------------------------------------------------------
# Venue / schedulers
# ---------------------------------------------------------------------------

async def check_in(db: AsyncSession, booking_number: str, now: Optional[datetime] = None) -> Booking:
    booking = await get_booking_by_number(db, booking_number)
    now = now or utcnow()
    if booking.status != BookingStatus.CONFIRMED:
        raise InvalidStateError(f"Booking is {booking.status.value}, only confirmed bookings can check in")
    if booking.ticket_status == TicketStatus.CHECKED_IN:
        raise InvalidStateError("Ticket has already been checked in")
    if booking.ticket_status not in (TicketStatus.GENERATED, TicketStatus.DELIVERED):
        raise InvalidStateError(f"Ticket is {booking.ticket_status.value}")

    window = timedelta(hours=settings.CHECK_IN_WINDOW_HOURS)
    if not booking.show_time - window <= now <= booking.show_time + window:
        raise InvalidStateError(
            f"Check-in is open from {settings.CHECK_IN_WINDOW_HOURS}h before to "
            f"{settings.CHECK_IN_WINDOW_HOURS}h after show time"
        )

    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking.id,
            Booking.status == BookingStatus.CONFIRMED,
            Booking.ticket_status.in_((TicketStatus.GENERATED, TicketStatus.DELIVERED)),
        )
        .values(ticket_status=TicketStatus.CHECKED_IN, checked_in_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise InvalidStateError("Ticket has already been checked in")

    record_booking_transition("checked_in")
    logger.info("booking_checked_in", booking_id=booking.id, booking_number=booking_number)
    return await get_booking(db, booking.id)


async def expire_stale_holds(
    db: AsyncSession,
    now: Optional[datetime] = None,
    timeout_seconds: Optional[int] = None,
) -> int:
    """
    Expire bookings whose seat hold outlived the timeout and free their seats.
    A booking confirmed in the meantime is skipped. Returns the number expired.
    """
    now = now or utcnow()
    timeout = timeout_seconds if timeout_seconds is not None else settings.RESERVATION_HOLD_TIMEOUT_SECONDS
    cutoff = now - timedelta(seconds=timeout)

    result = await db.execute(
        select(Booking)
        .where(Booking.status.in_(HOLDING_STATUSES), Booking.held_at <= cutoff)
        .order_by(Booking.held_at.asc())
        .execution_options(populate_existing=True)
    )

    expired = 0
    for booking in result.scalars().all():
        async with db.begin_nested():
            changed = await db.execute(
                update(Booking)
                .where(Booking.id == booking.id, Booking.status.in_(HOLDING_STATUSES))
                .values(status=BookingStatus.EXPIRED, payment_status=PaymentStatus.FAILED, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if changed.rowcount != 1:
                logger.info("hold_expiry_skipped", booking_id=booking.id)
                continue
            await seat_inventory.release(
                db, booking.show_id, await _held_seat_ids(db, booking), booking_id=booking.id
            )

        expired += 1
        record_booking_transition("expired")
        logger.info("booking_expired", booking_id=booking.id, show_id=booking.show_id, held_at=booking.held_at)

    if expired:
        expired_holds.inc(expired)
    return expired


async def expire_tickets_for_show(db: AsyncSession, show_id: int) -> int:
    """Tickets of a finished show that were never scanned can no longer be used."""
    result = await db.execute(
        update(Booking)
        .where(
            Booking.show_id == show_id,
            Booking.status == BookingStatus.CONFIRMED,
            Booking.ticket_status.in_(LIVE_TICKET_STATUSES),
        )
        .values(ticket_status=TicketStatus.EXPIRED)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount:
        logger.info("tickets_expired", show_id=show_id, count=result.rowcount)
    return result.rowcount
