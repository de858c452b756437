"""
Seat inventory for a show: the only code allowed to change seat statuses.

CONCURRENCY STRATEGY: Conditional UPDATE with verified row count
================================================================

Problem:
  Two users try to hold overlapping seats of the same show at the same time.
  Reading the seats, checking they are AVAILABLE and then writing BLOCKED lets
  both requests see AVAILABLE and both "win". Result: the seat is sold twice.

Solution:
  The check and the write are one statement:

    UPDATE show_seats SET status = 'BLOCKED', booking_id = :booking
    WHERE show_id = :show AND seat_id IN (:ids) AND status = 'AVAILABLE'

  The database applies it atomically per row. If the number of rows changed
  differs from the number of seats requested, at least one seat was taken by
  someone else (or does not exist), and the surrounding savepoint is rolled
  back so the caller holds nothing.

  The show row counters (available_seats, booked_seats) are updated by deltas
  (`available_seats = available_seats - n`) in the same transaction. The
  UPDATE takes the show row lock, which serializes counter changes per show
  without a global lock. `version` is bumped on every mutation.

  The derived status (OPEN / FEWSEATSLEFT / SOLDOUT) is recomputed in SQL
  right after the counter change. Time and admin driven statuses (STARTED,
  FINISHED, CANCELLED) are never overwritten here.

Reconciliation:
  A seat can in principle be left BLOCKED without a live booking owning it
  (e.g. a crash between separate transactions in an older deployment).
  `release_orphaned_holds` finds such seats after a grace period and returns
  them to AVAILABLE, then recounts the affected shows from the seat rows.
"""

from datetime import datetime, timedelta
from typing import Iterable, Optional

from sqlalchemy import case, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.config import get_settings
from booking_engine.core.exceptions import ConflictError, InvalidStateError, NotFoundError, ValidationError
from booking_engine.core.logging import get_logger
from booking_engine.core.metrics import orphaned_seats_released, record_seat_reservation
from booking_engine.db.base import utcnow
from booking_engine.models.booking import HOLDING_STATUSES, Booking
from booking_engine.models.show import OCCUPANCY_STATUSES, SeatStatus, Show, ShowSeat, ShowStatus

logger = get_logger(__name__)
settings = get_settings()


def _unique_seat_ids(seat_ids: Iterable[str]) -> list[str]:
    ids = list(seat_ids)
    if not ids:
        raise ValidationError("At least one seat must be given")
    if len(set(ids)) != len(ids):
        raise ValidationError("Duplicate seat ids in request")
    return ids


def derive_occupancy_status(available_seats: int, total_seats: int) -> ShowStatus:
    """Occupancy status for the given counters, same rule as `_refresh_status`."""
    if available_seats == 0:
        return ShowStatus.SOLDOUT
    if available_seats <= total_seats * settings.FEW_SEATS_THRESHOLD:
        return ShowStatus.FEWSEATSLEFT
    return ShowStatus.OPEN


def calculate_popularity_score(show: Show) -> float:
    occupancy = (show.booked_seats / show.total_seats) if show.total_seats else 0.0
    return 0.3 * show.view_count + 0.3 * show.booking_attempts + 0.4 * 100 * occupancy


def _derived_status():
    # Enum column stores the member names; plain strings bind on every driver
    return case(
        (Show.available_seats == 0, ShowStatus.SOLDOUT.value),
        (Show.available_seats <= Show.total_seats * settings.FEW_SEATS_THRESHOLD, ShowStatus.FEWSEATSLEFT.value),
        else_=ShowStatus.OPEN.value,
    )


async def _refresh_status(db: AsyncSession, show_id: int) -> None:
    await db.execute(
        update(Show)
        .where(Show.id == show_id, Show.status.in_(OCCUPANCY_STATUSES))
        .values(status=_derived_status())
        .execution_options(synchronize_session=False)
    )


async def refresh_occupancy_statuses(db: AsyncSession) -> int:
    """Re-derive OPEN / FEWSEATSLEFT / SOLDOUT for every show still selling."""
    result = await db.execute(
        update(Show)
        .where(Show.status.in_(OCCUPANCY_STATUSES), Show.status != _derived_status())
        .values(status=_derived_status())
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def _apply_counter_delta(db: AsyncSession, show_id: int, available: int = 0, booked: int = 0) -> None:
    await db.execute(
        update(Show)
        .where(Show.id == show_id)
        .values(
            available_seats=Show.available_seats + available,
            booked_seats=Show.booked_seats + booked,
            version=Show.version + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    await _refresh_status(db, show_id)


async def reserve(db: AsyncSession, show_id: int, seat_ids: Iterable[str], booking_id: int) -> None:
    """
    Hold seats for a booking: AVAILABLE -> BLOCKED, all or nothing.
    Raises ConflictError if any seat is not AVAILABLE or unknown.
    """
    ids = _unique_seat_ids(seat_ids)

    async with db.begin_nested():
        result = await db.execute(
            update(ShowSeat)
            .where(
                ShowSeat.show_id == show_id,
                ShowSeat.seat_id.in_(ids),
                ShowSeat.status == SeatStatus.AVAILABLE,
            )
            .values(status=SeatStatus.BLOCKED, booking_id=booking_id, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )

        if result.rowcount != len(ids):
            held = await db.execute(
                select(ShowSeat.seat_id).where(
                    ShowSeat.show_id == show_id,
                    ShowSeat.seat_id.in_(ids),
                    ShowSeat.booking_id == booking_id,
                    ShowSeat.status == SeatStatus.BLOCKED,
                )
            )
            unavailable = sorted(set(ids) - set(held.scalars().all()))
            record_seat_reservation(False)
            logger.warning(
                "seat_reservation_conflict",
                show_id=show_id,
                booking_id=booking_id,
                requested=ids,
                unavailable=unavailable,
            )
            raise ConflictError(f"Seats not available: {', '.join(unavailable)}")

        await _apply_counter_delta(db, show_id, available=-len(ids))

    record_seat_reservation(True)
    logger.info("seats_reserved", show_id=show_id, booking_id=booking_id, seats=ids)


async def confirm(db: AsyncSession, show_id: int, seat_ids: Iterable[str], booking_id: int) -> None:
    """BLOCKED -> BOOKED for seats held by `booking_id`; mutates nothing unless every seat moves."""
    ids = _unique_seat_ids(seat_ids)

    async with db.begin_nested():
        result = await db.execute(
            update(ShowSeat)
            .where(
                ShowSeat.show_id == show_id,
                ShowSeat.seat_id.in_(ids),
                ShowSeat.status == SeatStatus.BLOCKED,
                ShowSeat.booking_id == booking_id,
            )
            .values(status=SeatStatus.BOOKED, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != len(ids):
            logger.error(
                "seat_confirm_mismatch",
                show_id=show_id,
                booking_id=booking_id,
                expected=len(ids),
                confirmed=result.rowcount,
            )
            raise InvalidStateError("Seats are no longer held for this booking")

        await _apply_counter_delta(db, show_id, booked=len(ids))

    logger.info("seats_booked", show_id=show_id, booking_id=booking_id, seats=ids)


async def release(
    db: AsyncSession,
    show_id: int,
    seat_ids: Iterable[str],
    booking_id: Optional[int] = None,
) -> int:
    """
    BOOKED|BLOCKED -> AVAILABLE, clearing the owning booking.

    Idempotent: seats already AVAILABLE are left alone. When `booking_id` is
    given only seats owned by that booking are released. Returns the number
    of seats released.
    """
    ids = list(dict.fromkeys(seat_ids))
    if not ids:
        return 0

    conditions = [ShowSeat.show_id == show_id, ShowSeat.seat_id.in_(ids)]
    if booking_id is not None:
        conditions.append(ShowSeat.booking_id == booking_id)

    async with db.begin_nested():
        booked = await db.execute(
            update(ShowSeat)
            .where(*conditions, ShowSeat.status == SeatStatus.BOOKED)
            .values(status=SeatStatus.AVAILABLE, booking_id=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        blocked = await db.execute(
            update(ShowSeat)
            .where(*conditions, ShowSeat.status == SeatStatus.BLOCKED)
            .values(status=SeatStatus.AVAILABLE, booking_id=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        released = booked.rowcount + blocked.rowcount
        if released:
            await _apply_counter_delta(db, show_id, available=released, booked=-booked.rowcount)

    logger.info(
        "seats_released",
        show_id=show_id,
        booking_id=booking_id,
        released=released,
        from_booked=booked.rowcount,
    )
    return released


async def recompute_counters(db: AsyncSession, show_id: int) -> Show:
    """Rebuild the show counters from its seat rows and re-derive status."""
    rows = await db.execute(
        select(ShowSeat.status, func.count())
        .where(ShowSeat.show_id == show_id)
        .group_by(ShowSeat.status)
    )
    counts = {status: count for status, count in rows.all()}
    total = sum(counts.values())

    result = await db.execute(
        update(Show)
        .where(Show.id == show_id)
        .values(
            total_seats=total,
            available_seats=counts.get(SeatStatus.AVAILABLE, 0),
            booked_seats=counts.get(SeatStatus.BOOKED, 0),
            version=Show.version + 1,
            updated_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Show {show_id} not found")
    await _refresh_status(db, show_id)

    show = await db.get(Show, show_id, populate_existing=True)
    logger.info(
        "show_counters_recomputed",
        show_id=show_id,
        total=show.total_seats,
        available=show.available_seats,
        booked=show.booked_seats,
        status=show.status,
    )
    return show


async def get_seat_map(db: AsyncSession, show_id: int) -> list[ShowSeat]:
    """All seats of a show with their current statuses, ordered by row then column."""
    result = await db.execute(
        select(ShowSeat)
        .where(ShowSeat.show_id == show_id)
        .order_by(ShowSeat.row.asc(), ShowSeat.column.asc())
        .execution_options(populate_existing=True)
    )
    seats = list(result.scalars().all())
    if not seats and await db.get(Show, show_id) is None:
        raise NotFoundError(f"Show {show_id} not found")
    return seats


async def release_orphaned_holds(db: AsyncSession, grace_seconds: int, now: Optional[datetime] = None) -> int:
    """
    Release BLOCKED seats that no live booking owns.

    A hold is orphaned when its booking reference is empty or points to a
    booking that is no longer INITIATED/PAYMENT_PENDING, and the seat has not
    changed for `grace_seconds`. Affected shows are recounted from seat rows.
    """
    cutoff = (now or utcnow()) - timedelta(seconds=grace_seconds)
    live_bookings = select(Booking.id).where(Booking.status.in_(HOLDING_STATUSES))
    orphaned = [
        ShowSeat.status == SeatStatus.BLOCKED,
        ShowSeat.updated_at <= cutoff,
        or_(ShowSeat.booking_id.is_(None), ShowSeat.booking_id.not_in(live_bookings)),
    ]

    show_ids = (await db.execute(select(ShowSeat.show_id).where(*orphaned).distinct())).scalars().all()
    if not show_ids:
        return 0

    async with db.begin_nested():
        result = await db.execute(
            update(ShowSeat)
            .where(ShowSeat.show_id.in_(show_ids), *orphaned)
            .values(status=SeatStatus.AVAILABLE, booking_id=None, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        for show_id in show_ids:
            await recompute_counters(db, show_id)

    orphaned_seats_released.inc(result.rowcount)
    logger.warning("orphaned_holds_released", seats=result.rowcount, show_ids=list(show_ids))
    return result.rowcount
