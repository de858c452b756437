"""
Tests for the background sweeps: hold expiry, orphaned seats, show status.
"""

from datetime import timedelta

import pytest
from sqlalchemy import select

from booking_engine.db.base import utcnow
from booking_engine.models import Booking, BookingStatus, PaymentStatus, SeatStatus, Show, ShowSeat, ShowStatus, TicketStatus
from booking_engine.services import booking_service, seat_inventory, show_service
from booking_engine.workers.periodic import PeriodicTask
from booking_engine.workers.reservation_expiry import ReservationExpiryScheduler, SweepResult
from booking_engine.workers.show_status import ShowStatusScheduler

from conftest import USER_ID, reload, schedule_show, signed_payment


async def seat_map(db_session, show_id: int) -> dict[str, SeatStatus]:
    result = await db_session.execute(
        select(ShowSeat).where(ShowSeat.show_id == show_id).execution_options(populate_existing=True)
    )
    return {seat.seat_id: seat.status for seat in result.scalars().all()}


class ExplodingTask(PeriodicTask):
    name = "exploding"

    async def execute(self, db):
        raise RuntimeError("boom")


@pytest.mark.asyncio
async def test_expire_stale_holds_after_timeout(db_session, test_show):
    booking = await booking_service.initiate_booking(db_session, USER_ID, test_show.id, ["A1", "A2"])
    await db_session.commit()

    assert await booking_service.expire_stale_holds(db_session) == 0

    expired = await booking_service.expire_stale_holds(db_session, now=utcnow() + timedelta(seconds=601))
    await db_session.commit()
    assert expired == 1

    booking = await reload(db_session, Booking, booking.id)
    assert booking.status == BookingStatus.EXPIRED
    assert booking.payment_status == PaymentStatus.FAILED

    statuses = await seat_map(db_session, test_show.id)
    assert statuses["A1"] == SeatStatus.AVAILABLE
    show = await reload(db_session, Show, test_show.id)
    assert show.available_seats == 20


@pytest.mark.asyncio
async def test_expiry_skips_confirmed_bookings(db_session, test_show, gateway):
    booking = await booking_service.initiate_booking(db_session, USER_ID, test_show.id, ["A1"])
    await booking_service.confirm_booking(db_session, booking.id, **signed_payment(gateway, booking), gateway=gateway)
    await db_session.commit()

    assert await booking_service.expire_stale_holds(db_session, now=utcnow() + timedelta(hours=1)) == 0
    booking = await reload(db_session, Booking, booking.id)
    assert booking.status == BookingStatus.CONFIRMED


@pytest.mark.asyncio
async def test_reservation_scheduler_run(db_session, session_factory, test_show):
    booking = await booking_service.initiate_booking(db_session, USER_ID, test_show.id, ["A1", "A2"])
    # A hold whose booking row no longer exists
    await seat_inventory.reserve(db_session, test_show.id, ["B1"], booking_id=424242)
    await db_session.commit()

    scheduler = ReservationExpiryScheduler(
        hold_timeout_seconds=0,
        orphan_grace_seconds=0,
        session_factory=session_factory,
    )
    result = await scheduler.run_once()

    assert result == SweepResult(expired_bookings=1, orphaned_seats=1)

    booking = await reload(db_session, Booking, booking.id)
    assert booking.status == BookingStatus.EXPIRED
    statuses = await seat_map(db_session, test_show.id)
    assert {statuses["A1"], statuses["A2"], statuses["B1"]} == {SeatStatus.AVAILABLE}
    show = await reload(db_session, Show, test_show.id)
    assert show.available_seats == 20
    await db_session.commit()


@pytest.mark.asyncio
async def test_scheduler_skips_overlapping_run(session_factory):
    scheduler = ReservationExpiryScheduler(session_factory=session_factory)
    scheduler._in_progress = True

    assert await scheduler.run_once() is None


@pytest.mark.asyncio
async def test_scheduler_survives_errors(session_factory):
    task = ExplodingTask(interval_seconds=60, session_factory=session_factory)

    assert await task.run_once() is None
    assert not task._in_progress


@pytest.mark.asyncio
async def test_scheduler_start_and_stop(session_factory):
    scheduler = ShowStatusScheduler(interval_seconds=3600, session_factory=session_factory)
    scheduler.start()
    assert scheduler.running

    await scheduler.stop()
    assert not scheduler.running


@pytest.mark.asyncio
async def test_show_status_follows_clock(db_session, test_show, gateway):
    booking = await booking_service.initiate_booking(db_session, USER_ID, test_show.id, ["A1"])
    await booking_service.confirm_booking(db_session, booking.id, **signed_payment(gateway, booking), gateway=gateway)
    await db_session.commit()

    show_time = test_show.show_time

    changes = await show_service.update_show_statuses(db_session, now=show_time + timedelta(minutes=1))
    assert changes[ShowStatus.STARTED.value] == 1
    show = await reload(db_session, Show, test_show.id)
    assert show.status == ShowStatus.STARTED

    # Occupancy changes no longer move a started show
    await seat_inventory.release(db_session, test_show.id, ["A1"])
    show = await reload(db_session, Show, test_show.id)
    assert show.status == ShowStatus.STARTED

    changes = await show_service.update_show_statuses(db_session, now=show_time + timedelta(hours=4))
    assert changes[ShowStatus.FINISHED.value] == 1
    show = await reload(db_session, Show, test_show.id)
    assert show.status == ShowStatus.FINISHED

    booking = await reload(db_session, Booking, booking.id)
    assert booking.ticket_status == TicketStatus.EXPIRED

    # Terminal: later ticks leave it alone
    changes = await show_service.update_show_statuses(db_session, now=show_time + timedelta(days=1))
    assert changes[ShowStatus.FINISHED.value] == 0


@pytest.mark.asyncio
async def test_cancelled_show_is_terminal(db_session, catalog):
    show = await schedule_show(db_session, catalog, starts_in=timedelta(hours=1))
    show.status = ShowStatus.CANCELLED
    await db_session.commit()

    changes = await show_service.update_show_statuses(db_session, now=utcnow() + timedelta(hours=2))
    assert changes == {ShowStatus.STARTED.value: 0, ShowStatus.FINISHED.value: 0}
    show = await reload(db_session, Show, show.id)
    assert show.status == ShowStatus.CANCELLED


@pytest.mark.asyncio
async def test_show_status_scheduler_run(db_session, session_factory, catalog):
    show = await schedule_show(db_session, catalog, starts_in=timedelta(hours=1))
    await db_session.commit()

    scheduler = ShowStatusScheduler(session_factory=session_factory)
    result = await scheduler.run_once()
    assert result == {ShowStatus.STARTED.value: 0, ShowStatus.FINISHED.value: 0}

    show = await reload(db_session, Show, show.id)
    assert show.status == ShowStatus.OPEN
    await db_session.commit()
