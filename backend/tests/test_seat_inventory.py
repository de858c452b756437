"""
Tests for seat holds, confirmation, release and show counters.
"""

import pytest
from sqlalchemy import select, update

from booking_engine.core.exceptions import ConflictError, InvalidStateError, ValidationError
from booking_engine.models import SeatStatus, Show, ShowSeat, ShowStatus
from booking_engine.services import seat_inventory

from conftest import reload


async def seat_statuses(db_session, show_id: int) -> dict[str, SeatStatus]:
    result = await db_session.execute(
        select(ShowSeat).where(ShowSeat.show_id == show_id).execution_options(populate_existing=True)
    )
    return {seat.seat_id: seat.status for seat in result.scalars().all()}


async def assert_counters_balance(db_session, show_id: int) -> Show:
    show = await reload(db_session, Show, show_id)
    statuses = (await seat_statuses(db_session, show_id)).values()
    blocked = sum(1 for s in statuses if s == SeatStatus.BLOCKED)
    unavailable = sum(1 for s in statuses if s == SeatStatus.UNAVAILABLE)
    assert show.available_seats + show.booked_seats + blocked + unavailable == show.total_seats
    return show


@pytest.mark.asyncio
async def test_show_created_from_active_layout(db_session, test_show):
    """Inactive layout seats are not sold; every active seat starts AVAILABLE."""
    show = await reload(db_session, Show, test_show.id)
    assert show.total_seats == 20
    assert show.available_seats == 20
    assert show.booked_seats == 0
    assert show.status == ShowStatus.OPEN
    assert show.end_time > show.show_time

    statuses = await seat_statuses(db_session, show.id)
    assert "B11" not in statuses
    assert set(statuses.values()) == {SeatStatus.AVAILABLE}


@pytest.mark.asyncio
async def test_reserve_blocks_seats_and_decrements_available(db_session, test_show):
    version_before = test_show.version
    await seat_inventory.reserve(db_session, test_show.id, ["A1", "A2"], booking_id=101)
    await db_session.commit()

    statuses = await seat_statuses(db_session, test_show.id)
    assert statuses["A1"] == SeatStatus.BLOCKED
    assert statuses["A2"] == SeatStatus.BLOCKED

    show = await assert_counters_balance(db_session, test_show.id)
    assert show.available_seats == 18
    assert show.version > version_before


@pytest.mark.asyncio
async def test_reserve_conflict_holds_nothing(db_session, test_show):
    """If one seat is taken, none of the requested seats are held."""
    await seat_inventory.reserve(db_session, test_show.id, ["A1"], booking_id=1)

    with pytest.raises(ConflictError) as exc:
        await seat_inventory.reserve(db_session, test_show.id, ["A1", "A3"], booking_id=2)
    assert "A1" in exc.value.message

    statuses = await seat_statuses(db_session, test_show.id)
    assert statuses["A3"] == SeatStatus.AVAILABLE
    show = await assert_counters_balance(db_session, test_show.id)
    assert show.available_seats == 19


@pytest.mark.asyncio
async def test_reserve_unknown_seat_is_conflict(db_session, test_show):
    with pytest.raises(ConflictError):
        await seat_inventory.reserve(db_session, test_show.id, ["A1", "Z99"], booking_id=1)

    statuses = await seat_statuses(db_session, test_show.id)
    assert statuses["A1"] == SeatStatus.AVAILABLE


@pytest.mark.asyncio
async def test_reserve_rejects_duplicates(db_session, test_show):
    with pytest.raises(ValidationError):
        await seat_inventory.reserve(db_session, test_show.id, ["A1", "A1"], booking_id=1)


@pytest.mark.asyncio
async def test_confirm_books_held_seats(db_session, test_show):
    await seat_inventory.reserve(db_session, test_show.id, ["A1", "A2"], booking_id=7)
    await seat_inventory.confirm(db_session, test_show.id, ["A1", "A2"], booking_id=7)

    statuses = await seat_statuses(db_session, test_show.id)
    assert statuses["A1"] == SeatStatus.BOOKED
    show = await assert_counters_balance(db_session, test_show.id)
    assert show.available_seats == 18
    assert show.booked_seats == 2


@pytest.mark.asyncio
async def test_confirm_requires_hold_by_same_booking(db_session, test_show):
    """Confirm changes nothing unless every seat is held by the booking."""
    await seat_inventory.reserve(db_session, test_show.id, ["A1"], booking_id=7)

    with pytest.raises(InvalidStateError):
        await seat_inventory.confirm(db_session, test_show.id, ["A1", "A2"], booking_id=7)
    with pytest.raises(InvalidStateError):
        await seat_inventory.confirm(db_session, test_show.id, ["A1"], booking_id=8)

    statuses = await seat_statuses(db_session, test_show.id)
    assert statuses["A1"] == SeatStatus.BLOCKED
    show = await reload(db_session, Show, test_show.id)
    assert show.booked_seats == 0


@pytest.mark.asyncio
async def test_release_restores_blocked_and_booked(db_session, test_show):
    await seat_inventory.reserve(db_session, test_show.id, ["A1", "A2"], booking_id=7)
    await seat_inventory.confirm(db_session, test_show.id, ["A1", "A2"], booking_id=7)
    await seat_inventory.reserve(db_session, test_show.id, ["A3"], booking_id=8)

    released = await seat_inventory.release(db_session, test_show.id, ["A1", "A2", "A3"])
    assert released == 3

    statuses = await seat_statuses(db_session, test_show.id)
    assert {statuses["A1"], statuses["A2"], statuses["A3"]} == {SeatStatus.AVAILABLE}
    show = await assert_counters_balance(db_session, test_show.id)
    assert show.available_seats == 20
    assert show.booked_seats == 0


@pytest.mark.asyncio
async def test_release_is_idempotent_and_respects_owner(db_session, test_show):
    await seat_inventory.reserve(db_session, test_show.id, ["A1"], booking_id=7)

    assert await seat_inventory.release(db_session, test_show.id, ["A1"], booking_id=8) == 0
    assert await seat_inventory.release(db_session, test_show.id, ["A1"], booking_id=7) == 1
    assert await seat_inventory.release(db_session, test_show.id, ["A1"], booking_id=7) == 0

    show = await assert_counters_balance(db_session, test_show.id)
    assert show.available_seats == 20


@pytest.mark.asyncio
async def test_status_follows_occupancy(db_session, test_show):
    """FEWSEATSLEFT at <= 10% available, SOLDOUT at zero, OPEN again after release."""
    all_seats = [f"A{n}" for n in range(1, 11)] + [f"B{n}" for n in range(1, 11)]

    await seat_inventory.reserve(db_session, test_show.id, all_seats[:18], booking_id=1)
    show = await reload(db_session, Show, test_show.id)
    assert show.available_seats == 2
    assert show.status == ShowStatus.FEWSEATSLEFT

    await seat_inventory.reserve(db_session, test_show.id, all_seats[18:], booking_id=2)
    show = await reload(db_session, Show, test_show.id)
    assert show.status == ShowStatus.SOLDOUT

    await seat_inventory.release(db_session, test_show.id, all_seats)
    show = await reload(db_session, Show, test_show.id)
    assert show.status == ShowStatus.OPEN


@pytest.mark.asyncio
async def test_occupancy_never_overrides_time_status(db_session, test_show):
    await db_session.execute(update(Show).where(Show.id == test_show.id).values(status=ShowStatus.STARTED))
    await seat_inventory.release(db_session, test_show.id, ["A1"])
    await seat_inventory.reserve(db_session, test_show.id, ["A1"], booking_id=1)

    show = await reload(db_session, Show, test_show.id)
    assert show.status == ShowStatus.STARTED


@pytest.mark.asyncio
async def test_recompute_counters_rebuilds_from_seats(db_session, test_show):
    # Simulate drift: seat rows changed without counter maintenance
    await db_session.execute(
        update(ShowSeat)
        .where(ShowSeat.show_id == test_show.id, ShowSeat.seat_id.in_(["A1", "A2"]))
        .values(status=SeatStatus.BOOKED)
    )
    await db_session.execute(
        update(ShowSeat)
        .where(ShowSeat.show_id == test_show.id, ShowSeat.seat_id == "A3")
        .values(status=SeatStatus.UNAVAILABLE)
    )

    show = await seat_inventory.recompute_counters(db_session, test_show.id)
    assert show.total_seats == 20
    assert show.booked_seats == 2
    assert show.available_seats == 17
    await assert_counters_balance(db_session, test_show.id)


@pytest.mark.asyncio
async def test_release_orphaned_holds(db_session, test_show):
    """BLOCKED seats without a live booking are released after the grace period."""
    await seat_inventory.reserve(db_session, test_show.id, ["A1", "A2"], booking_id=999)
    await db_session.commit()

    # Too recent: left alone
    assert await seat_inventory.release_orphaned_holds(db_session, grace_seconds=3600) == 0

    released = await seat_inventory.release_orphaned_holds(db_session, grace_seconds=0)
    assert released == 2

    statuses = await seat_statuses(db_session, test_show.id)
    assert statuses["A1"] == SeatStatus.AVAILABLE
    show = await assert_counters_balance(db_session, test_show.id)
    assert show.available_seats == 20


@pytest.mark.asyncio
async def test_get_seat_map_ordered(db_session, test_show):
    seats = await seat_inventory.get_seat_map(db_session, test_show.id)
    assert len(seats) == 20
    assert [s.seat_id for s in seats[:3]] == ["A1", "A2", "A3"]
    assert seats[10].seat_id == "B1"


def test_popularity_score_formula():
    show = Show(view_count=10, booking_attempts=5, booked_seats=5, total_seats=20)
    assert seat_inventory.calculate_popularity_score(show) == pytest.approx(0.3 * 10 + 0.3 * 5 + 0.4 * 100 * 0.25)

    empty = Show(view_count=0, booking_attempts=0, booked_seats=0, total_seats=0)
    assert seat_inventory.calculate_popularity_score(empty) == 0.0


def test_derive_occupancy_status():
    assert seat_inventory.derive_occupancy_status(0, 20) == ShowStatus.SOLDOUT
    assert seat_inventory.derive_occupancy_status(2, 20) == ShowStatus.FEWSEATSLEFT
    assert seat_inventory.derive_occupancy_status(3, 20) == ShowStatus.OPEN
