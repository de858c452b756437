"""
Concurrent hold attempts on the same seats.

Each attempt runs on its own session, the way parallel API requests do.
"""

import asyncio

import pytest
from sqlalchemy import func, select

from booking_engine.core.exceptions import ConflictError
from booking_engine.models import Booking, SeatStatus, Show, ShowSeat
from booking_engine.services import booking_service

from conftest import reload


async def attempt(session_factory, user_id: str, show_id: int, seat_ids: list[str]) -> bool:
    async with session_factory() as session:
        try:
            await booking_service.initiate_booking(session, user_id, show_id, seat_ids)
            await session.commit()
            return True
        except ConflictError:
            await session.rollback()
            return False


@pytest.mark.asyncio
async def test_only_one_hold_wins(db_session, session_factory, test_show):
    await db_session.commit()

    results = await asyncio.gather(*[
        attempt(session_factory, f"user-{n}", test_show.id, ["A5"])
        for n in range(10)
    ])

    assert results.count(True) == 1

    bookings = (await db_session.execute(select(func.count()).select_from(Booking))).scalar_one()
    assert bookings == 1
    show = await reload(db_session, Show, test_show.id)
    assert show.available_seats == 19
    await db_session.commit()


@pytest.mark.asyncio
async def test_overlapping_requests_never_double_sell(db_session, session_factory, test_show):
    await db_session.commit()

    requests = [["A1", "A2"], ["A2", "A3"], ["A3", "A4"], ["A4", "A5"], ["A6"]]
    results = await asyncio.gather(*[
        attempt(session_factory, f"user-{n}", test_show.id, seats)
        for n, seats in enumerate(requests)
    ])

    held = (
        await db_session.execute(
            select(ShowSeat.seat_id, ShowSeat.booking_id).where(
                ShowSeat.show_id == test_show.id, ShowSeat.status == SeatStatus.BLOCKED
            )
        )
    ).all()
    bookings = (await db_session.execute(select(Booking))).scalars().all()

    # Every held seat belongs to exactly one booking, and each booking holds all it asked for
    assert len(bookings) == results.count(True)
    assert sum(len(b.seats) for b in bookings) == len(held)
    by_booking = {b.id: {s["seat_id"] for s in b.seats} for b in bookings}
    for seat_id, booking_id in held:
        assert seat_id in by_booking[booking_id]

    show = await reload(db_session, Show, test_show.id)
    assert show.available_seats == 20 - len(held)
    await db_session.commit()
