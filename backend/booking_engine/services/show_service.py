"""
Show scheduling, lookups and the time-driven status tick.
"""

from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.exceptions import NotFoundError, ValidationError
from booking_engine.core.logging import get_logger
from booking_engine.core.metrics import show_status_changes
from booking_engine.db.base import utcnow
from booking_engine.models.show import OCCUPANCY_STATUSES, Show, ShowSeat, ShowStatus
from booking_engine.schemas.show import PriceTierCreate, ShowCreate
from booking_engine.services import booking_service, catalog_service, popularity_service, seat_inventory

logger = get_logger(__name__)

TERMINAL_STATUSES = (ShowStatus.FINISHED, ShowStatus.CANCELLED)


def build_price_tier(tier: PriceTierCreate) -> dict:
    """Resolve percentage and flat charges into the final seat price."""
    charges = []
    final_price = tier.base_price
    for charge in tier.additional_charges:
        amount = tier.base_price * charge.amount / 100 if charge.is_percentage else charge.amount
        final_price += amount
        charges.append(charge.model_dump())
    return {
        "base_price": tier.base_price,
        "additional_charges": charges,
        "final_price": round(final_price, 2),
    }


async def create_show(db: AsyncSession, show_data: ShowCreate) -> Show:
    """Schedule a show with every active seat of the screen AVAILABLE."""
    if show_data.show_time <= utcnow():
        raise ValidationError("Show time must be in the future")

    movie = await catalog_service.get_movie(db, show_data.movie_id)
    await catalog_service.get_theater(db, show_data.theater_id)
    layout = await catalog_service.get_active_layout(db, show_data.theater_id, show_data.screen_id)
    if not layout:
        raise ValidationError("Screen has no active seats")

    missing = sorted({seat["category"] for seat in layout} - set(show_data.pricing))
    if missing:
        raise ValidationError(f"No price tier for seat categories: {', '.join(missing)}")

    show = Show(
        movie_id=movie.id,
        theater_id=show_data.theater_id,
        screen_id=show_data.screen_id,
        show_time=show_data.show_time,
        end_time=show_data.show_time + timedelta(minutes=movie.duration_minutes),
        language=show_data.language,
        experience=show_data.experience,
        pricing={category: build_price_tier(tier) for category, tier in show_data.pricing.items()},
        status=ShowStatus.OPEN,
    )
    db.add(show)
    await db.flush()

    db.add_all([
        ShowSeat(
            show_id=show.id,
            seat_id=seat["seat_id"],
            row=seat["row"],
            column=seat["column"],
            category=seat["category"],
        )
        for seat in layout
    ])
    await db.flush()
    show = await seat_inventory.recompute_counters(db, show.id)

    logger.info("show_created", show_id=show.id, movie_id=movie.id, seats=show.total_seats, show_time=show.show_time)
    return show


async def get_show(db: AsyncSession, show_id: int) -> Show:
    show = await db.get(Show, show_id, populate_existing=True)
    if not show:
        raise NotFoundError(f"Show {show_id} not found")
    return show


async def view_show(db: AsyncSession, show_id: int) -> Show:
    """Fetch a show for display, counting the view towards its popularity."""
    await get_show(db, show_id)
    return await popularity_service.record_view(db, show_id)


async def list_shows(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    movie_id: Optional[int] = None,
    theater_id: Optional[int] = None,
    upcoming_only: bool = True,
) -> tuple[list[Show], int]:
    """
    List shows with pagination.
    Uses the ix_shows_show_time index for the upcoming filter.
    """
    query = select(Show)
    if upcoming_only:
        query = query.where(Show.show_time >= utcnow(), Show.status != ShowStatus.CANCELLED)
    if movie_id is not None:
        query = query.where(Show.movie_id == movie_id)
    if theater_id is not None:
        query = query.where(Show.theater_id == theater_id)

    count_query = select(func.count()).select_from(query.subquery())
    total = (await db.execute(count_query)).scalar()

    result = await db.execute(
        query
        .order_by(Show.show_time.asc(), Show.id.asc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    return list(result.scalars().all()), total


async def update_show_statuses(db: AsyncSession, now: Optional[datetime] = None) -> dict[str, int]:
    """
    Advance shows by wall clock: STARTED at show_time, FINISHED at end_time.
    Occupancy never overrides these; FINISHED and CANCELLED are terminal.
    """
    now = now or utcnow()

    finished_ids = (
        await db.execute(
            select(Show.id).where(Show.status.not_in(TERMINAL_STATUSES), Show.end_time <= now)
        )
    ).scalars().all()
    if finished_ids:
        await db.execute(
            update(Show)
            .where(Show.id.in_(finished_ids), Show.status.not_in(TERMINAL_STATUSES))
            .values(status=ShowStatus.FINISHED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        for show_id in finished_ids:
            await booking_service.expire_tickets_for_show(db, show_id)

    started = await db.execute(
        update(Show)
        .where(
            Show.status.in_(OCCUPANCY_STATUSES),
            Show.show_time <= now,
            Show.end_time > now,
        )
        .values(status=ShowStatus.STARTED, updated_at=now)
        .execution_options(synchronize_session=False)
    )

    rederived = await seat_inventory.refresh_occupancy_statuses(db)

    changes = {
        ShowStatus.STARTED.value: started.rowcount,
        ShowStatus.FINISHED.value: len(finished_ids),
    }
    for status, count in changes.items():
        if count:
            show_status_changes.labels(status=status).inc(count)
    if started.rowcount or finished_ids or rederived:
        logger.info(
            "show_statuses_updated",
            started=started.rowcount,
            finished=len(finished_ids),
            occupancy_rederived=rederived,
        )
    return changes
