"""
Popularity and statistics bookkeeping for shows and movies.

Counters are bumped with in-database increments; the score is then derived
from the freshly read row so concurrent views never lose updates.
"""

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.exceptions import NotFoundError
from booking_engine.core.logging import get_logger
from booking_engine.models.show import Show
from booking_engine.services import catalog_service
from booking_engine.services.seat_inventory import calculate_popularity_score

logger = get_logger(__name__)


async def refresh_show_score(db: AsyncSession, show_id: int) -> Show:
    show = await db.get(Show, show_id, populate_existing=True)
    if not show:
        raise NotFoundError(f"Show {show_id} not found")

    score = round(calculate_popularity_score(show), 4)
    await db.execute(
        update(Show)
        .where(Show.id == show_id)
        .values(popularity_score=score)
        .execution_options(synchronize_session=False)
    )
    show.popularity_score = score
    return show


async def _bump(db: AsyncSession, show_id: int, **increments) -> Show:
    result = await db.execute(
        update(Show)
        .where(Show.id == show_id)
        .values({getattr(Show, name): getattr(Show, name) + delta for name, delta in increments.items()})
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        raise NotFoundError(f"Show {show_id} not found")
    return await refresh_show_score(db, show_id)


async def record_view(db: AsyncSession, show_id: int) -> Show:
    return await _bump(db, show_id, view_count=1)


async def record_booking_attempt(db: AsyncSession, show_id: int) -> Show:
    return await _bump(db, show_id, booking_attempts=1)


async def record_sale(db: AsyncSession, show_id: int, movie_id: int, amount: float) -> None:
    """Called exactly once per confirmed booking."""
    show = await refresh_show_score(db, show_id)
    await catalog_service.record_movie_sale(db, movie_id, amount)
    logger.info(
        "popularity_updated",
        show_id=show_id,
        movie_id=movie_id,
        show_score=show.popularity_score,
    )
