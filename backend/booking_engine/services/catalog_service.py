"""
Read access to the movie/theater catalog plus the movie statistics hook.

The catalog itself is managed elsewhere; this engine only reads screen
layouts and movie durations, and bumps movie statistics on confirmed sales.
"""

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from booking_engine.core.exceptions import NotFoundError
from booking_engine.core.logging import get_logger
from booking_engine.models.catalog import Movie, Screen, Theater

logger = get_logger(__name__)

# Weight kept from the previous score when a sale is recorded
MOVIE_SCORE_DECAY = 0.9
MOVIE_SALE_SIGNAL = 10.0


async def get_movie(db: AsyncSession, movie_id: int) -> Movie:
    movie = await db.get(Movie, movie_id)
    if not movie:
        raise NotFoundError(f"Movie {movie_id} not found")
    return movie


async def get_theater(db: AsyncSession, theater_id: int) -> Theater:
    theater = await db.get(Theater, theater_id)
    if not theater:
        raise NotFoundError(f"Theater {theater_id} not found")
    return theater


async def get_active_layout(db: AsyncSession, theater_id: int, screen_id: int) -> list[dict]:
    """Seats of the screen that can be sold; gaps and inactive seats are dropped."""
    result = await db.execute(
        select(Screen).where(Screen.id == screen_id, Screen.theater_id == theater_id)
    )
    screen = result.scalar_one_or_none()
    if not screen:
        raise NotFoundError(f"Screen {screen_id} not found in theater {theater_id}")

    return [seat for seat in screen.layout or [] if seat.get("seat_id") and seat.get("active", True)]


async def record_movie_sale(db: AsyncSession, movie_id: int, amount: float) -> None:
    """Count one confirmed booking towards the movie's statistics."""
    await db.execute(
        update(Movie)
        .where(Movie.id == movie_id)
        .values(
            total_bookings=Movie.total_bookings + 1,
            revenue=Movie.revenue + amount,
            popularity_score=Movie.popularity_score * MOVIE_SCORE_DECAY
            + (1 - MOVIE_SCORE_DECAY) * MOVIE_SALE_SIGNAL,
        )
        .execution_options(synchronize_session=False)
    )
    logger.info("movie_sale_recorded", movie_id=movie_id, amount=amount)
