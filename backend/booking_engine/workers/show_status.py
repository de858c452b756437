"""
Moves shows through STARTED and FINISHED as the clock passes their times.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_engine.core.config import get_settings
from booking_engine.services import show_service
from booking_engine.services.cache_service import invalidate_show_cache
from booking_engine.workers.periodic import PeriodicTask


class ShowStatusScheduler(PeriodicTask):
    name = "show_status"

    def __init__(self, interval_seconds: Optional[float] = None, session_factory: Optional[async_sessionmaker] = None):
        super().__init__(
            interval_seconds if interval_seconds is not None else get_settings().SHOW_STATUS_INTERVAL_SECONDS,
            session_factory,
        )

    async def execute(self, db: AsyncSession) -> dict[str, int]:
        return await show_service.update_show_statuses(db)

    async def after_commit(self, result: dict[str, int]) -> None:
        if any(result.values()):
            await invalidate_show_cache()
