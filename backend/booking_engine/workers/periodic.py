"""
Fixed-interval background task runner.

Each task runs in its own asyncio task started from the application
lifespan. A run opens its own session and commits on success; errors are
logged and the next tick tries again. A run never overlaps the previous one.
"""

import asyncio
from typing import Any, Optional

import structlog
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_engine.core.logging import get_logger
from booking_engine.core.metrics import record_scheduler_run, scheduler_in_progress
from booking_engine.db.session import SessionLocal

logger = get_logger(__name__)


class PeriodicTask:
    name = "periodic"

    def __init__(self, interval_seconds: float, session_factory: Optional[async_sessionmaker] = None):
        self.interval_seconds = interval_seconds
        self.session_factory = session_factory or SessionLocal
        self._task: Optional[asyncio.Task] = None
        self._in_progress = False

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)
        logger.info("scheduler_started", task=self.name, interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("scheduler_stopped", task=self.name)

    async def _loop(self) -> None:
        while True:
            await self.run_once()
            await asyncio.sleep(self.interval_seconds)

    async def run_once(self) -> Optional[Any]:
        """One tick. Returns the tick's result, or None if skipped or failed."""
        if self._in_progress:
            record_scheduler_run(self.name, "skipped")
            logger.warning("scheduler_run_skipped", task=self.name, reason="previous_run_in_progress")
            return None

        self._in_progress = True
        scheduler_in_progress.labels(task=self.name).set(1)
        try:
            with structlog.contextvars.bound_contextvars(task=self.name):
                async with self.session_factory() as db:
                    result = await self.execute(db)
                    await db.commit()
                await self.after_commit(result)
            record_scheduler_run(self.name, "success")
            return result
        except Exception:
            record_scheduler_run(self.name, "error")
            logger.exception("scheduler_run_failed", task=self.name)
            return None
        finally:
            self._in_progress = False
            scheduler_in_progress.labels(task=self.name).set(0)

    async def execute(self, db: AsyncSession) -> Any:
        raise NotImplementedError

    async def after_commit(self, result: Any) -> None:
        pass
