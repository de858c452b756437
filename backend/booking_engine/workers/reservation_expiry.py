"""
Reclaims seats abandoned mid-checkout.

Every tick:
  1. Bookings still INITIATED / PAYMENT_PENDING after the hold timeout are
     moved to EXPIRED and their seats released
  2. BLOCKED seats without a live owning booking are released once older
     than the grace period, and the affected shows are recounted
"""

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from booking_engine.core.config import get_settings
from booking_engine.core.logging import get_logger
from booking_engine.services import booking_service, seat_inventory
from booking_engine.services.cache_service import invalidate_show_cache
from booking_engine.workers.periodic import PeriodicTask

logger = get_logger(__name__)


@dataclass
class SweepResult:
    expired_bookings: int
    orphaned_seats: int


class ReservationExpiryScheduler(PeriodicTask):
    name = "reservation_expiry"

    def __init__(
        self,
        interval_seconds: Optional[float] = None,
        hold_timeout_seconds: Optional[int] = None,
        orphan_grace_seconds: Optional[int] = None,
        session_factory: Optional[async_sessionmaker] = None,
    ):
        settings = get_settings()
        super().__init__(
            interval_seconds if interval_seconds is not None else settings.RESERVATION_SWEEP_INTERVAL_SECONDS,
            session_factory,
        )
        self.hold_timeout_seconds = (
            hold_timeout_seconds if hold_timeout_seconds is not None else settings.RESERVATION_HOLD_TIMEOUT_SECONDS
        )
        self.orphan_grace_seconds = (
            orphan_grace_seconds if orphan_grace_seconds is not None else settings.ORPHAN_HOLD_GRACE_SECONDS
        )

    async def execute(self, db: AsyncSession) -> SweepResult:
        expired = await booking_service.expire_stale_holds(db, timeout_seconds=self.hold_timeout_seconds)
        orphaned = await seat_inventory.release_orphaned_holds(db, self.orphan_grace_seconds)
        if expired or orphaned:
            logger.info("reservation_sweep_completed", expired_bookings=expired, orphaned_seats=orphaned)
        return SweepResult(expired_bookings=expired, orphaned_seats=orphaned)

    async def after_commit(self, result: SweepResult) -> None:
        if result.expired_bookings or result.orphaned_seats:
            await invalidate_show_cache()
