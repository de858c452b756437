"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from booking_engine.api.routes import shows, bookings, coupons, analytics

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(shows.router)
api_router.include_router(bookings.router)
api_router.include_router(coupons.router)
api_router.include_router(analytics.router)
