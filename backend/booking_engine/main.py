"""
Show Booking Engine - Main Application Entry Point

Seat inventory and booking lifecycle service:
- Concurrency-safe seat holds with conditional updates
- Booking state machine with payment verification, cancellation and refunds
- Background sweeps for abandoned holds and show status
- Redis caching of show listings, structured logging, Prometheus metrics
"""

from contextlib import asynccontextmanager
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from booking_engine.core.config import get_settings
from booking_engine.core.exceptions import register_exception_handlers
from booking_engine.core.logging import setup_logging, get_logger
from booking_engine.core.metrics import metrics_endpoint
from booking_engine.api.router import api_router
from booking_engine.api.middleware import RequestLoggingMiddleware
from booking_engine.db.session import init_db
from booking_engine.services.cache_service import get_redis, close_redis, get_cache_stats
from booking_engine.workers.reservation_expiry import ReservationExpiryScheduler
from booking_engine.workers.show_status import ShowStatusScheduler

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle: startup and shutdown hooks."""
    setup_logging()
    logger = get_logger(__name__)

    logger.info(
        "application_starting",
        app=settings.APP_NAME,
        version=settings.APP_VERSION,
        environment=settings.ENVIRONMENT,
    )

    await init_db()

    redis_client = await get_redis()
    if redis_client:
        logger.info("redis_ready")
    else:
        logger.warning("redis_unavailable", message="Running without cache")

    schedulers = []
    if settings.SCHEDULERS_ENABLED:
        schedulers = [ReservationExpiryScheduler(), ShowStatusScheduler()]
        for scheduler in schedulers:
            scheduler.start()
    app.state.schedulers = schedulers

    yield

    for scheduler in schedulers:
        await scheduler.stop()
    await close_redis()
    logger.info("application_shutdown")


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Seat inventory and booking lifecycle engine for theater shows",
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Restrict in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_middleware(RequestLoggingMiddleware)
register_exception_handlers(app)

app.include_router(api_router)


@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for Docker and load balancers."""
    cache_stats = await get_cache_stats()
    return {
        "status": "healthy",
        "version": settings.APP_VERSION,
        "environment": settings.ENVIRONMENT,
        "schedulers": [
            {"name": s.name, "running": s.running} for s in getattr(app.state, "schedulers", [])
        ],
        "cache": cache_stats,
    }


@app.get("/metrics", include_in_schema=False)
async def metrics():
    return metrics_endpoint()


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"Welcome to {settings.APP_NAME}",
        "version": settings.APP_VERSION,
        "docs": "/docs",
    }
