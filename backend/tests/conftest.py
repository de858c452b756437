"""
Pytest fixtures for test database, client, and authentication.

Each test gets its own SQLite file database (aiosqlite) so the suite runs
without PostgreSQL or Redis. Transactions start with BEGIN IMMEDIATE so that
concurrent sessions queue on the database lock instead of failing on a
read-to-write lock upgrade.
"""

import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./booking_engine_test.db")
os.environ.setdefault("REDIS_ENABLED", "false")
os.environ.setdefault("SCHEDULERS_ENABLED", "false")
os.environ.setdefault("ENVIRONMENT", "test")

from datetime import datetime, timedelta
from typing import AsyncGenerator, Optional

import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from booking_engine.main import app
from booking_engine.db.base import Base, utcnow
from booking_engine.db.session import get_db
from booking_engine.core.security import create_access_token
from booking_engine.models import Booking, Coupon, CouponStatus, DiscountType, Movie, Screen, Show, Theater
from booking_engine.schemas.show import ShowCreate
from booking_engine.services import show_service
from booking_engine.services.interfaces import SignaturePaymentGateway

USER_ID = "user-1"
OTHER_USER_ID = "user-2"


def build_layout() -> list[dict]:
    """A1 GOLD, A2 SILVER, A3-A10 GOLD, B1-B10 SILVER and one inactive seat."""
    layout = [
        {"seat_id": f"A{n}", "row": 0, "column": n - 1, "category": "SILVER" if n == 2 else "GOLD", "active": True}
        for n in range(1, 11)
    ]
    layout += [
        {"seat_id": f"B{n}", "row": 1, "column": n - 1, "category": "SILVER", "active": True}
        for n in range(1, 11)
    ]
    layout.append({"seat_id": "B11", "row": 1, "column": 10, "category": "SILVER", "active": False})
    return layout


async def reload(session: AsyncSession, model, ident):
    """Read the current row, bypassing the session's identity map."""
    return await session.get(model, ident, populate_existing=True)


@pytest_asyncio.fixture(scope="function")
async def test_engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'booking.db'}",
        connect_args={"timeout": 30},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin_immediate(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def session_factory(test_engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(test_engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client that overrides the DB dependency with the test session."""

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def auth_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': USER_ID})}"}


@pytest_asyncio.fixture
async def other_auth_headers() -> dict:
    return {"Authorization": f"Bearer {create_access_token(data={'sub': OTHER_USER_ID})}"}


@pytest_asyncio.fixture
async def catalog(db_session: AsyncSession) -> dict:
    """Movie, theater and a screen with 20 active seats."""
    movie = Movie(title="Interstellar", duration_minutes=150)
    theater = Theater(name="PVR Phoenix", city="Mumbai")
    db_session.add_all([movie, theater])
    await db_session.flush()

    screen = Screen(theater_id=theater.id, screen_number=1, name="Audi 1", layout=build_layout())
    db_session.add(screen)
    await db_session.commit()
    return {"movie": movie, "theater": theater, "screen": screen}


async def schedule_show(
    db_session: AsyncSession,
    catalog: dict,
    starts_in: timedelta = timedelta(days=3),
    experience: Optional[str] = "IMAX",
) -> Show:
    show = await show_service.create_show(
        db_session,
        ShowCreate(
            movie_id=catalog["movie"].id,
            theater_id=catalog["theater"].id,
            screen_id=catalog["screen"].id,
            show_time=utcnow() + starts_in,
            language="English",
            experience=experience,
            pricing={"GOLD": {"base_price": 200}, "SILVER": {"base_price": 150}},
        ),
    )
    await db_session.commit()
    return show


@pytest_asyncio.fixture
async def test_show(db_session: AsyncSession, catalog: dict) -> Show:
    return await schedule_show(db_session, catalog)


@pytest_asyncio.fixture
async def gateway() -> SignaturePaymentGateway:
    return SignaturePaymentGateway()


def make_coupon(code: str = "SAVE10", **overrides) -> Coupon:
    now = utcnow()
    fields = dict(
        code=code,
        discount_type=DiscountType.PERCENTAGE,
        value=10,
        min_booking_amount=100,
        max_discount=50,
        valid_from=now - timedelta(days=1),
        valid_until=now + timedelta(days=30),
        usage_count=0,
        first_booking_only=False,
        status=CouponStatus.ACTIVE,
    )
    fields.update(overrides)
    return Coupon(**fields)


def signed_payment(gateway: SignaturePaymentGateway, booking: Booking, order_ref: str = None) -> dict:
    order_ref = order_ref or f"order_{booking.booking_number}"
    payment_ref = f"pay_{booking.booking_number}"
    return {
        "order_ref": order_ref,
        "payment_ref": payment_ref,
        "signature": gateway.sign(order_ref, payment_ref),
    }


def hours_from_now(hours: float) -> datetime:
    return utcnow() + timedelta(hours=hours)
