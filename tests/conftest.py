"""
Shared fixtures: an in-memory SQLite database, a mocked Redis and an HTTPX
client wired to the FastAPI app.
"""
import itertools
import os
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock

# Settings are read once on first import, so point them at SQLite first.
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ.setdefault("SECRET_KEY", "test-secret-key")
os.environ.setdefault("AUTO_APPROVE_KYC", "false")

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import miniola.models  # noqa: F401  (register mappers)
from miniola.database import Base, get_db
from miniola.main import app
from miniola.middleware.auth import create_access_token
from miniola.models.driver import Driver
from miniola.models.ride import Ride
from miniola.models.rider import Rider
from miniola.redis_client import get_redis
from miniola.services.accounts import hash_password

PASSWORD = "secret123"
# Connaught Place, New Delhi
PICKUP = (28.6315, 77.2167)
DROPOFF = (28.5355, 77.3910)

_seq = itertools.count(1)


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def redis():
    """GEO index stand-in; tests set `redis.geosearch.return_value` to the nearby ids."""
    mock_redis = AsyncMock()
    mock_redis.geosearch = AsyncMock(return_value=[])
    return mock_redis


@pytest_asyncio.fixture
async def client(session_factory, redis):
    async def override_get_db():
        async with session_factory() as session:
            yield session

    async def override_get_redis():
        return redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as c:
        yield c
    app.dependency_overrides.clear()


def auth_headers(account) -> dict:
    return {"Authorization": f"Bearer {create_access_token(account)}"}


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

async def make_rider(db: AsyncSession, **overrides) -> Rider:
    n = next(_seq)
    fields = {
        "name": f"Rider {n}",
        "email": f"rider{n}@example.com",
        "phone": f"9{n:09d}",
        "password_hash": hash_password(PASSWORD),
        "wallet_balance": Decimal("1000.00"),
    }
    fields.update(overrides)
    rider = Rider(**fields)
    db.add(rider)
    await db.commit()
    return rider


async def make_driver(db: AsyncSession, **overrides) -> Driver:
    """An approved, online driver parked at the default pickup point."""
    n = next(_seq)
    fields = {
        "name": f"Driver {n}",
        "email": f"driver{n}@example.com",
        "phone": f"8{n:09d}",
        "password_hash": hash_password(PASSWORD),
        "vehicle_type": "mini",
        "vehicle_number": f"DL01AB{n:04d}",
        "vehicle_model": "Maruti Swift",
        "vehicle_color": "White",
        "license_number": f"DL{n:011d}",
        "license_expiry": datetime.now(timezone.utc) + timedelta(days=365),
        "kyc_status": "approved",
        "is_available": True,
        "location_lat": PICKUP[0],
        "location_lng": PICKUP[1],
    }
    fields.update(overrides)
    driver = Driver(**fields)
    db.add(driver)
    await db.commit()
    return driver


async def make_ride(db: AsyncSession, rider: Rider, driver: Driver | None = None, **overrides) -> Ride:
    """A mini ride; pass `driver` and a status to place it mid-lifecycle."""
    fields = {
        "rider_id": rider.id,
        "driver_id": driver.id if driver else None,
        "ride_type": "mini",
        "pickup_lat": PICKUP[0],
        "pickup_lng": PICKUP[1],
        "pickup_address": "Connaught Place",
        "dropoff_lat": DROPOFF[0],
        "dropoff_lng": DROPOFF[1],
        "dropoff_address": "Noida Sector 18",
        "status": "accepted" if driver else "requested",
        "estimated_fare": Decimal("250.00"),
        "base_fare": Decimal("50.00"),
        "distance_fare": Decimal("150.00"),
        "time_fare": Decimal("50.00"),
        "distance_km": 12.5,
        "duration_estimated": 25,
        "otp": "4321",
    }
    fields.update(overrides)
    ride = Ride(**fields)
    db.add(ride)
    await db.flush()
    if driver is not None and fields["status"] in ("accepted", "driver-arrived", "in-progress"):
        driver.current_ride_id = ride.id
        driver.is_available = False
    await db.commit()
    return ride
