"""
Driver account operations: availability, location, KYC and earnings reads.
"""
import logging
from datetime import datetime, time, timezone
from decimal import Decimal
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from miniola.config import get_settings
from miniola.exceptions import InvalidStateTransition, Unauthorized
from miniola.models.driver import Driver
from miniola.models.ride import Ride
from miniola.services.matching import sync_driver_index

logger = logging.getLogger(__name__)
settings = get_settings()


async def set_availability(
    db: AsyncSession,
    redis: aioredis.Redis,
    driver: Driver,
    is_available: Optional[bool] = None,
    lat: Optional[float] = None,
    lng: Optional[float] = None,
    address: Optional[str] = None,
) -> Driver:
    """
    Go online/offline. `is_available=None` toggles the current flag.
    Only KYC-approved drivers may go online; a driver on a ride stays busy.
    """
    target = (not driver.is_available) if is_available is None else is_available
    if target and driver.kyc_status != "approved":
        raise Unauthorized("KYC verification required to go online")
    if target and driver.current_ride_id is not None:
        raise InvalidStateTransition("Finish the current ride before going online")

    if target != driver.is_available:
        driver.toggle_availability()
    if lat is not None and lng is not None:
        driver.update_location(lat, lng, address)

    await db.commit()
    await sync_driver_index(redis, driver)
    logger.info("Driver %s is now %s", driver.id, "online" if driver.is_available else "offline")
    return driver


async def update_location(
    db: AsyncSession,
    redis: aioredis.Redis,
    driver: Driver,
    lat: float,
    lng: float,
    address: Optional[str] = None,
) -> Driver:
    driver.update_location(lat, lng, address)
    await db.commit()
    await sync_driver_index(redis, driver)
    return driver


async def submit_kyc_documents(db: AsyncSession, redis: aioredis.Redis, driver: Driver, documents: dict) -> Driver:
    """Store document references; review restarts unless auto-approval is on."""
    merged = {**(driver.kyc_documents or {}), **{k: v for k, v in documents.items() if v}}
    driver.kyc_documents = merged
    driver.kyc_status = "approved" if settings.auto_approve_kyc else "pending"
    if driver.kyc_status != "approved":
        driver.is_available = False

    await db.commit()
    await sync_driver_index(redis, driver)
    logger.info("Driver %s submitted KYC documents (status=%s)", driver.id, driver.kyc_status)
    return driver


async def get_earnings(db: AsyncSession, driver: Driver) -> dict:
    start_of_day = datetime.combine(datetime.now(timezone.utc).date(), time.min, tzinfo=timezone.utc)

    recent = await db.execute(
        select(Ride)
        .where(Ride.driver_id == driver.id, Ride.status == "completed")
        .order_by(Ride.end_time.desc())
        .limit(10)
    )
    today = await db.execute(
        select(func.count(), func.coalesce(func.sum(Ride.final_fare), 0)).where(
            Ride.driver_id == driver.id,
            Ride.status == "completed",
            Ride.end_time >= start_of_day,
        )
    )
    today_rides, today_earnings = today.one()

    return {
        "driver": {
            "name": driver.name,
            "rating": driver.rating,
            "level": driver.level,
            "badges": driver.badges,
            "vehicle_type": driver.vehicle_type,
            "vehicle_number": driver.vehicle_number,
        },
        "total_earnings": driver.total_earnings,
        "total_rides": driver.total_rides,
        "wallet_balance": driver.wallet_balance,
        "today_earnings": Decimal(str(today_earnings)),
        "today_rides": today_rides,
        "recent_rides": list(recent.scalars()),
    }


async def get_stats(db: AsyncSession, driver: Driver) -> dict:
    cancelled_rides = await db.scalar(
        select(func.count())
        .select_from(Ride)
        .where(Ride.driver_id == driver.id, Ride.status == "cancelled", Ride.cancelled_by == "driver")
    )
    return {
        "total_rides": driver.total_rides,
        "total_earnings": driver.total_earnings,
        "rating": driver.rating,
        "total_ratings": driver.total_ratings,
        "acceptance_rate": driver.acceptance_rate,
        "cancelled_rides": cancelled_rides or 0,
        "level": driver.level,
        "experience": driver.experience,
        "badges": driver.badges,
        "kyc_status": driver.kyc_status,
    }
