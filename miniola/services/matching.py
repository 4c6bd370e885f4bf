"""
Driver–rider matching engine.

Flow:
  1. GEOSEARCH Redis for the nearest drivers of the requested vehicle type
  2. Re-check each candidate against Postgres (ground truth): available,
     KYC-approved, not on a ride
  3. Claim ride + driver with conditional UPDATEs in one transaction
     (prevents double-assignment without row locks held across awaits)
  4. No candidates at all → the ride is cancelled by the system
"""
import logging

import redis.asyncio as aioredis
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from miniola.config import get_settings
from miniola.models.driver import Driver
from miniola.models.ride import Ride
from miniola.redis_client import geo_add_driver, geo_nearby_drivers, geo_remove_driver

logger = logging.getLogger(__name__)
settings = get_settings()

NO_DRIVERS_REASON = "No drivers available"


async def find_nearby_drivers(
    db: AsyncSession,
    redis: aioredis.Redis,
    lat: float,
    lng: float,
    ride_type: str,
) -> list[Driver]:
    """
    Eligible drivers within the matching radius, nearest first,
    capped at `matching_max_candidates`.
    """
    driver_ids = await geo_nearby_drivers(
        redis,
        ride_type,
        lat,
        lng,
        radius_km=settings.matching_radius_km,
        count=settings.matching_max_candidates,
    )
    if not driver_ids:
        return []

    result = await db.execute(
        select(Driver).where(
            Driver.id.in_(driver_ids),
            Driver.vehicle_type == ride_type,
            Driver.is_available.is_(True),
            Driver.kyc_status == "approved",
            Driver.current_ride_id.is_(None),
            Driver.deleted_at.is_(None),
        )
    )
    eligible = {d.id: d for d in result.scalars()}

    # Stale GEO entries (offline / busy drivers) are dropped lazily.
    for driver_id in driver_ids:
        if driver_id not in eligible:
            await geo_remove_driver(redis, ride_type, driver_id)

    # keep GEOSEARCH's distance ordering
    return [eligible[i] for i in driver_ids if i in eligible]


async def assign_driver(db: AsyncSession, ride_id: str, driver_id: str) -> bool:
    """
    Claim the ride for the driver. Both writes are conditional:
      - ride:   status = requested AND driver_id IS NULL
      - driver: is_available AND current_ride_id IS NULL
    If the driver claim loses, the ride claim is undone in the same
    transaction. The caller commits.
    """
    ride_claim = await db.execute(
        update(Ride)
        .where(Ride.id == ride_id, Ride.status == "requested", Ride.driver_id.is_(None))
        .values(status="accepted", driver_id=driver_id)
        .execution_options(synchronize_session=False)
    )
    if ride_claim.rowcount != 1:
        return False

    driver_claim = await db.execute(
        update(Driver)
        .where(
            Driver.id == driver_id,
            Driver.is_available.is_(True),
            Driver.current_ride_id.is_(None),
            Driver.deleted_at.is_(None),
        )
        .values(is_available=False, current_ride_id=ride_id)
        .execution_options(synchronize_session=False)
    )
    if driver_claim.rowcount != 1:
        await db.execute(
            update(Ride)
            .where(Ride.id == ride_id, Ride.driver_id == driver_id)
            .values(status="requested", driver_id=None)
            .execution_options(synchronize_session=False)
        )
        return False

    return True


async def match_ride(
    db: AsyncSession,
    redis: aioredis.Redis,
    ride: Ride,
) -> tuple[Driver | None, int]:
    """
    Auto-assign the nearest eligible driver to a freshly requested ride.
    Returns (assigned driver or None, number of candidates found).
    """
    candidates = await find_nearby_drivers(db, redis, ride.pickup_lat, ride.pickup_lng, ride.ride_type)

    if not candidates:
        ride.status = "cancelled"
        ride.cancellation_reason = NO_DRIVERS_REASON
        ride.cancelled_by = "system"
        await db.commit()
        logger.warning("Ride %s cancelled (no driver found)", ride.id)
        return None, 0

    for driver in candidates:
        if await assign_driver(db, ride.id, driver.id):
            await db.commit()
            await db.refresh(ride)
            await db.refresh(driver)
            await geo_remove_driver(redis, driver.vehicle_type, driver.id)
            logger.info("Matched ride=%s to driver=%s", ride.id, driver.id)
            return driver, len(candidates)

    # Every claim lost a race; the ride stays open for explicit acceptance.
    await db.commit()
    await db.refresh(ride)
    logger.info("Ride %s left unassigned after %d contested candidates", ride.id, len(candidates))
    return None, len(candidates)


async def sync_driver_index(redis: aioredis.Redis, driver: Driver) -> None:
    """Mirror a driver's availability and position into the GEO index."""
    if (
        driver.is_available
        and driver.kyc_status == "approved"
        and driver.current_ride_id is None
        and driver.location_lat is not None
        and driver.location_lng is not None
    ):
        await geo_add_driver(redis, driver.vehicle_type, driver.id, driver.location_lat, driver.location_lng)
    else:
        await geo_remove_driver(redis, driver.vehicle_type, driver.id)
