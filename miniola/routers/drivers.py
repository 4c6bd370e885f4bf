"""
Drivers router — availability, location and KYC documents, plus the
driver side of the ride lifecycle (accept / reject / arrive / start / complete).
"""
import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from miniola.database import get_db
from miniola.middleware.auth import get_current_driver
from miniola.models.driver import Driver
from miniola.redis_client import get_redis
from miniola.routers.rides import ride_view
from miniola.schemas.schemas import (
    AvailabilityRequest,
    CompleteRideRequest,
    DriverStatsResponse,
    DriverStatusResponse,
    EarningsResponse,
    KycDocumentsRequest,
    LocationUpdateRequest,
    RejectRideRequest,
    RideResponse,
    StartRideRequest,
)
from miniola.services import drivers, rides

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/drivers", tags=["Drivers"])


# ---------------------------------------------------------------------------
# Account
# ---------------------------------------------------------------------------

@router.put("/availability", response_model=DriverStatusResponse)
async def set_availability(
    payload: AvailabilityRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver: Driver = Depends(get_current_driver),
):
    driver = await drivers.set_availability(
        db, redis, driver, payload.is_available, payload.lat, payload.lng, payload.address
    )
    return DriverStatusResponse.model_validate(driver)


@router.put("/location", response_model=DriverStatusResponse)
async def update_location(
    payload: LocationUpdateRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver: Driver = Depends(get_current_driver),
):
    driver = await drivers.update_location(db, redis, driver, payload.lat, payload.lng, payload.address)
    return DriverStatusResponse.model_validate(driver)


@router.get("/documents", response_model=DriverStatusResponse)
async def get_documents(driver: Driver = Depends(get_current_driver)):
    return DriverStatusResponse.model_validate(driver)


@router.put("/documents", response_model=DriverStatusResponse)
async def submit_documents(
    payload: KycDocumentsRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver: Driver = Depends(get_current_driver),
):
    driver = await drivers.submit_kyc_documents(db, redis, driver, payload.model_dump(exclude_none=True))
    return DriverStatusResponse.model_validate(driver)


@router.get("/earnings", response_model=EarningsResponse)
async def get_earnings(
    db: AsyncSession = Depends(get_db),
    driver: Driver = Depends(get_current_driver),
):
    data = await drivers.get_earnings(db, driver)
    data["recent_rides"] = [ride_view(r, driver) for r in data["recent_rides"]]
    return EarningsResponse(**data)


@router.get("/stats", response_model=DriverStatsResponse)
async def get_stats(
    db: AsyncSession = Depends(get_db),
    driver: Driver = Depends(get_current_driver),
):
    return DriverStatsResponse(**await drivers.get_stats(db, driver))


# ---------------------------------------------------------------------------
# Rides
# ---------------------------------------------------------------------------

@router.get("/rides/active", response_model=RideResponse)
async def get_active_ride(
    db: AsyncSession = Depends(get_db),
    driver: Driver = Depends(get_current_driver),
):
    ride = await rides.get_driver_active_ride(db, driver)
    return ride_view(ride, driver)


@router.put("/rides/{ride_id}/accept", response_model=RideResponse)
async def accept_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver: Driver = Depends(get_current_driver),
):
    ride = await rides.accept_ride(db, redis, driver, ride_id)
    return ride_view(ride, driver)


@router.put("/rides/{ride_id}/reject", response_model=RideResponse)
async def reject_ride(
    ride_id: str,
    payload: RejectRideRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver: Driver = Depends(get_current_driver),
):
    ride = await rides.reject_ride(db, redis, driver, ride_id, payload.reason)
    return ride_view(ride, driver)


@router.put("/rides/{ride_id}/arrive", response_model=RideResponse)
async def mark_arrived(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    driver: Driver = Depends(get_current_driver),
):
    ride = await rides.mark_arrived(db, driver, ride_id)
    return ride_view(ride, driver)


@router.put("/rides/{ride_id}/start", response_model=RideResponse)
async def start_ride(
    ride_id: str,
    payload: StartRideRequest,
    db: AsyncSession = Depends(get_db),
    driver: Driver = Depends(get_current_driver),
):
    ride = await rides.start_ride(db, driver, ride_id, payload.otp)
    return ride_view(ride, driver)


@router.put("/rides/{ride_id}/complete", response_model=RideResponse)
async def complete_ride(
    ride_id: str,
    payload: CompleteRideRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    driver: Driver = Depends(get_current_driver),
):
    ride = await rides.complete_ride(db, redis, driver, ride_id, payload.final_fare)
    return ride_view(ride, driver)
