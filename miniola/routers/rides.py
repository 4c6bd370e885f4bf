"""
Rides router — fare estimate, ride request and rider-side ride management.
"""
import logging
from dataclasses import asdict
from typing import Optional

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from miniola.database import get_db
from miniola.exceptions import NotFound
from miniola.middleware.auth import get_current_account, get_current_rider
from miniola.models import Account
from miniola.models.driver import Driver
from miniola.models.ride import Ride
from miniola.models.rider import Rider
from miniola.redis_client import get_redis
from miniola.schemas.schemas import (
    CancelRideRequest,
    DriverBrief,
    FareEstimateRequest,
    FareEstimateResponse,
    RateRideRequest,
    RideCreateRequest,
    RideCreateResponse,
    RideListResponse,
    RideResponse,
    RideStatusEnum,
)
from miniola.services import rides
from miniola.services.pricing import calculate_eta_minutes, haversine_km

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/rides", tags=["Rides"])


def ride_view(ride: Ride, account: Account) -> RideResponse:
    """Only the rider gets to see the pickup OTP."""
    view = RideResponse.model_validate(ride)
    if account.id != ride.rider_id:
        view = view.model_copy(update={"otp": None})
    return view


def driver_brief(driver: Driver, ride: Ride) -> DriverBrief:
    brief = DriverBrief.model_validate(driver)
    if driver.location_lat is not None and driver.location_lng is not None:
        distance = haversine_km(driver.location_lat, driver.location_lng, ride.pickup_lat, ride.pickup_lng)
        brief.eta_minutes = calculate_eta_minutes(distance)
    return brief


@router.post("/estimate", response_model=FareEstimateResponse)
async def estimate_fare(
    payload: FareEstimateRequest,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
):
    fare = await rides.estimate_fare(
        db,
        payload.pickup_lat,
        payload.pickup_lng,
        payload.dropoff_lat,
        payload.dropoff_lng,
        payload.ride_type.value,
        payload.is_group_ride,
    )
    return FareEstimateResponse(**asdict(fare))


@router.post("", status_code=status.HTTP_201_CREATED, response_model=RideCreateResponse)
async def create_ride(
    payload: RideCreateRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    rider: Rider = Depends(get_current_rider),
):
    ride, nearby = await rides.request_ride(
        db,
        redis,
        rider,
        pickup_lat=payload.pickup_lat,
        pickup_lng=payload.pickup_lng,
        pickup_address=payload.pickup_address,
        dropoff_lat=payload.dropoff_lat,
        dropoff_lng=payload.dropoff_lng,
        dropoff_address=payload.dropoff_address,
        ride_type=payload.ride_type.value,
        is_group_ride=payload.is_group_ride,
        scheduled_time=payload.scheduled_time,
    )

    driver = await db.get(Driver, ride.driver_id) if ride.driver_id else None
    return RideCreateResponse(
        ride=ride_view(ride, rider),
        driver=driver_brief(driver, ride) if driver else None,
        nearby_drivers=nearby,
    )


@router.get("/active", response_model=RideCreateResponse)
async def get_active_ride(
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
):
    ride = await rides.get_active_ride(db, rider)
    if ride is None:
        raise NotFound("No active ride")
    driver = await db.get(Driver, ride.driver_id) if ride.driver_id else None
    return RideCreateResponse(
        ride=ride_view(ride, rider),
        driver=driver_brief(driver, ride) if driver else None,
        nearby_drivers=0,
    )


@router.get("/history", response_model=RideListResponse)
async def ride_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    status_filter: Optional[RideStatusEnum] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    items, total = await rides.ride_history(
        db, account, page, limit, status_filter.value if status_filter else None
    )
    return RideListResponse(
        items=[ride_view(r, account) for r in items], total=total, page=page, limit=limit
    )


@router.get("/{ride_id}", response_model=RideResponse)
async def get_ride(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    ride = await rides.get_ride(db, account, ride_id)
    return ride_view(ride, account)


@router.put("/{ride_id}/cancel", response_model=RideResponse)
async def cancel_ride(
    ride_id: str,
    payload: CancelRideRequest,
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    rider: Rider = Depends(get_current_rider),
):
    ride = await rides.cancel_ride(db, redis, rider, ride_id, payload.reason)
    return ride_view(ride, rider)


@router.post("/{ride_id}/rate", response_model=RideResponse)
async def rate_ride(
    ride_id: str,
    payload: RateRideRequest,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
):
    ride = await rides.rate_ride(db, rider, ride_id, payload.rating, payload.feedback)
    return ride_view(ride, rider)
