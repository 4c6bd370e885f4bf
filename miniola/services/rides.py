"""
Ride lifecycle.

    requested -> accepted -> driver-arrived -> in-progress -> completed

accepted may go straight to in-progress (OTP at pickup). Any state before
completed may go to cancelled.

Every operation validates actor and state before touching the database, so a
rejected call leaves no partial writes behind.
"""
import logging
import secrets
from decimal import Decimal
from typing import Optional

import redis.asyncio as aioredis
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from miniola.database import as_utc, utcnow
from miniola.exceptions import (
    InvalidStateTransition,
    NoDriversAvailable,
    NotFound,
    OTPMismatch,
    Unauthorized,
    ValidationFailure,
)
from miniola.models import Account
from miniola.models.driver import Driver
from miniola.models.ride import Ride
from miniola.models.rider import Rider
from miniola.services import matching
from miniola.services.pricing import (
    ACTIVE_RIDE_STATUSES,
    FareBreakdown,
    calculate_fare,
    current_surge,
    estimate_minutes,
    haversine_km,
    to_money,
)

logger = logging.getLogger(__name__)

TRANSITIONS: dict[str, set[str]] = {
    "requested": {"accepted", "cancelled"},
    "accepted": {"driver-arrived", "in-progress", "cancelled"},
    "driver-arrived": {"in-progress", "cancelled"},
    "in-progress": {"completed", "cancelled"},
    "completed": set(),
    "cancelled": set(),
}


def can_transition(current: str, target: str) -> bool:
    return target in TRANSITIONS.get(current, set())


def generate_otp() -> str:
    """Random 4-digit code, never starting with 0."""
    return str(1000 + secrets.randbelow(9000))


def _ensure_transition(ride: Ride, target: str, message: Optional[str] = None) -> None:
    if not can_transition(ride.status, target):
        raise InvalidStateTransition(message or f"Cannot move ride from {ride.status} to {target}")


async def _load_ride(db: AsyncSession, ride_id: str) -> Ride:
    ride = await db.get(Ride, ride_id)
    if ride is None:
        raise NotFound("Ride not found")
    return ride


def _ensure_assigned_driver(ride: Ride, driver: Driver) -> None:
    if ride.driver_id != driver.id:
        raise Unauthorized("Not authorized for this ride")


async def _release_driver(db: AsyncSession, driver_id: str, ride_id: str) -> Optional[Driver]:
    driver = await db.get(Driver, driver_id)
    if driver is not None and driver.current_ride_id in (ride_id, None):
        driver.free()
    return driver


# ---------------------------------------------------------------------------
# Pricing
# ---------------------------------------------------------------------------

async def estimate_fare(
    db: AsyncSession,
    pickup_lat: float,
    pickup_lng: float,
    dropoff_lat: float,
    dropoff_lng: float,
    ride_type: str,
    is_group_ride: bool = False,
) -> FareBreakdown:
    distance_km = haversine_km(pickup_lat, pickup_lng, dropoff_lat, dropoff_lng)
    surge = await current_surge(db)
    return calculate_fare(ride_type, distance_km, estimate_minutes(distance_km), surge, is_group_ride)


# ---------------------------------------------------------------------------
# Rider operations
# ---------------------------------------------------------------------------

async def get_active_ride(db: AsyncSession, rider: Rider) -> Optional[Ride]:
    result = await db.execute(
        select(Ride)
        .where(Ride.rider_id == rider.id, Ride.status.in_(ACTIVE_RIDE_STATUSES))
        .order_by(Ride.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def request_ride(
    db: AsyncSession,
    redis: aioredis.Redis,
    rider: Rider,
    *,
    pickup_lat: float,
    pickup_lng: float,
    pickup_address: str,
    dropoff_lat: float,
    dropoff_lng: float,
    dropoff_address: str,
    ride_type: str,
    is_group_ride: bool = False,
    scheduled_time=None,
) -> tuple[Ride, int]:
    """
    Price the trip, persist the ride with a fresh OTP and auto-assign the
    nearest eligible driver. Returns (ride, nearby driver count).

    Raises NoDriversAvailable after recording the ride as cancelled by the
    system when nobody is in range.
    """
    if await get_active_ride(db, rider) is not None:
        raise InvalidStateTransition("You already have an active ride")

    fare = await estimate_fare(
        db, pickup_lat, pickup_lng, dropoff_lat, dropoff_lng, ride_type, is_group_ride
    )

    ride = Ride(
        rider_id=rider.id,
        ride_type=ride_type,
        is_group_ride=is_group_ride,
        pickup_lat=pickup_lat,
        pickup_lng=pickup_lng,
        pickup_address=pickup_address,
        dropoff_lat=dropoff_lat,
        dropoff_lng=dropoff_lng,
        dropoff_address=dropoff_address,
        status="requested",
        estimated_fare=fare.estimated_fare,
        base_fare=fare.base_fare,
        distance_fare=fare.distance_fare,
        time_fare=fare.time_fare,
        surge_amount=fare.surge_amount,
        group_discount=fare.group_discount,
        surge_multiplier=Decimal(str(fare.surge_multiplier)),
        distance_km=fare.distance_km,
        duration_estimated=int(fare.estimated_minutes),
        otp=generate_otp(),
        scheduled_time=scheduled_time,
        payment_status="pending",
    )
    db.add(ride)
    await db.commit()
    logger.info("Ride %s requested by rider=%s (%s, %.2f km)", ride.id, rider.id, ride_type, fare.distance_km)

    driver, nearby = await matching.match_ride(db, redis, ride)
    if nearby == 0:
        raise NoDriversAvailable(
            "No drivers available nearby. Drivers need to be online with location enabled.",
            errors={"ride_id": ride.id},
        )
    return ride, nearby


async def get_ride(db: AsyncSession, account: Account, ride_id: str) -> Ride:
    ride = await _load_ride(db, ride_id)
    if account.id not in (ride.rider_id, ride.driver_id):
        raise Unauthorized("Not authorized to view this ride")
    return ride


async def ride_history(
    db: AsyncSession,
    account: Account,
    page: int = 1,
    limit: int = 10,
    status: Optional[str] = None,
) -> tuple[list[Ride], int]:
    owner_column = Ride.driver_id if isinstance(account, Driver) else Ride.rider_id
    conditions = [owner_column == account.id]
    if status:
        conditions.append(Ride.status == status)

    total = await db.scalar(select(func.count()).select_from(Ride).where(*conditions))
    result = await db.execute(
        select(Ride)
        .where(*conditions)
        .order_by(Ride.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars()), total or 0


async def cancel_ride(
    db: AsyncSession,
    redis: aioredis.Redis,
    rider: Rider,
    ride_id: str,
    reason: Optional[str] = None,
) -> Ride:
    ride = await _load_ride(db, ride_id)
    if ride.rider_id != rider.id:
        raise Unauthorized("Not authorized to cancel this ride")
    _ensure_transition(ride, "cancelled", f"Cannot cancel {ride.status} ride")

    # only cancel the ride as it was read; a driver may have claimed it since
    loaded_status, loaded_driver = ride.status, ride.driver_id
    result = await db.execute(
        update(Ride)
        .where(
            Ride.id == ride_id,
            Ride.status == loaded_status,
            Ride.driver_id.is_not_distinct_from(loaded_driver),
        )
        .values(
            status="cancelled",
            cancellation_reason=reason or "Cancelled by rider",
            cancelled_by="rider",
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        raise InvalidStateTransition("Ride changed while cancelling; try again")

    driver = None
    if loaded_driver:
        driver = await _release_driver(db, loaded_driver, ride_id)

    await db.commit()
    await db.refresh(ride)
    if driver is not None:
        await matching.sync_driver_index(redis, driver)
    logger.info("Ride %s cancelled by rider=%s", ride_id, rider.id)
    return ride


async def rate_ride(
    db: AsyncSession,
    rider: Rider,
    ride_id: str,
    rating: int,
    feedback: Optional[str] = None,
) -> Ride:
    if not 1 <= rating <= 5:
        raise ValidationFailure("Rating must be between 1 and 5")

    ride = await _load_ride(db, ride_id)
    if ride.status != "completed":
        raise InvalidStateTransition("Can only rate completed rides")
    if ride.rider_id != rider.id:
        raise Unauthorized("Only the rider can rate this ride")
    if ride.rider_rating is not None:
        raise InvalidStateTransition("Ride already rated")

    ride.rider_rating = rating
    ride.rider_feedback = feedback or ""

    if ride.driver_id:
        driver = await db.get(Driver, ride.driver_id)
        if driver is not None:
            driver.update_rating(rating)

    await db.commit()
    return ride


# ---------------------------------------------------------------------------
# Driver operations
# ---------------------------------------------------------------------------

async def get_driver_active_ride(db: AsyncSession, driver: Driver) -> Ride:
    if not driver.current_ride_id:
        raise NotFound("No active ride")
    return await _load_ride(db, driver.current_ride_id)


async def accept_ride(db: AsyncSession, redis: aioredis.Redis, driver: Driver, ride_id: str) -> Ride:
    """Explicit acceptance of a ride still in `requested`."""
    if not driver.is_available or driver.current_ride_id is not None:
        raise InvalidStateTransition("Driver must be available to accept rides")
    if driver.kyc_status != "approved":
        raise Unauthorized("KYC verification required to accept rides")

    ride = await _load_ride(db, ride_id)
    _ensure_transition(ride, "accepted", "Ride is not available for acceptance")

    if not await matching.assign_driver(db, ride.id, driver.id):
        await db.commit()
        raise InvalidStateTransition("Ride is not available for acceptance")

    await db.commit()
    await db.refresh(ride)
    await db.refresh(driver)
    await matching.sync_driver_index(redis, driver)
    logger.info("Ride %s accepted by driver=%s", ride.id, driver.id)
    return ride


async def reject_ride(
    db: AsyncSession,
    redis: aioredis.Redis,
    driver: Driver,
    ride_id: str,
    reason: Optional[str] = None,
) -> Ride:
    """The assigned driver declines; the ride is cancelled and the driver freed."""
    ride = await _load_ride(db, ride_id)
    _ensure_assigned_driver(ride, driver)
    _ensure_transition(ride, "cancelled", f"Cannot reject {ride.status} ride")

    ride.status = "cancelled"
    ride.cancellation_reason = reason or "Rejected by driver"
    ride.cancelled_by = "driver"
    if driver.current_ride_id in (ride.id, None):
        driver.free()

    await db.commit()
    await matching.sync_driver_index(redis, driver)
    logger.info("Ride %s rejected by driver=%s", ride.id, driver.id)
    return ride


async def mark_arrived(db: AsyncSession, driver: Driver, ride_id: str) -> Ride:
    ride = await _load_ride(db, ride_id)
    _ensure_assigned_driver(ride, driver)
    if ride.status != "accepted":
        raise InvalidStateTransition("Invalid ride status")

    ride.status = "driver-arrived"
    await db.commit()
    return ride


async def start_ride(db: AsyncSession, driver: Driver, ride_id: str, otp: str) -> Ride:
    ride = await _load_ride(db, ride_id)
    _ensure_assigned_driver(ride, driver)
    if ride.status not in ("accepted", "driver-arrived"):
        raise InvalidStateTransition("Cannot start ride with current status")
    if not ride.verify_otp(otp):
        raise OTPMismatch("Invalid OTP")

    ride.status = "in-progress"
    ride.start_time = utcnow()
    await db.commit()
    logger.info("Ride %s started by driver=%s", ride.id, driver.id)
    return ride


async def complete_ride(
    db: AsyncSession,
    redis: aioredis.Redis,
    driver: Driver,
    ride_id: str,
    final_fare: Optional[Decimal] = None,
) -> Ride:
    ride = await _load_ride(db, ride_id)
    _ensure_assigned_driver(ride, driver)
    if ride.status != "in-progress":
        raise InvalidStateTransition("Ride is not in progress")
    if final_fare is not None and final_fare < 0:
        raise ValidationFailure("Final fare must not be negative")

    end_time = utcnow()
    ride.status = "completed"
    ride.end_time = end_time
    ride.final_fare = to_money(final_fare) if final_fare is not None else ride.estimated_fare
    start_time = as_utc(ride.start_time)
    if start_time is not None:
        ride.duration_actual = int((end_time - start_time).total_seconds() // 60)

    driver.add_earnings(ride.final_fare)
    if driver.current_ride_id in (ride.id, None):
        driver.free()

    await db.execute(
        update(Rider)
        .where(Rider.id == ride.rider_id)
        .values(rides_completed=Rider.rides_completed + 1)
    )

    await db.commit()
    await matching.sync_driver_index(redis, driver)
    logger.info("Ride %s completed by driver=%s fare=%s", ride.id, driver.id, ride.final_fare)
    return ride
