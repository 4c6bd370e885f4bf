"""
Surge pricing and fare calculation service.
"""
import math
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from math import radians, sin, cos, sqrt, atan2

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from miniola.config import get_settings
from miniola.exceptions import InvalidFareInput
from miniola.models.driver import Driver
from miniola.models.ride import Ride

settings = get_settings()

RIDE_TYPES = ("bike", "mini", "sedan", "suv")
ACTIVE_RIDE_STATUSES = ("requested", "accepted", "driver-arrived", "in-progress")

CENT = Decimal("0.01")


def to_money(value) -> Decimal:
    return Decimal(str(value)).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class FareBreakdown:
    ride_type: str
    distance_km: float
    estimated_minutes: float
    is_group_ride: bool
    base_fare: Decimal
    distance_fare: Decimal
    time_fare: Decimal
    surge_multiplier: float
    surge_amount: Decimal
    group_discount: Decimal
    estimated_fare: Decimal


# ---------------------------------------------------------------------------
# Fare calculation
# ---------------------------------------------------------------------------

def calculate_fare(
    ride_type: str,
    distance_km: float,
    estimated_minutes: float,
    surge_multiplier: float = 1.0,
    is_group_ride: bool = False,
) -> FareBreakdown:
    """
    subtotal = base + distance*per_km + minutes*per_minute, multiplied by the
    surge multiplier; group rides then take 20% off the surged subtotal.
    """
    base_fares = settings.base_fares
    if ride_type not in base_fares:
        raise InvalidFareInput(f"Invalid ride type: {ride_type}")
    if distance_km < 0 or estimated_minutes < 0:
        raise InvalidFareInput("Distance and time must not be negative")
    if surge_multiplier < 1.0:
        raise InvalidFareInput("Surge multiplier must be at least 1.0")

    # each component is rounded; estimated_fare is their exact sum
    base = to_money(base_fares[ride_type])
    distance_fare = to_money(Decimal(str(distance_km)) * Decimal(str(settings.fare_per_km)))
    time_fare = to_money(Decimal(str(estimated_minutes)) * Decimal(str(settings.fare_per_minute)))
    surge = Decimal(str(surge_multiplier))

    subtotal = base + distance_fare + time_fare
    surge_amount = to_money(subtotal * (surge - 1))
    surged = subtotal + surge_amount

    group_discount = Decimal("0.00")
    if is_group_ride:
        group_discount = to_money(surged * Decimal(str(settings.group_discount_rate)))

    return FareBreakdown(
        ride_type=ride_type,
        distance_km=distance_km,
        estimated_minutes=estimated_minutes,
        is_group_ride=is_group_ride,
        base_fare=base,
        distance_fare=distance_fare,
        time_fare=time_fare,
        surge_multiplier=surge_multiplier,
        surge_amount=surge_amount,
        group_discount=group_discount,
        estimated_fare=surged - group_discount,
    )


# ---------------------------------------------------------------------------
# Surge computation
# ---------------------------------------------------------------------------

def calculate_surge_multiplier(active_rides: int, available_drivers: int) -> float:
    """Step function over the demand/supply ratio; no supply means maximum surge."""
    if available_drivers <= 0:
        return 2.0

    ratio = active_rides / available_drivers

    if ratio > 3:
        return 2.0
    elif ratio > 2:
        return 1.8
    elif ratio > 1.5:
        return 1.5
    elif ratio > 1:
        return 1.3
    return 1.0


async def current_surge(db: AsyncSession) -> float:
    active_rides = await db.scalar(
        select(func.count()).select_from(Ride).where(Ride.status.in_(ACTIVE_RIDE_STATUSES))
    )
    available_drivers = await db.scalar(
        select(func.count())
        .select_from(Driver)
        .where(Driver.is_available.is_(True), Driver.kyc_status == "approved", Driver.deleted_at.is_(None))
    )
    return calculate_surge_multiplier(active_rides or 0, available_drivers or 0)


# ---------------------------------------------------------------------------
# Distance / time
# ---------------------------------------------------------------------------

def haversine_km(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in km, rounded to 2 decimals."""
    R = 6371
    phi1, phi2 = radians(lat1), radians(lat2)
    dphi = radians(lat2 - lat1)
    dlambda = radians(lng2 - lng1)
    a = sin(dphi / 2) ** 2 + cos(phi1) * cos(phi2) * sin(dlambda / 2) ** 2
    return round(2 * R * atan2(sqrt(a), sqrt(1 - a)), 2)


def estimate_minutes(distance_km: float) -> int:
    return round(distance_km / settings.average_speed_kmh * 60)


def calculate_eta_minutes(distance_km: float, average_speed_kmh: float | None = None) -> int:
    speed = average_speed_kmh or settings.average_speed_kmh
    return math.ceil(distance_km / speed * 60)
