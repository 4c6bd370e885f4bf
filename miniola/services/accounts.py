"""
Registration, login and profile management for riders and drivers.
"""
import logging
from datetime import datetime
from typing import Optional

import redis.asyncio as aioredis
from passlib.context import CryptContext
from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from miniola.config import get_settings
from miniola.database import utcnow
from miniola.exceptions import (
    AuthenticationFailed,
    DuplicateResource,
    InvalidStateTransition,
    ValidationFailure,
)
from miniola.middleware.auth import ACCOUNT_MODELS
from miniola.models import Account
from miniola.models.driver import Driver
from miniola.models.rider import Rider
from miniola.redis_client import geo_remove_driver
from miniola.services import tokens
from miniola.services.pricing import RIDE_TYPES, to_money
from miniola.services.rides import get_active_ride

logger = logging.getLogger(__name__)
settings = get_settings()

pwd_context = CryptContext(schemes=["pbkdf2_sha256", "bcrypt"], deprecated="auto")

PROFILE_FIELDS = ("name", "phone", "profile_picture", "location_address")
DRIVER_PROFILE_FIELDS = PROFILE_FIELDS + ("vehicle_model", "vehicle_color")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


async def _ensure_unique(db: AsyncSession, model, **fields) -> None:
    """Uniqueness is only enforced among accounts that are not deleted."""
    checks = [getattr(model, name) == value for name, value in fields.items()]
    existing = await db.scalar(
        select(model).where(or_(*checks), model.deleted_at.is_(None)).limit(1)
    )
    if existing is None:
        return
    clashing = [name for name, value in fields.items() if getattr(existing, name) == value]
    raise DuplicateResource(
        f"{' / '.join(clashing) or 'Account'} already registered",
        errors={"fields": clashing},
    )


async def _save_new(db: AsyncSession, account: Account) -> Account:
    db.add(account)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise DuplicateResource("Account already registered") from exc
    return account


async def register_rider(db: AsyncSession, *, name: str, email: str, phone: str, password: str) -> Rider:
    email = email.strip().lower()
    await _ensure_unique(db, Rider, email=email, phone=phone)

    rider = Rider(
        name=name.strip(),
        email=email,
        phone=phone,
        password_hash=hash_password(password),
        wallet_balance=to_money(settings.initial_wallet_balance),
    )
    await _save_new(db, rider)
    logger.info("Rider registered: %s", rider.id)
    return rider


async def register_driver(
    db: AsyncSession,
    *,
    name: str,
    email: str,
    phone: str,
    password: str,
    vehicle_type: str,
    vehicle_number: str,
    vehicle_model: str,
    license_number: str,
    license_expiry: datetime,
    vehicle_color: str = "",
) -> Driver:
    if vehicle_type not in RIDE_TYPES:
        raise ValidationFailure(f"Invalid vehicle type: {vehicle_type}")

    email = email.strip().lower()
    vehicle_number = vehicle_number.strip().upper()
    license_number = license_number.strip().upper()
    await _ensure_unique(
        db,
        Driver,
        email=email,
        phone=phone,
        vehicle_number=vehicle_number,
        license_number=license_number,
    )

    driver = Driver(
        name=name.strip(),
        email=email,
        phone=phone,
        password_hash=hash_password(password),
        vehicle_type=vehicle_type,
        vehicle_number=vehicle_number,
        vehicle_model=vehicle_model,
        vehicle_color=vehicle_color or "",
        license_number=license_number,
        license_expiry=license_expiry,
        kyc_status="approved" if settings.auto_approve_kyc else "pending",
    )
    await _save_new(db, driver)
    logger.info("Driver registered: %s (%s %s)", driver.id, vehicle_type, vehicle_number)
    return driver


async def login(
    db: AsyncSession,
    identifier: str,
    password: str,
    role: str = "rider",
    meta: Optional[dict] = None,
) -> tuple[Account, dict]:
    """Authenticate by email or phone; returns the account and a token pair."""
    model = ACCOUNT_MODELS.get(role)
    if model is None:
        raise ValidationFailure(f"Invalid role: {role}")

    identifier = identifier.strip()
    account = await db.scalar(
        select(model).where(
            or_(model.email == identifier.lower(), model.phone == identifier),
            model.deleted_at.is_(None),
        )
    )
    if account is None or not verify_password(password, account.password_hash):
        raise AuthenticationFailed("Invalid credentials")
    if not account.is_active:
        raise AuthenticationFailed("Account is deactivated")

    if pwd_context.needs_update(account.password_hash):
        account.password_hash = hash_password(password)

    pair = await tokens.issue_tokens(db, account, meta)
    logger.info("%s %s logged in", role.capitalize(), account.id)
    return account, pair


async def update_profile(db: AsyncSession, account: Account, **changes) -> Account:
    allowed = DRIVER_PROFILE_FIELDS if isinstance(account, Driver) else PROFILE_FIELDS
    updates = {k: v for k, v in changes.items() if k in allowed and v is not None}

    if "phone" in updates and updates["phone"] != account.phone:
        await _ensure_unique(db, type(account), phone=updates["phone"])

    for field, value in updates.items():
        setattr(account, field, value)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise DuplicateResource("Phone already registered") from exc
    return account


async def change_password(db: AsyncSession, account: Account, current_password: str, new_password: str) -> None:
    """Every refresh token is revoked so other sessions must log in again."""
    if not verify_password(current_password, account.password_hash):
        raise AuthenticationFailed("Current password is incorrect")
    if current_password == new_password:
        raise ValidationFailure("New password must differ from the current one")

    account.password_hash = hash_password(new_password)
    await db.commit()
    await tokens.revoke_all_user_tokens(db, account.id, reason="password_change")
    logger.info("Password changed for %s %s", account.role, account.id)


async def delete_account(db: AsyncSession, redis: aioredis.Redis, account: Account) -> None:
    """Tombstone the account; its email / phone become free for new sign-ups."""
    if isinstance(account, Driver):
        if account.current_ride_id is not None:
            raise InvalidStateTransition("Cannot delete account during an active ride")
        account.is_available = False
    elif await get_active_ride(db, account) is not None:
        raise InvalidStateTransition("Cannot delete account during an active ride")

    account.deleted_at = utcnow()
    account.is_active = False
    await db.commit()

    if isinstance(account, Driver):
        await geo_remove_driver(redis, account.vehicle_type, account.id)
    await tokens.revoke_all_user_tokens(db, account.id, reason="account_deleted")
    logger.info("Account deleted: %s %s", account.role, account.id)
