"""
Payment settlement.

Wallet payments move money between the rider's and the driver's wallets;
UPI and cash settle immediately (there is no external gateway). Every
completed payment splits its amount into a platform fee and driver earnings.
"""
import logging
import secrets
import time
from decimal import Decimal
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from miniola.config import get_settings
from miniola.database import utcnow
from miniola.exceptions import (
    DuplicateResource,
    InsufficientBalance,
    InvalidStateTransition,
    NotFound,
    Unauthorized,
    ValidationFailure,
)
from miniola.models import Account
from miniola.models.driver import Driver
from miniola.models.payment import Payment
from miniola.models.ride import Ride
from miniola.models.rider import Rider
from miniola.services.pricing import to_money

logger = logging.getLogger(__name__)
settings = get_settings()

PAYMENT_METHODS = ("wallet", "upi", "cash")
TOP_UP_METHODS = ("upi", "cash")
# methods where the platform holds the money and pays the driver's wallet
WALLET_CREDITED_METHODS = ("wallet", "upi")
# statuses a payment may be (re)processed from
RETRYABLE_STATUSES = ("pending", "failed")


def generate_receipt_number() -> str:
    return f"REC-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"


def generate_transaction_id() -> str:
    return f"TXN-INTERNAL-{int(time.time() * 1000)}-{secrets.token_hex(4).upper()}"


def split_amount(amount: Decimal) -> tuple[Decimal, Decimal]:
    """(platform_fee, driver_earnings); the two always add up to `amount`."""
    amount = to_money(amount)
    platform_fee = to_money(amount * Decimal(str(settings.platform_fee_rate)))
    return platform_fee, amount - platform_fee


async def _credit(db: AsyncSession, model, account_id: str, amount: Decimal) -> None:
    await db.execute(
        update(model)
        .where(model.id == account_id)
        .values(wallet_balance=model.wallet_balance + amount)
        .execution_options(synchronize_session=False)
    )


async def _debit(db: AsyncSession, model, account_id: str, amount: Decimal) -> bool:
    """Conditional debit; False when the balance would go negative."""
    result = await db.execute(
        update(model)
        .where(model.id == account_id, model.wallet_balance >= amount)
        .values(wallet_balance=model.wallet_balance - amount)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _fail(db: AsyncSession, payment: Payment, ride: Optional[Ride], reason: str) -> None:
    payment.status = "failed"
    payment.failure_reason = reason
    if ride is not None:
        ride.payment_status = "failed"
    await db.commit()
    logger.warning("Payment %s failed: %s", payment.id, reason)


async def _claim(db: AsyncSession, payment: Payment, from_statuses: tuple[str, ...], **values) -> bool:
    """
    Move the payment out of `from_statuses` with one conditional UPDATE.
    Only one of several concurrent callers gets True; the others are rolled
    back and must not touch the payment again.
    """
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status.in_(from_statuses))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        await db.rollback()
        return False
    await db.commit()
    await db.refresh(payment)
    return True


async def _settle(db: AsyncSession, payment: Payment, ride: Optional[Ride]) -> Payment:
    payment.platform_fee, payment.driver_earnings = split_amount(payment.amount)

    if payment.method == "wallet":
        rider = await db.get(Rider, payment.rider_id)
        if rider is None or rider.is_deleted:
            await _fail(db, payment, ride, "Rider not found")
            raise NotFound("Rider not found")
        if not await _debit(db, Rider, payment.rider_id, payment.amount):
            await _fail(db, payment, ride, "Insufficient wallet balance")
            raise InsufficientBalance("Insufficient wallet balance")

    if payment.method in WALLET_CREDITED_METHODS:
        await _credit(db, Driver, payment.driver_id, payment.driver_earnings)

    if payment.method != "cash" and not payment.transaction_id:
        payment.transaction_id = generate_transaction_id()

    payment.status = "completed"
    if ride is not None:
        ride.payment_status = "completed"
    await db.commit()
    logger.info(
        "Payment %s completed: method=%s amount=%s fee=%s",
        payment.id, payment.method, payment.amount, payment.platform_fee,
    )
    return payment


async def process_payment(db: AsyncSession, payment: Payment, ride: Optional[Ride] = None) -> Payment:
    """
    pending → processing → completed | failed.

    Raises InsufficientBalance (after persisting the failed status) when a
    wallet payment cannot be covered.
    """
    current = payment.status
    if not await _claim(db, payment, ("pending",), status="processing", failure_reason=None):
        raise InvalidStateTransition(f"Cannot process a {current} payment")
    return await _settle(db, payment, ride)


async def process_ride_payment(db: AsyncSession, rider: Rider, ride_id: str, method: str = "wallet") -> Payment:
    """Create (or retry a failed) payment for a completed ride and settle it."""
    if method not in PAYMENT_METHODS:
        raise ValidationFailure("Invalid payment method. Allowed: wallet, upi, cash")

    ride = await db.get(Ride, ride_id)
    if ride is None:
        raise NotFound("Ride not found")
    if ride.status != "completed":
        raise InvalidStateTransition("Cannot process payment for incomplete ride")
    if ride.rider_id != rider.id:
        raise Unauthorized("Not authorized to pay for this ride")

    payment = await db.scalar(select(Payment).where(Payment.ride_id == ride.id))
    if payment is None:
        payment = Payment(
            ride_id=ride.id,
            rider_id=ride.rider_id,
            driver_id=ride.driver_id,
            amount=ride.final_fare if ride.final_fare is not None else ride.estimated_fare,
            method=method,
            status="pending",
            receipt_number=generate_receipt_number(),
        )
        db.add(payment)
        try:
            await db.flush()
        except IntegrityError as exc:
            await db.rollback()
            raise DuplicateResource("Payment already processed") from exc
        return await process_payment(db, payment, ride)

    if payment.status not in RETRYABLE_STATUSES:
        raise DuplicateResource("Payment already processed")
    claimed = await _claim(
        db, payment, RETRYABLE_STATUSES, status="processing", method=method, failure_reason=None
    )
    if not claimed:
        raise DuplicateResource("Payment already processed")
    return await _settle(db, payment, ride)


async def refund_payment(
    db: AsyncSession,
    payment: Payment,
    reason: Optional[str] = None,
    amount: Optional[Decimal] = None,
    ride: Optional[Ride] = None,
) -> Payment:
    """
    Only completed payments can be refunded, once. The rider's wallet is
    credited and the driver's wallet debited by the refund amount.
    """
    if payment.status != "completed":
        raise InvalidStateTransition("Can only refund completed payments")

    refund = to_money(amount) if amount is not None else payment.amount
    if refund <= 0 or refund > payment.amount:
        raise ValidationFailure("Refund amount must be positive and not exceed the payment amount")

    rider_id, driver_id = payment.rider_id, payment.driver_id
    claimed = await db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == "completed")
        .values(
            status="refunded",
            refund_amount=refund,
            refund_reason=reason or "Refund requested",
            refunded_at=utcnow(),
        )
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        await db.rollback()
        raise InvalidStateTransition("Can only refund completed payments")

    await _credit(db, Rider, rider_id, refund)
    await _credit(db, Driver, driver_id, -refund)
    if ride is not None:
        ride.payment_status = "refunded"

    await db.commit()
    await db.refresh(payment)
    logger.info("Payment %s refunded: amount=%s reason=%s", payment.id, refund, payment.refund_reason)
    return payment


async def refund_ride_payment(
    db: AsyncSession,
    rider: Rider,
    ride_id: str,
    reason: Optional[str] = None,
    amount: Optional[Decimal] = None,
) -> Payment:
    payment = await db.scalar(select(Payment).where(Payment.ride_id == ride_id))
    if payment is None:
        raise NotFound("Payment not found")
    if payment.rider_id != rider.id:
        raise Unauthorized("Not authorized to refund this payment")
    ride = await db.get(Ride, ride_id)
    return await refund_payment(db, payment, reason, amount, ride)


async def top_up_wallet(db: AsyncSession, rider: Rider, amount: Decimal, method: str = "upi") -> Decimal:
    if amount is None or amount <= 0:
        raise ValidationFailure("Amount must be greater than 0")
    if method not in TOP_UP_METHODS:
        raise ValidationFailure("Invalid top-up method. Allowed: upi, cash")

    await _credit(db, Rider, rider.id, to_money(amount))
    await db.commit()
    await db.refresh(rider)
    logger.info("Rider %s topped up wallet by %s via %s", rider.id, amount, method)
    return rider.wallet_balance


async def get_receipt(db: AsyncSession, account: Account, ride_id: str) -> dict:
    payment = await db.scalar(select(Payment).where(Payment.ride_id == ride_id))
    if payment is None:
        raise NotFound("Payment not found")
    if account.id not in (payment.rider_id, payment.driver_id):
        raise Unauthorized("Not authorized to view this receipt")

    ride = await db.get(Ride, payment.ride_id)
    rider = await db.get(Rider, payment.rider_id)
    driver = await db.get(Driver, payment.driver_id)

    return {
        "receipt_number": payment.receipt_number,
        "ride": {
            "id": ride.id,
            "pickup_address": ride.pickup_address,
            "dropoff_address": ride.dropoff_address,
            "distance_km": ride.distance_km,
            "duration_minutes": ride.duration_actual if ride.duration_actual is not None else ride.duration_estimated,
            "start_time": ride.start_time,
            "end_time": ride.end_time,
        },
        "rider": {"name": rider.name, "phone": rider.phone} if rider else None,
        "driver": {"name": driver.name, "phone": driver.phone} if driver else None,
        "fare_breakdown": {
            "base_fare": ride.base_fare,
            "distance_fare": ride.distance_fare,
            "time_fare": ride.time_fare,
            "surge_multiplier": ride.surge_multiplier,
            "total": payment.amount,
        },
        "payment": {
            "method": payment.method,
            "status": payment.status,
            "transaction_id": payment.transaction_id,
            "platform_fee": payment.platform_fee,
            "driver_earnings": payment.driver_earnings,
            "paid_at": payment.updated_at,
        },
    }


async def payment_history(
    db: AsyncSession, account: Account, page: int = 1, limit: int = 10
) -> tuple[list[Payment], int]:
    owner_column = Payment.driver_id if isinstance(account, Driver) else Payment.rider_id
    total = await db.scalar(select(func.count()).select_from(Payment).where(owner_column == account.id))
    result = await db.execute(
        select(Payment)
        .where(owner_column == account.id)
        .order_by(Payment.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars()), total or 0
