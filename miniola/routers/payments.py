"""
Payments router — settle a completed ride, refunds, wallet top-up and receipts.
"""
import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from miniola.database import get_db
from miniola.middleware.auth import get_current_account, get_current_rider
from miniola.models import Account
from miniola.models.rider import Rider
from miniola.schemas.schemas import (
    PaymentListResponse,
    PaymentRequest,
    PaymentResponse,
    ReceiptResponse,
    RefundRequest,
    TopUpRequest,
    WalletResponse,
)
from miniola.services import payment as payment_service

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/payments", tags=["Payments"])


@router.post("/process", response_model=PaymentResponse)
async def process_payment(
    payload: PaymentRequest,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
):
    payment = await payment_service.process_ride_payment(db, rider, payload.ride_id, payload.method.value)
    return PaymentResponse.model_validate(payment)


@router.post("/wallet/topup", response_model=WalletResponse)
async def top_up_wallet(
    payload: TopUpRequest,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
):
    balance = await payment_service.top_up_wallet(db, rider, payload.amount, payload.method.value)
    return WalletResponse(wallet_balance=balance)


@router.get("/history", response_model=PaymentListResponse)
async def payment_history(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    items, total = await payment_service.payment_history(db, account, page, limit)
    return PaymentListResponse(
        items=[PaymentResponse.model_validate(p) for p in items], total=total, page=page, limit=limit
    )


@router.post("/{ride_id}/refund", response_model=PaymentResponse)
async def refund_payment(
    ride_id: str,
    payload: RefundRequest,
    db: AsyncSession = Depends(get_db),
    rider: Rider = Depends(get_current_rider),
):
    payment = await payment_service.refund_ride_payment(db, rider, ride_id, payload.reason, payload.amount)
    return PaymentResponse.model_validate(payment)


@router.get("/{ride_id}", response_model=ReceiptResponse)
async def get_receipt(
    ride_id: str,
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    return ReceiptResponse(**await payment_service.get_receipt(db, account, ride_id))
