"""
Auth router — registration, login, token refresh/logout and profile.
"""
import logging

import redis.asyncio as aioredis
from fastapi import APIRouter, Depends, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from miniola.database import get_db
from miniola.middleware.auth import get_current_account
from miniola.models import Account
from miniola.redis_client import get_redis
from miniola.schemas.schemas import (
    AccountResponse,
    ChangePasswordRequest,
    DriverRegisterRequest,
    LoginRequest,
    MessageResponse,
    ProfileUpdateRequest,
    RefreshRequest,
    RiderRegisterRequest,
    TokenResponse,
)
from miniola.services import accounts, tokens

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/v1/auth", tags=["Auth"])


def _client_meta(request: Request) -> dict:
    return {
        "ip": request.client.host if request.client else None,
        "user_agent": request.headers.get("user-agent"),
    }


def _token_response(account: Account, pair: dict) -> TokenResponse:
    return TokenResponse(**pair, account=AccountResponse.model_validate(account))


@router.post("/register", status_code=status.HTTP_201_CREATED, response_model=TokenResponse)
async def register_rider(
    payload: RiderRegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    rider = await accounts.register_rider(db, **payload.model_dump())
    pair = await tokens.issue_tokens(db, rider, _client_meta(request))
    return _token_response(rider, pair)


@router.post("/register-driver", status_code=status.HTTP_201_CREATED, response_model=TokenResponse)
async def register_driver(
    payload: DriverRegisterRequest,
    request: Request,
    db: AsyncSession = Depends(get_db),
):
    data = payload.model_dump()
    data["vehicle_type"] = payload.vehicle_type.value
    driver = await accounts.register_driver(db, **data)
    pair = await tokens.issue_tokens(db, driver, _client_meta(request))
    return _token_response(driver, pair)


@router.post("/login", response_model=TokenResponse)
async def login_rider(payload: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    account, pair = await accounts.login(
        db, payload.identifier, payload.password, role="rider", meta=_client_meta(request)
    )
    return _token_response(account, pair)


@router.post("/login-driver", response_model=TokenResponse)
async def login_driver(payload: LoginRequest, request: Request, db: AsyncSession = Depends(get_db)):
    account, pair = await accounts.login(
        db, payload.identifier, payload.password, role="driver", meta=_client_meta(request)
    )
    return _token_response(account, pair)


@router.post("/refresh", response_model=TokenResponse)
async def refresh(payload: RefreshRequest, request: Request, db: AsyncSession = Depends(get_db)):
    account, pair = await tokens.rotate_refresh_token(db, payload.refresh_token, _client_meta(request))
    return _token_response(account, pair)


@router.post("/logout", response_model=MessageResponse)
async def logout(payload: RefreshRequest, db: AsyncSession = Depends(get_db)):
    await tokens.revoke_token(db, payload.refresh_token, reason="logout")
    return MessageResponse(message="Logged out")


@router.get("/profile", response_model=AccountResponse)
async def get_profile(account: Account = Depends(get_current_account)):
    return AccountResponse.model_validate(account)


@router.put("/profile", response_model=AccountResponse)
async def update_profile(
    payload: ProfileUpdateRequest,
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    account = await accounts.update_profile(db, account, **payload.model_dump(exclude_none=True))
    return AccountResponse.model_validate(account)


@router.put("/change-password", response_model=MessageResponse)
async def change_password(
    payload: ChangePasswordRequest,
    db: AsyncSession = Depends(get_db),
    account: Account = Depends(get_current_account),
):
    await accounts.change_password(db, account, payload.current_password, payload.new_password)
    return MessageResponse(message="Password changed. Please log in again on other devices.")


@router.delete("/account", response_model=MessageResponse)
async def delete_account(
    db: AsyncSession = Depends(get_db),
    redis: aioredis.Redis = Depends(get_redis),
    account: Account = Depends(get_current_account),
):
    await accounts.delete_account(db, redis, account)
    return MessageResponse(message="Account deleted")
