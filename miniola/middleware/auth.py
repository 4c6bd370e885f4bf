from datetime import timedelta
from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.ext.asyncio import AsyncSession

from miniola.config import get_settings
from miniola.database import get_db, utcnow
from miniola.exceptions import AuthenticationFailed, Unauthorized
from miniola.models import Account
from miniola.models.driver import Driver
from miniola.models.rider import Rider

settings = get_settings()
bearer_scheme = HTTPBearer(auto_error=False)

ACCOUNT_MODELS = {"rider": Rider, "driver": Driver}


def create_access_token(account: Account) -> str:
    """Sign a short-lived JWT (HS256) carrying the account id and role."""
    now = utcnow()
    payload = {
        "sub": account.id,
        "role": account.role,
        "iat": now,
        "exp": now + timedelta(minutes=settings.access_token_expire_minutes),
    }
    return jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)


async def load_account(db: AsyncSession, role: Optional[str], account_id: Optional[str]) -> Account:
    """Resolve a live (active, not deleted) account or fail authentication."""
    model = ACCOUNT_MODELS.get(role or "")
    if model is None or not account_id:
        raise AuthenticationFailed("Invalid token payload")
    account = await db.get(model, account_id)
    if account is None or account.is_deleted:
        raise AuthenticationFailed("Account not found")
    if not account.is_active:
        raise AuthenticationFailed("Account is deactivated")
    return account


async def get_current_account(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
) -> Account:
    """Decode the Bearer JWT and load the caller once per request."""
    if credentials is None:
        raise AuthenticationFailed("Missing Bearer token")
    try:
        payload = jwt.decode(
            credentials.credentials,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        raise AuthenticationFailed("Invalid or expired token")
    return await load_account(db, payload.get("role"), payload.get("sub"))


async def get_current_rider(account: Account = Depends(get_current_account)) -> Rider:
    if not isinstance(account, Rider):
        raise Unauthorized("Rider access required")
    return account


async def get_current_driver(account: Account = Depends(get_current_account)) -> Driver:
    if not isinstance(account, Driver):
        raise Unauthorized("Driver access required")
    return account
