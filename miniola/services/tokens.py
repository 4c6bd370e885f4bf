"""
Access / refresh token issuance.

Access tokens are stateless JWTs. Refresh tokens are opaque random strings;
only their SHA-256 digest is stored, and every refresh rotates the token. A
rotated token that shows up again means it leaked, so the whole family of the
user's tokens is revoked.
"""
import hashlib
import logging
import secrets
from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from miniola.config import get_settings
from miniola.database import as_utc, utcnow
from miniola.exceptions import AuthenticationFailed
from miniola.middleware.auth import create_access_token, load_account
from miniola.models import Account
from miniola.models.refresh_token import RefreshToken

logger = logging.getLogger(__name__)
settings = get_settings()


def hash_token(raw: str) -> str:
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def generate_refresh_token() -> str:
    return secrets.token_urlsafe(48)


def _new_record(account: Account, raw: str, meta: Optional[dict]) -> RefreshToken:
    meta = meta or {}
    return RefreshToken(
        user_id=account.id,
        role=account.role,
        token_hash=hash_token(raw),
        expires_at=utcnow() + timedelta(minutes=settings.refresh_token_expire_minutes),
        ip=meta.get("ip"),
        user_agent=meta.get("user_agent"),
    )


def _token_pair(account: Account, raw_refresh: str) -> dict:
    return {
        "access_token": create_access_token(account),
        "refresh_token": raw_refresh,
        "token_type": "bearer",
        "expires_in": settings.access_token_expire_minutes * 60,
    }


async def issue_tokens(db: AsyncSession, account: Account, meta: Optional[dict] = None) -> dict:
    raw = generate_refresh_token()
    db.add(_new_record(account, raw, meta))
    await db.commit()
    return _token_pair(account, raw)


async def _find(db: AsyncSession, raw: str) -> Optional[RefreshToken]:
    # revocations are bulk UPDATEs, so never trust an identity-map copy
    return await db.scalar(
        select(RefreshToken)
        .where(RefreshToken.token_hash == hash_token(raw))
        .execution_options(populate_existing=True)
    )


async def verify_refresh_token(db: AsyncSession, raw: str) -> RefreshToken:
    """The stored record for `raw` if it is known, unrevoked and unexpired."""
    record = await _find(db, raw)
    if record is None or record.revoked_at is not None:
        raise AuthenticationFailed("Invalid refresh token")
    if as_utc(record.expires_at) <= utcnow():
        raise AuthenticationFailed("Refresh token expired")
    return record


async def rotate_refresh_token(db: AsyncSession, raw: str, meta: Optional[dict] = None) -> tuple[Account, dict]:
    record = await _find(db, raw)
    if record is None:
        raise AuthenticationFailed("Invalid refresh token")
    if record.revoked_at is not None:
        if record.replaced_by_token_hash:
            await _revoke_family(db, record)
            raise AuthenticationFailed("Refresh token reuse detected")
        raise AuthenticationFailed("Invalid refresh token")
    if as_utc(record.expires_at) <= utcnow():
        raise AuthenticationFailed("Refresh token expired")

    account = await load_account(db, record.role, record.user_id)

    new_raw = generate_refresh_token()
    new_hash = hash_token(new_raw)
    # conditional so two concurrent refreshes cannot both rotate the same token
    claimed = await db.execute(
        update(RefreshToken)
        .where(RefreshToken.id == record.id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=utcnow(), revoked_reason="rotated", replaced_by_token_hash=new_hash)
        .execution_options(synchronize_session=False)
    )
    if claimed.rowcount != 1:
        await _revoke_family(db, record)
        raise AuthenticationFailed("Refresh token reuse detected")

    db.add(_new_record(account, new_raw, meta))
    await db.commit()
    return account, _token_pair(account, new_raw)


async def _revoke_family(db: AsyncSession, record: RefreshToken) -> None:
    revoked = await revoke_all_user_tokens(db, record.user_id, reason="reuse_detected")
    logger.warning(
        "Refresh token reuse detected for %s %s; revoked %d tokens", record.role, record.user_id, revoked
    )


async def revoke_token(db: AsyncSession, raw: str, reason: str = "logout") -> bool:
    """Stamp the token revoked; revoking twice is a no-op."""
    result = await db.execute(
        update(RefreshToken)
        .where(RefreshToken.token_hash == hash_token(raw), RefreshToken.revoked_at.is_(None))
        .values(revoked_at=utcnow(), revoked_reason=reason)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount == 1


async def revoke_all_user_tokens(db: AsyncSession, user_id: str, reason: str = "revoke_all") -> int:
    result = await db.execute(
        update(RefreshToken)
        .where(RefreshToken.user_id == user_id, RefreshToken.revoked_at.is_(None))
        .values(revoked_at=utcnow(), revoked_reason=reason)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    return result.rowcount
