"""
API key issuance and validation.

Secrets are 64 hex chars (32 random bytes) shown once at issuance. Only
their SHA-256 is stored. A key grants access when it is active, not
expired, and carries the requested scope. Expired keys are denied even
before the cleanup task has deactivated them.
"""
import asyncio
import hashlib
import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, List, Optional, Tuple
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from distro.core.config import settings
from distro.core.database import utcnow
from distro.core.errors import NotFoundError, ValidationError
from distro.models import ApiKey, ApiKeyScope
from distro.services.users import get_user

logger = logging.getLogger(__name__)

PREFIX_LENGTH = 8


def hash_secret(secret: str) -> str:
    return hashlib.sha256(secret.encode("utf-8")).hexdigest()


def _normalize_scopes(scopes: Iterable[str]) -> List[str]:
    normalized = []
    for scope in scopes:
        try:
            value = ApiKeyScope(scope).value
        except ValueError:
            raise ValidationError(f"Unknown API key scope: {scope}") from None
        if value not in normalized:
            normalized.append(value)
    if not normalized:
        raise ValidationError("An API key needs at least one scope")
    return sorted(normalized)


@dataclass(frozen=True)
class AccessDecision:
    granted: bool
    reason: Optional[str] = None
    api_key: Optional[ApiKey] = None


async def issue_api_key(
    db: AsyncSession,
    user_id: UUID,
    name: str,
    scopes: Iterable[str],
    ttl_days: Optional[int] = None,
) -> Tuple[ApiKey, str]:
    """
    Create a key for a user.

    Returns:
        (record, secret); the secret is not recoverable afterwards
    """
    user = await get_user(db, user_id)
    if not user.is_active:
        raise ValidationError(f"User {user_id} is not active")
    if not name or not name.strip():
        raise ValidationError("API key name is required")
    if ttl_days is not None and ttl_days <= 0:
        raise ValidationError("ttl_days must be positive")

    scope_values = _normalize_scopes(scopes)
    now = utcnow()

    # Hash collisions are not expected, but the unique column must hold
    secret = secrets.token_hex(32)
    key_hash = hash_secret(secret)
    while (await db.execute(select(ApiKey.id).where(ApiKey.key_hash == key_hash))).first():
        secret = secrets.token_hex(32)
        key_hash = hash_secret(secret)

    api_key = ApiKey(
        key_hash=key_hash,
        prefix=secret[:PREFIX_LENGTH],
        name=name.strip(),
        user_id=user_id,
        scopes=scope_values,
        expires_at=now + timedelta(days=ttl_days) if ttl_days else None,
        is_active=True,
    )
    db.add(api_key)
    await db.flush()
    logger.info(f"Issued API key {api_key.prefix}... for user {user_id} scopes={scope_values}")
    return api_key, secret


async def validate_api_key(
    db: AsyncSession,
    secret: Optional[str],
    required_scope: ApiKeyScope | str,
    now: datetime | None = None,
) -> AccessDecision:
    """Decide whether a presented secret may use a scope. Never raises for bad keys."""
    now = now or utcnow()
    if not secret:
        return AccessDecision(False, "missing")

    result = await db.execute(select(ApiKey).where(ApiKey.key_hash == hash_secret(secret)))
    api_key = result.scalar_one_or_none()

    if api_key is None:
        return AccessDecision(False, "unknown")
    if not api_key.is_active:
        return AccessDecision(False, "inactive", api_key)
    if api_key.is_expired(now):
        return AccessDecision(False, "expired", api_key)
    if ApiKeyScope(required_scope).value not in (api_key.scopes or []):
        return AccessDecision(False, "missing_scope", api_key)

    api_key.last_used = now
    await db.flush()
    return AccessDecision(True, None, api_key)


async def get_api_key(db: AsyncSession, key_id: UUID) -> ApiKey:
    result = await db.execute(select(ApiKey).where(ApiKey.id == key_id))
    api_key = result.scalar_one_or_none()
    if api_key is None:
        raise NotFoundError("ApiKey", key_id)
    return api_key


async def revoke_api_key(db: AsyncSession, key_id: UUID) -> ApiKey:
    api_key = await get_api_key(db, key_id)
    if api_key.is_active:
        api_key.is_active = False
        api_key.revoked_at = utcnow()
        await db.flush()
        logger.info(f"Revoked API key {api_key.prefix}...")
    return api_key


async def list_api_keys(db: AsyncSession, user_id: UUID, include_inactive: bool = False) -> List[ApiKey]:
    query = select(ApiKey).where(ApiKey.user_id == user_id).order_by(ApiKey.created_at.desc())
    if not include_inactive:
        query = query.where(ApiKey.is_active.is_(True))
    result = await db.execute(query)
    return list(result.scalars().all())


async def purge_expired_api_keys(db: AsyncSession, now: datetime | None = None) -> int:
    """Deactivate active keys past their expiry. Rows are kept."""
    now = now or utcnow()
    result = await db.execute(
        update(ApiKey)
        .where(
            ApiKey.is_active.is_(True),
            ApiKey.expires_at.is_not(None),
            ApiKey.expires_at <= now,
        )
        .values(is_active=False, updated_at=now)
    )
    if result.rowcount:
        logger.info(f"Deactivated {result.rowcount} expired API key(s)")
    return result.rowcount


async def api_key_cleanup_loop(
    session_factory: Callable[[], AsyncSession],
    interval: float | None = None,
) -> None:
    """Run purge_expired_api_keys every interval, one transaction per pass."""
    interval = interval or settings.API_KEY_CLEANUP_INTERVAL_SECONDS
    while True:
        await asyncio.sleep(interval)
        try:
            async with session_factory() as db:
                async with db.begin():
                    await purge_expired_api_keys(db)
        except SQLAlchemyError as e:
            logger.error(f"API key cleanup failed: {e}")
