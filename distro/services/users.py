"""
User account service.

Profile, verification and soft-delete operations, plus the single entry
point for balance stats mutations (apply_stats_delta), which refuses any
change that would break:

    available_balance + pending_payouts <= total_earnings
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from distro.core.database import utcnow
from distro.core.errors import InvalidTransition, NotFoundError, ValidationError
from distro.core.money import ZERO, quantize_storage
from distro.models import ApiKey, User, UserRole, UserStatus, VerificationStatus

logger = logging.getLogger(__name__)


VERIFICATION_TRANSITIONS: dict[VerificationStatus, frozenset[VerificationStatus]] = {
    VerificationStatus.UNVERIFIED: frozenset({VerificationStatus.PENDING}),
    VerificationStatus.PENDING: frozenset(
        {VerificationStatus.VERIFIED, VerificationStatus.REJECTED}
    ),
    VerificationStatus.REJECTED: frozenset({VerificationStatus.PENDING}),
    VerificationStatus.VERIFIED: frozenset(),
}

PROFILE_FIELDS = ("display_name", "first_name", "last_name", "country")


@dataclass(frozen=True)
class StatsDelta:
    """Signed changes to a user's balance stats, in the system currency."""
    total_earnings: Decimal = ZERO
    available_balance: Decimal = ZERO
    pending_payouts: Decimal = ZERO
    last_payout_date: Optional[datetime] = None


def check_balance_invariant(
    total_earnings: Decimal,
    available_balance: Decimal,
    pending_payouts: Decimal,
) -> None:
    """Raise ValidationError unless the stats shape is consistent."""
    if total_earnings < 0 or available_balance < 0 or pending_payouts < 0:
        raise ValidationError(
            f"Balance stats must be non-negative "
            f"(earnings={total_earnings}, available={available_balance}, pending={pending_payouts})"
        )
    if available_balance + pending_payouts > total_earnings:
        raise ValidationError(
            f"available_balance + pending_payouts ({available_balance + pending_payouts}) "
            f"exceeds total_earnings ({total_earnings})"
        )


async def get_user(db: AsyncSession, user_id: UUID) -> User:
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User", user_id)
    return user


async def create_user(
    db: AsyncSession,
    email: str,
    display_name: str,
    role: UserRole = UserRole.ARTIST,
    **profile,
) -> User:
    """Create an account at signup. Emails are unique case-insensitively."""
    email = email.strip().lower()
    existing = await db.execute(select(User.id).where(User.email == email))
    if existing.scalar_one_or_none() is not None:
        raise ValidationError(f"Email {email} is already registered")

    user = User(
        email=email,
        display_name=display_name,
        role=role,
        status=UserStatus.ACTIVE,
        **{k: v for k, v in profile.items() if k in PROFILE_FIELDS},
    )
    db.add(user)
    await db.flush()
    logger.info(f"Created user {user.id} ({email}, role={role.value})")
    return user


async def update_profile(db: AsyncSession, user_id: UUID, **changes) -> User:
    user = await get_user(db, user_id)
    if user.is_deleted:
        raise ValidationError(f"User {user_id} is deleted")

    unknown = set(changes) - set(PROFILE_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown profile fields: {', '.join(sorted(unknown))}")

    for field_name, value in changes.items():
        if value is not None:
            setattr(user, field_name, value)
    await db.flush()
    return user


async def set_verification(
    db: AsyncSession,
    user_id: UUID,
    target: VerificationStatus,
    notes: str | None = None,
) -> User:
    user = await get_user(db, user_id)
    allowed = VERIFICATION_TRANSITIONS.get(user.verification_status, frozenset())
    if target not in allowed:
        raise InvalidTransition("Verification", user.verification_status.value, target.value)

    user.verification_status = target
    user.verification_notes = notes
    if target == VerificationStatus.VERIFIED:
        user.verified_at = utcnow()
    await db.flush()
    logger.info(f"User {user_id} verification -> {target.value}")
    return user


async def soft_delete_user(db: AsyncSession, user_id: UUID) -> User:
    """
    Mark a user deleted and deactivate their API keys.

    Users are never hard-deleted: royalty splits and payouts keep
    referencing them.
    """
    user = await get_user(db, user_id)
    if user.is_deleted:
        return user

    now = utcnow()
    user.status = UserStatus.DELETED
    user.is_deleted = True
    user.deleted_at = now

    await db.execute(
        update(ApiKey)
        .where(ApiKey.user_id == user_id, ApiKey.is_active.is_(True))
        .values(is_active=False, revoked_at=now)
    )
    await db.flush()
    logger.info(f"Soft-deleted user {user_id}")
    return user


async def _lock_user(db: AsyncSession, user_id: UUID) -> User:
    """Load a user row locked for update, with its stats re-read from the database."""
    await db.flush()
    result = await db.execute(
        select(User)
        .where(User.id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    user = result.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User", user_id)
    return user


async def apply_stats_delta(db: AsyncSession, user_id: UUID, delta: StatsDelta) -> User:
    """
    Apply a signed change to a user's balance stats.

    Raises:
        ValidationError: if the result would break the balance invariant;
            nothing is written in that case.
    """
    user = await _lock_user(db, user_id)

    total_earnings = quantize_storage(user.total_earnings + delta.total_earnings)
    available_balance = quantize_storage(user.available_balance + delta.available_balance)
    pending_payouts = quantize_storage(user.pending_payouts + delta.pending_payouts)

    check_balance_invariant(total_earnings, available_balance, pending_payouts)

    user.total_earnings = total_earnings
    user.available_balance = available_balance
    user.pending_payouts = pending_payouts
    if delta.last_payout_date is not None:
        user.last_payout_date = delta.last_payout_date
    await db.flush()
    return user
