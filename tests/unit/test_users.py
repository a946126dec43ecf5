"""Tests for user accounts, verification and balance stats."""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from distro.core.errors import InvalidTransition, NotFoundError, ValidationError
from distro.models import ApiKeyScope, User, UserStatus, VerificationStatus
from distro.services import api_keys as api_key_service
from distro.services import users as user_service
from distro.services.users import StatsDelta, check_balance_invariant


async def test_create_user_normalizes_email(db):
    user = await user_service.create_user(db, email="  Someone@Example.COM ", display_name="Someone")

    assert user.email == "someone@example.com"
    assert user.status == UserStatus.ACTIVE
    assert user.verification_status == VerificationStatus.UNVERIFIED
    assert user.total_earnings == Decimal("0")


async def test_duplicate_email_rejected(db, make_user):
    await make_user(email="dup@example.com")

    with pytest.raises(ValidationError):
        await make_user(email="DUP@example.com")


async def test_get_missing_user(db):
    with pytest.raises(NotFoundError):
        await user_service.get_user(db, uuid.uuid4())


async def test_update_profile_rejects_unknown_fields(db, make_user):
    user = await make_user()

    updated = await user_service.update_profile(db, user.id, display_name="New Name", country="FR")
    assert updated.display_name == "New Name"
    assert updated.country == "FR"

    with pytest.raises(ValidationError):
        await user_service.update_profile(db, user.id, total_earnings=Decimal("100"))


async def test_verification_flow(db, make_user):
    user = await make_user()

    await user_service.set_verification(db, user.id, VerificationStatus.PENDING)
    await user_service.set_verification(db, user.id, VerificationStatus.REJECTED, "Blurry ID")
    await user_service.set_verification(db, user.id, VerificationStatus.PENDING)
    verified = await user_service.set_verification(db, user.id, VerificationStatus.VERIFIED)

    assert verified.verification_status == VerificationStatus.VERIFIED
    assert verified.verified_at is not None


async def test_verification_cannot_skip_pending(db, make_user):
    user = await make_user()

    with pytest.raises(InvalidTransition):
        await user_service.set_verification(db, user.id, VerificationStatus.VERIFIED)


async def test_soft_delete_keeps_row_and_deactivates_keys(db, make_user):
    user = await make_user()
    api_key, _secret = await api_key_service.issue_api_key(
        db, user.id, "CI", [ApiKeyScope.PROFILE_READ.value]
    )

    deleted = await user_service.soft_delete_user(db, user.id)
    await db.refresh(api_key)

    assert deleted.is_deleted is True
    assert deleted.status == UserStatus.DELETED
    assert deleted.deleted_at is not None
    assert api_key.is_active is False
    assert (await user_service.get_user(db, user.id)).id == user.id


async def test_stats_delta_moves_balances(db, make_user):
    user = await make_user()

    await user_service.apply_stats_delta(
        db, user.id, StatsDelta(total_earnings=Decimal("50"), available_balance=Decimal("50"))
    )
    await user_service.apply_stats_delta(
        db, user.id, StatsDelta(available_balance=Decimal("-20"), pending_payouts=Decimal("20"))
    )

    assert user.total_earnings == Decimal("50")
    assert user.available_balance == Decimal("30")
    assert user.pending_payouts == Decimal("20")


async def test_stats_delta_refuses_to_break_invariant(db, make_user):
    user = await make_user()
    await user_service.apply_stats_delta(
        db, user.id, StatsDelta(total_earnings=Decimal("10"), available_balance=Decimal("10"))
    )

    with pytest.raises(ValidationError):
        await user_service.apply_stats_delta(db, user.id, StatsDelta(pending_payouts=Decimal("5")))

    assert user.available_balance == Decimal("10")
    assert user.pending_payouts == Decimal("0")


async def test_stats_delta_builds_on_the_stored_row(db, make_user):
    user = await make_user()
    # A credit committed by another writer, not reflected in this session's User
    await db.execute(
        update(User)
        .where(User.id == user.id)
        .values(total_earnings=Decimal("40"), available_balance=Decimal("40"))
    )

    await user_service.apply_stats_delta(
        db, user.id, StatsDelta(total_earnings=Decimal("2.5"), available_balance=Decimal("2.5"))
    )

    result = await db.execute(
        select(User.total_earnings, User.available_balance).where(User.id == user.id)
    )
    stored = result.one()
    assert stored == (Decimal("42.5"), Decimal("42.5"))
    assert user.available_balance == Decimal("42.5")


def test_balance_invariant_rejects_negative_stats():
    with pytest.raises(ValidationError):
        check_balance_invariant(Decimal("10"), Decimal("-1"), Decimal("0"))

    check_balance_invariant(Decimal("10"), Decimal("4"), Decimal("6"))
