"""
Payout aggregation and status machine.

Aggregation rules:
1. Eligible splits: royalty status 'processed', split not attached
   (payout_id IS NULL), net_amount > 0, eligible_after unset or past.

2. One PayoutItem per contributing royalty:
   - amount = sum of the recipient's split net amounts on that royalty
   - amount_in_payout_currency = quantize(amount * fx_rate)
   - payout.amount = sum(items.amount_in_payout_currency), exact

3. Threshold: if payout.amount < minimum_payout_amount nothing is written
   and a ThresholdSkip is returned. No partial payouts.

4. Attachment: each split is claimed with a conditional write
   (UPDATE ... WHERE payout_id IS NULL). If any claim affects no row the
   whole aggregation is rolled back to its savepoint and ConflictError is
   raised; the caller retries with a refreshed eligible set.

Status machine: see PAYOUT_TRANSITIONS. Entering failed, cancelled or
reversed releases every split attached to the payout, driven from the
split rows rather than the payout's item list.
"""
from __future__ import annotations

import logging
import secrets
from collections import OrderedDict
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Dict, List, Sequence, Tuple
from uuid import UUID

from sqlalchemy import func, or_, select, update
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from distro.core.config import settings
from distro.core.database import utcnow
from distro.core.errors import (
    ConflictError,
    ExternalDependencyError,
    InvalidTransition,
    NotFoundError,
    ThresholdSkip,
    ValidationError,
)
from distro.core.money import HUNDRED, ZERO, quantize, quantize_storage, total
from distro.models import (
    PAYOUT_TRANSITIONS,
    RELEASING_STATUSES,
    Payout,
    PayoutCurrency,
    PayoutItem,
    PayoutMethod,
    PayoutRecipient,
    PayoutStatus,
    Royalty,
    RoyaltySplit,
    RoyaltyStatus,
)
from distro.services.fx import FXService, fx_service as default_fx_service
from distro.services.payment_gateway import PaymentGateway, PaymentResult
from distro.services.retry import run_with_retries
from distro.services.users import StatsDelta, apply_stats_delta, get_user

logger = logging.getLogger(__name__)

RECIPIENT_FIELDS = (
    "name",
    "email",
    "tax_id",
    "tax_form_submitted",
    "withholding_rate",
    "payment_method",
    "payout_currency",
    "minimum_payout_amount",
    "bank_account",
    "paypal",
    "address",
)


# ---------------------------------------------------------------------------
# Recipients
# ---------------------------------------------------------------------------

async def get_recipient(db: AsyncSession, user_id: UUID) -> PayoutRecipient:
    result = await db.execute(
        select(PayoutRecipient).where(PayoutRecipient.user_id == user_id)
    )
    recipient = result.scalar_one_or_none()
    if recipient is None:
        raise NotFoundError("PayoutRecipient", user_id)
    return recipient


async def upsert_recipient(db: AsyncSession, user_id: UUID, **fields) -> PayoutRecipient:
    """Create or update a user's payout details."""
    user = await get_user(db, user_id)

    unknown = set(fields) - set(RECIPIENT_FIELDS)
    if unknown:
        raise ValidationError(f"Unknown recipient fields: {', '.join(sorted(unknown))}")
    if fields.get("minimum_payout_amount") is not None and Decimal(fields["minimum_payout_amount"]) < 0:
        raise ValidationError("minimum_payout_amount can not be negative")
    rate = fields.get("withholding_rate")
    if rate is not None and not (ZERO <= Decimal(rate) < 1):
        raise ValidationError(f"withholding_rate must be in [0, 1), got {rate}")

    result = await db.execute(
        select(PayoutRecipient).where(PayoutRecipient.user_id == user_id)
    )
    recipient = result.scalar_one_or_none()
    if recipient is None:
        recipient = PayoutRecipient(
            user_id=user_id,
            name=fields.pop("name", None) or user.display_name,
            email=fields.pop("email", None) or user.email,
        )
        db.add(recipient)

    for key, value in fields.items():
        if value is not None:
            setattr(recipient, key, value)

    await db.flush()
    return recipient


# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------

async def eligible_splits(
    db: AsyncSession,
    recipient_id: UUID,
    now: datetime | None = None,
) -> List[RoyaltySplit]:
    """Splits of processed royalties the recipient can be paid for now."""
    now = now or utcnow()
    result = await db.execute(
        select(RoyaltySplit)
        .join(Royalty, Royalty.id == RoyaltySplit.royalty_id)
        .where(
            RoyaltySplit.recipient_id == recipient_id,
            RoyaltySplit.payout_id.is_(None),
            RoyaltySplit.net_amount > 0,
            or_(RoyaltySplit.eligible_after.is_(None), RoyaltySplit.eligible_after <= now),
            Royalty.status == RoyaltyStatus.PROCESSED,
        )
        .order_by(Royalty.period_end, Royalty.id, RoyaltySplit.position)
    )
    return list(result.scalars().all())


async def recipients_with_eligible_splits(db: AsyncSession, now: datetime | None = None) -> List[UUID]:
    now = now or utcnow()
    result = await db.execute(
        select(RoyaltySplit.recipient_id)
        .join(Royalty, Royalty.id == RoyaltySplit.royalty_id)
        .where(
            RoyaltySplit.payout_id.is_(None),
            RoyaltySplit.net_amount > 0,
            or_(RoyaltySplit.eligible_after.is_(None), RoyaltySplit.eligible_after <= now),
            Royalty.status == RoyaltyStatus.PROCESSED,
        )
        .distinct()
    )
    return sorted(result.scalars().all(), key=str)


def _generate_reference(now: datetime) -> str:
    return f"PO-{now:%Y%m%d}-{secrets.token_hex(4).upper()}"


def compute_fee(amount: Decimal, currency: str) -> Decimal:
    """Flat plus percentage fee from settings, never more than the amount."""
    if amount <= 0:
        return ZERO
    fee = settings.PAYOUT_FEE_FIXED + amount * settings.PAYOUT_FEE_PERCENT / HUNDRED
    return min(quantize(fee, currency), amount)


async def _load_royalties(db: AsyncSession, royalty_ids: Sequence[UUID]) -> Dict[UUID, Royalty]:
    result = await db.execute(select(Royalty).where(Royalty.id.in_(royalty_ids)))
    return {r.id: r for r in result.scalars().all()}


async def aggregate_payout(
    db: AsyncSession,
    recipient_id: UUID,
    fx: FXService | None = None,
    *,
    payout_currency: PayoutCurrency | None = None,
    minimum_payout_amount: Decimal | None = None,
    splits: Sequence[RoyaltySplit] | None = None,
    batch_id: UUID | None = None,
    now: datetime | None = None,
) -> Payout | ThresholdSkip:
    """
    Build a draft payout from a recipient's eligible royalty splits.

    Args:
        db: Database session
        recipient_id: User being paid
        fx: FX service for split currency -> payout currency
        payout_currency: Defaults to the recipient's payout currency
        minimum_payout_amount: Defaults to the recipient's minimum
        splits: Explicit eligible set; loaded from the database when None

    Returns:
        The draft Payout, or ThresholdSkip when the total is below the minimum

    Raises:
        NotFoundError: recipient has no payout details
        ValidationError: a supplied split belongs to someone else
        ExchangeRateUnavailable: a currency pair has no rate
        ConflictError: a split was attached by a concurrent aggregation
    """
    fx = fx or default_fx_service
    now = now or utcnow()
    recipient = await get_recipient(db, recipient_id)
    currency = PayoutCurrency(payout_currency or recipient.payout_currency)
    minimum = Decimal(
        minimum_payout_amount if minimum_payout_amount is not None else recipient.minimum_payout_amount
    )

    if splits is None:
        splits = await eligible_splits(db, recipient_id, now=now)
    for split in splits:
        if split.recipient_id != recipient_id:
            raise ValidationError(f"Split {split.id} does not belong to recipient {recipient_id}")

    # Group by royalty, keeping eligible-set order
    groups: "OrderedDict[UUID, List[RoyaltySplit]]" = OrderedDict()
    for split in splits:
        groups.setdefault(split.royalty_id, []).append(split)

    royalties = await _load_royalties(db, list(groups)) if groups else {}
    for royalty_id in groups:
        royalty = royalties.get(royalty_id)
        if royalty is None:
            raise NotFoundError("Royalty", royalty_id)
        if royalty.status != RoyaltyStatus.PROCESSED:
            raise ValidationError(f"Royalty {royalty_id} is {royalty.status.value}, not processed")

    withholding_rate = Decimal(recipient.withholding_rate or 0)
    lines: List[Tuple[Royalty, List[RoyaltySplit], PayoutItem]] = []
    for royalty_id, group in groups.items():
        royalty = royalties[royalty_id]
        split_currency = group[0].currency
        amount = total(s.net_amount for s in group)
        rate = fx.get_rate(split_currency, currency.value, royalty.period_end)
        converted = quantize(amount * rate, currency.value)
        tax_amount = quantize(converted * withholding_rate, currency.value)
        item = PayoutItem(
            royalty_id=royalty_id,
            amount=amount,
            currency=split_currency,
            exchange_rate=rate,
            amount_in_payout_currency=converted,
            tax_amount=tax_amount,
            fee_amount=ZERO,
            net_amount=converted - tax_amount,
            split_ids=[str(s.id) for s in group],
        )
        lines.append((royalty, group, item))

    candidate = total(item.amount_in_payout_currency for _, _, item in lines)
    if candidate <= 0 or candidate < minimum:
        logger.info(
            f"Recipient {recipient_id}: {candidate} {currency.value} below minimum "
            f"{minimum}, no payout created"
        )
        return ThresholdSkip(
            recipient_id=recipient_id,
            candidate_amount=candidate,
            minimum_payout_amount=minimum,
            currency=currency.value,
        )

    amount_in_system_currency = total(item.amount for _, _, item in lines)
    tax_amount = total(item.tax_amount for _, _, item in lines)
    fee_amount = compute_fee(candidate - tax_amount, currency.value)

    async with db.begin_nested():
        payout = Payout(
            recipient_id=recipient_id,
            batch_id=batch_id,
            reference=_generate_reference(now),
            status=PayoutStatus.DRAFT,
            amount=candidate,
            currency=currency,
            exchange_rate=quantize_storage(candidate / amount_in_system_currency)
            if amount_in_system_currency
            else Decimal("1"),
            amount_in_system_currency=amount_in_system_currency,
            fee_amount=fee_amount,
            tax_amount=tax_amount,
            net_amount=candidate - fee_amount - tax_amount,
            payment_method=PayoutMethod(recipient.payment_method),
            items=[item for _, _, item in lines],
        )
        db.add(payout)
        await db.flush()

        for _, group, _ in lines:
            for split in group:
                await _attach_split(db, split.id, payout.id, now)

        await apply_stats_delta(
            db,
            recipient_id,
            StatsDelta(
                available_balance=-amount_in_system_currency,
                pending_payouts=amount_in_system_currency,
            ),
        )

    logger.info(
        f"Created draft payout {payout.reference} for {recipient_id}: "
        f"{payout.amount} {currency.value} from {len(lines)} royalties"
    )
    return payout


async def _attach_split(db: AsyncSession, split_id: UUID, payout_id: UUID, now: datetime) -> None:
    """Claim one split for a payout, or raise ConflictError if already claimed."""
    result = await db.execute(
        update(RoyaltySplit)
        .where(
            RoyaltySplit.id == split_id,
            RoyaltySplit.payout_id.is_(None),
            or_(RoyaltySplit.eligible_after.is_(None), RoyaltySplit.eligible_after <= now),
        )
        .values(payout_id=payout_id, attached_at=now)
    )
    if result.rowcount != 1:
        raise ConflictError(f"Royalty split {split_id} is already attached or no longer eligible")


# ---------------------------------------------------------------------------
# Status machine
# ---------------------------------------------------------------------------

async def get_payout(db: AsyncSession, payout_id: UUID) -> Payout:
    result = await db.execute(select(Payout).where(Payout.id == payout_id))
    payout = result.scalar_one_or_none()
    if payout is None:
        raise NotFoundError("Payout", payout_id)
    return payout


async def list_payouts(
    db: AsyncSession,
    recipient_id: UUID | None = None,
    status: PayoutStatus | None = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Payout]:
    query = select(Payout).order_by(Payout.created_at.desc())
    if recipient_id is not None:
        query = query.where(Payout.recipient_id == recipient_id)
    if status is not None:
        query = query.where(Payout.status == status)
    result = await db.execute(query.limit(limit).offset(offset))
    return list(result.scalars().all())


async def attached_split_count(db: AsyncSession, payout_id: UUID) -> int:
    result = await db.execute(
        select(func.count()).select_from(RoyaltySplit).where(RoyaltySplit.payout_id == payout_id)
    )
    return int(result.scalar_one())


async def release_attachment(
    db: AsyncSession,
    payout_id: UUID,
    eligible_after: datetime | None = None,
) -> int:
    """
    Detach every split still claimed by a payout.

    Idempotent: the split rows are the source of truth, so a retry after a
    partial failure only touches what is still attached. Database errors are
    retried inside a savepoint.

    Returns:
        Number of splits released by this call
    """

    async def _release() -> int:
        async with db.begin_nested():
            result = await db.execute(
                update(RoyaltySplit)
                .where(RoyaltySplit.payout_id == payout_id)
                .values(payout_id=None, attached_at=None, eligible_after=eligible_after)
            )
            return result.rowcount

    released = await run_with_retries(
        _release,
        label=f"Release of payout {payout_id}",
        retry_on=(DBAPIError,),
    )
    remaining = await attached_split_count(db, payout_id)
    if remaining:
        raise ConflictError(f"Payout {payout_id} still has {remaining} attached split(s)")
    logger.info(f"Released {released} split(s) from payout {payout_id}")
    return released


async def transition_payout(
    db: AsyncSession,
    payout_id: UUID,
    target: PayoutStatus,
    *,
    actor_id: UUID | None = None,
    payment_reference: str | None = None,
    reason: str | None = None,
    now: datetime | None = None,
) -> Payout:
    """
    Move a payout through its status machine and apply the side effects.

    Raises:
        InvalidTransition: target not reachable from the current status
        ValidationError: paid without a payment reference
    """
    now = now or utcnow()
    payout = await get_payout(db, payout_id)
    current = payout.status

    if target not in PAYOUT_TRANSITIONS[current]:
        raise InvalidTransition("Payout", current.value, target.value)

    system_amount = payout.amount_in_system_currency

    if target == PayoutStatus.PROCESSING:
        payout.processed_by = actor_id
        payout.processed_at = now

    elif target == PayoutStatus.PAID:
        if not payment_reference:
            raise ValidationError("A payment reference is required to mark a payout paid")
        payout.payment_reference = payment_reference
        payout.payment_date = now
        await apply_stats_delta(
            db,
            payout.recipient_id,
            StatsDelta(pending_payouts=-system_amount, last_payout_date=now),
        )

    elif target in RELEASING_STATUSES:
        payout.failure_reason = reason
        if target == PayoutStatus.REVERSED:
            # pending_payouts was already settled when the payout was paid
            eligible_after = now + timedelta(days=settings.REVERSAL_COOLDOWN_DAYS)
            delta = StatsDelta(available_balance=system_amount)
        else:
            eligible_after = None
            delta = StatsDelta(available_balance=system_amount, pending_payouts=-system_amount)
        await release_attachment(db, payout.id, eligible_after=eligible_after)
        await apply_stats_delta(db, payout.recipient_id, delta)

    payout.status = target
    await db.flush()
    logger.info(f"Payout {payout.reference} {current.value} -> {target.value}")
    return payout


async def submit_payout(db: AsyncSession, payout_id: UUID) -> Payout:
    return await transition_payout(db, payout_id, PayoutStatus.PENDING)


async def start_payout(db: AsyncSession, payout_id: UUID, actor_id: UUID | None = None) -> Payout:
    return await transition_payout(db, payout_id, PayoutStatus.PROCESSING, actor_id=actor_id)


async def mark_paid(db: AsyncSession, payout_id: UUID, payment_reference: str) -> Payout:
    return await transition_payout(
        db, payout_id, PayoutStatus.PAID, payment_reference=payment_reference
    )


async def mark_failed(db: AsyncSession, payout_id: UUID, reason: str | None = None) -> Payout:
    return await transition_payout(db, payout_id, PayoutStatus.FAILED, reason=reason)


async def cancel_payout(db: AsyncSession, payout_id: UUID, reason: str | None = None) -> Payout:
    return await transition_payout(db, payout_id, PayoutStatus.CANCELLED, reason=reason)


async def reverse_payout(db: AsyncSession, payout_id: UUID, reason: str | None = None) -> Payout:
    return await transition_payout(db, payout_id, PayoutStatus.REVERSED, reason=reason)


# ---------------------------------------------------------------------------
# Payment execution
# ---------------------------------------------------------------------------

async def execute_payout(
    db: AsyncSession,
    payout_id: UUID,
    gateway: PaymentGateway,
    actor_id: UUID | None = None,
) -> Payout:
    """
    Pay a pending payout through a gateway.

    pending -> processing, then paid on success or failed on rejection.
    Transport errors are retried; when retries run out the payout stays
    'processing' and ExternalDependencyError propagates.
    """
    payout = await get_payout(db, payout_id)
    if payout.status == PayoutStatus.PENDING:
        payout = await start_payout(db, payout_id, actor_id=actor_id)
    elif payout.status != PayoutStatus.PROCESSING:
        raise InvalidTransition("Payout", payout.status.value, PayoutStatus.PROCESSING.value)

    result: PaymentResult = await run_with_retries(
        lambda: gateway.execute(payout),
        label=f"Payment of {payout.reference}",
        retry_on=(ExternalDependencyError,),
    )

    if result.success:
        if not result.reference:
            raise ExternalDependencyError(
                f"Gateway confirmed {payout.reference} without a payment reference"
            )
        return await mark_paid(db, payout_id, result.reference)
    return await mark_failed(db, payout_id, reason=result.error)
