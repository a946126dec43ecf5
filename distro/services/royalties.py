"""
Royalty ingestion and processing service.

Business rules:
1. Ingestion converts the gross store amount to the system currency:
   - amount_in_system_currency = amount * exchange_rate
   - tax_amount = amount_in_system_currency * tax_rate
   - net_amount = amount_in_system_currency - tax_amount

2. Processing (pending -> processed) writes the splits:
   - sum(percentage) <= 100, each percentage in (0, 100]
   - split.amount = amount_in_system_currency * percentage / 100
   - split.tax_amount = split.amount * (split.tax_rate or royalty.tax_rate)
   - recouped = min(split.amount - split.tax_amount, advance_balance) when recoupable
   - split.net_amount = split.amount - split.tax_amount - recouped
   - sum(split.amount - split.tax_amount) may not exceed royalty.net_amount
     by more than one minor unit per split

3. Leaving 'processed' (hold, disputed, void) unwinds the splits: the
   recipients' credited earnings and any recoupment entries are reversed.
   Not allowed while a split is attached to a live payout.
"""
from __future__ import annotations

import calendar
import logging
import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, List, Sequence
from uuid import UUID

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from distro.core.config import settings
from distro.core.database import utcnow
from distro.core.errors import ConflictError, InvalidTransition, NotFoundError, ValidationError
from distro.core.money import HUNDRED, ZERO, minor_unit, percent_of, quantize_storage, total
from distro.models import (
    AdvanceLedgerEntry,
    LedgerEntryType,
    RecipientType,
    Royalty,
    RoyaltySplit,
    RoyaltyStatus,
    RoyaltyType,
    ROYALTY_TRANSITIONS,
)
from distro.services.fx import FXService, fx_service as default_fx_service
from distro.services.users import StatsDelta, apply_stats_delta, get_user

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SplitSpec:
    """Requested share of a royalty for one recipient."""
    recipient_id: UUID
    percentage: Decimal
    recipient_type: RecipientType = RecipientType.USER
    is_recoupable: bool = False
    tax_rate: Decimal | None = None
    name: str | None = None
    email: str | None = None


def validate_split_percentages(specs: Sequence[SplitSpec]) -> None:
    """
    Reject split sets that can not be applied.

    Raises:
        ValidationError: empty set, a percentage outside (0, 100], or a
            total above 100
    """
    if not specs:
        raise ValidationError("At least one split is required")

    for spec in specs:
        pct = Decimal(spec.percentage)
        if pct <= 0 or pct > HUNDRED:
            raise ValidationError(
                f"Split percentage for {spec.recipient_id} must be in (0, 100], got {pct}"
            )
        if spec.tax_rate is not None and not (ZERO <= Decimal(spec.tax_rate) < 1):
            raise ValidationError(f"Split tax rate must be in [0, 1), got {spec.tax_rate}")

    pct_total = total(spec.percentage for spec in specs)
    if pct_total > HUNDRED:
        raise ValidationError(f"Split percentages total {pct_total}%, which exceeds 100%")


def reconcile_splits(royalty: Royalty, splits: Sequence[RoyaltySplit]) -> None:
    """
    Check the splits against the royalty's net amount.

    Raises:
        ValidationError: if the splits allocate more than the royalty's net
    """
    allocated = total(s.amount - s.tax_amount for s in splits)
    tolerance = minor_unit(royalty.system_currency) * len(splits)
    if allocated > royalty.net_amount + tolerance:
        raise ValidationError(
            f"Splits allocate {allocated} {royalty.system_currency} but the royalty "
            f"net amount is {royalty.net_amount}"
        )
    for split in splits:
        expected = split.amount - split.tax_amount - split.advance_recouped
        if split.net_amount != expected:
            raise ValidationError(
                f"Split {split.recipient_id} net {split.net_amount} != "
                f"amount - tax - recouped ({expected})"
            )


async def get_royalty(db: AsyncSession, royalty_id: UUID) -> Royalty:
    result = await db.execute(select(Royalty).where(Royalty.id == royalty_id))
    royalty = result.scalar_one_or_none()
    if royalty is None:
        raise NotFoundError("Royalty", royalty_id)
    return royalty


async def create_royalty(
    db: AsyncSession,
    *,
    track_id: UUID,
    store_name: str,
    amount: Decimal,
    currency: str,
    period_start: date,
    period_end: date,
    reporting_date: date | None = None,
    store_id: UUID | None = None,
    royalty_type: RoyaltyType = RoyaltyType.STREAM,
    quantity: int = 0,
    rate: Decimal = ZERO,
    tax_rate: Decimal = ZERO,
    notes: str | None = None,
    fx: FXService | None = None,
) -> Royalty:
    """
    Ingest one store-report line as a pending royalty.

    Raises:
        ValidationError: negative amounts, inverted period, bad tax rate
        ExchangeRateUnavailable: no rate to the system currency
    """
    fx = fx or default_fx_service
    amount = Decimal(amount)
    tax_rate = Decimal(tax_rate)

    if amount < 0:
        raise ValidationError("Royalty amount can not be negative")
    if quantity < 0:
        raise ValidationError("Royalty quantity can not be negative")
    if period_end < period_start:
        raise ValidationError("period_end must be >= period_start")
    if not (ZERO <= tax_rate < 1):
        raise ValidationError(f"Tax rate must be in [0, 1), got {tax_rate}")

    system_currency = settings.SYSTEM_CURRENCY
    converted, exchange_rate = fx.convert(amount, currency, system_currency, period_end)
    amount_in_system_currency = quantize_storage(converted)
    tax_amount = quantize_storage(amount_in_system_currency * tax_rate)

    royalty = Royalty(
        track_id=track_id,
        store_id=store_id,
        store_name=store_name,
        type=royalty_type,
        status=RoyaltyStatus.PENDING,
        quantity=quantity,
        rate=rate,
        amount=amount,
        currency=currency.upper(),
        exchange_rate=exchange_rate,
        amount_in_system_currency=amount_in_system_currency,
        system_currency=system_currency,
        tax_rate=tax_rate,
        tax_amount=tax_amount,
        net_amount=amount_in_system_currency - tax_amount,
        period_start=period_start,
        period_end=period_end,
        reporting_date=reporting_date or period_end,
        notes=notes,
    )
    db.add(royalty)
    await db.flush()
    logger.info(
        f"Ingested royalty {royalty.id} from {store_name}: {amount} {currency} "
        f"-> {amount_in_system_currency} {system_currency}"
    )
    return royalty


async def record_advance(
    db: AsyncSession,
    recipient_id: UUID,
    amount: Decimal,
    description: str | None = None,
    reference: str | None = None,
) -> AdvanceLedgerEntry:
    """Record an advance paid to a recipient (system currency)."""
    amount = Decimal(amount)
    if amount <= 0:
        raise ValidationError("Advance amount must be positive")
    await get_user(db, recipient_id)

    entry = AdvanceLedgerEntry(
        recipient_id=recipient_id,
        entry_type=LedgerEntryType.ADVANCE,
        amount=amount,
        currency=settings.SYSTEM_CURRENCY,
        description=description,
        reference=reference,
    )
    db.add(entry)
    await db.flush()
    logger.info(f"Recorded advance of {amount} for recipient {recipient_id}")
    return entry


async def get_advance_balance(db: AsyncSession, recipient_id: UUID) -> Decimal:
    """
    Calculate current advance balance for a recipient.

    balance = sum(advances) - sum(recoupments)
    """
    advance_result = await db.execute(
        select(func.coalesce(func.sum(AdvanceLedgerEntry.amount), 0)).where(
            AdvanceLedgerEntry.recipient_id == recipient_id,
            AdvanceLedgerEntry.entry_type == LedgerEntryType.ADVANCE,
        )
    )
    total_advances = Decimal(str(advance_result.scalar()))

    recoupment_result = await db.execute(
        select(func.coalesce(func.sum(AdvanceLedgerEntry.amount), 0)).where(
            AdvanceLedgerEntry.recipient_id == recipient_id,
            AdvanceLedgerEntry.entry_type == LedgerEntryType.RECOUPMENT,
        )
    )
    total_recoupments = Decimal(str(recoupment_result.scalar()))

    return total_advances - total_recoupments


async def process_royalty(
    db: AsyncSession,
    royalty_id: UUID,
    specs: Sequence[SplitSpec],
) -> Royalty:
    """
    Compute splits, recoup advances, credit recipients, and mark processed.

    Raises:
        InvalidTransition: royalty is not pending
        ValidationError: invalid split set or reconciliation failure
        NotFoundError: a recipient does not exist
    """
    royalty = await get_royalty(db, royalty_id)
    if royalty.status != RoyaltyStatus.PENDING:
        raise InvalidTransition("Royalty", royalty.status.value, RoyaltyStatus.PROCESSED.value)

    validate_split_percentages(specs)

    # Built in memory and reconciled before anything is added to the session
    splits: List[RoyaltySplit] = []
    recoupments: List[AdvanceLedgerEntry] = []
    advance_balances: Dict[UUID, Decimal] = {}
    for position, spec in enumerate(specs):
        recipient = await get_user(db, spec.recipient_id)
        if recipient.is_deleted:
            raise ValidationError(f"Recipient {spec.recipient_id} is deleted")

        amount = percent_of(royalty.amount_in_system_currency, spec.percentage)
        tax_rate = Decimal(spec.tax_rate) if spec.tax_rate is not None else royalty.tax_rate
        tax_amount = quantize_storage(amount * tax_rate)

        recouped = ZERO
        if spec.is_recoupable:
            if spec.recipient_id not in advance_balances:
                advance_balances[spec.recipient_id] = await get_advance_balance(db, spec.recipient_id)
            balance = advance_balances[spec.recipient_id]
            if balance > 0:
                recouped = min(amount - tax_amount, balance)
                advance_balances[spec.recipient_id] = balance - recouped

        split = RoyaltySplit(
            id=uuid.uuid4(),
            royalty_id=royalty.id,
            position=position,
            recipient_id=spec.recipient_id,
            recipient_type=spec.recipient_type,
            name=spec.name or recipient.display_name,
            email=spec.email or recipient.email,
            percentage=Decimal(spec.percentage),
            amount=amount,
            currency=royalty.system_currency,
            is_recoupable=spec.is_recoupable,
            tax_rate=spec.tax_rate,
            tax_amount=tax_amount,
            advance_recouped=recouped,
            net_amount=amount - tax_amount - recouped,
        )
        splits.append(split)

        if recouped > 0:
            recoupments.append(
                AdvanceLedgerEntry(
                    recipient_id=spec.recipient_id,
                    entry_type=LedgerEntryType.RECOUPMENT,
                    amount=recouped,
                    currency=royalty.system_currency,
                    royalty_split_id=split.id,
                    description=f"Recoupment from royalty {royalty.id}",
                )
            )

    reconcile_splits(royalty, splits)

    db.add_all(splits)
    await db.flush()
    db.add_all(recoupments)
    await db.flush()

    # Recipient rows are locked in id order
    for split in sorted(splits, key=lambda s: str(s.recipient_id)):
        if split.net_amount > 0:
            await apply_stats_delta(
                db,
                split.recipient_id,
                StatsDelta(total_earnings=split.net_amount, available_balance=split.net_amount),
            )

    royalty.status = RoyaltyStatus.PROCESSED
    royalty.processed_at = utcnow()
    royalty.is_tax_processed = True
    royalty.is_recouped = any(s.advance_recouped > 0 for s in splits)
    await db.flush()
    await db.refresh(royalty, attribute_names=["splits"])

    logger.info(
        f"Processed royalty {royalty.id}: {len(splits)} splits, "
        f"net={royalty.net_amount} {royalty.system_currency}"
    )
    return royalty


async def _unwind_splits(db: AsyncSession, royalty: Royalty) -> None:
    """Reverse credits and recoupments written by process_royalty."""
    for split in sorted(royalty.splits, key=lambda s: str(s.recipient_id)):
        if split.net_amount > 0:
            await apply_stats_delta(
                db,
                split.recipient_id,
                StatsDelta(
                    total_earnings=-split.net_amount,
                    available_balance=-split.net_amount,
                ),
            )

    split_ids = [s.id for s in royalty.splits]
    if split_ids:
        await db.execute(
            delete(AdvanceLedgerEntry).where(AdvanceLedgerEntry.royalty_split_id.in_(split_ids))
        )
        await db.execute(delete(RoyaltySplit).where(RoyaltySplit.id.in_(split_ids)))
    await db.flush()
    await db.refresh(royalty, attribute_names=["splits"])
    royalty.is_recouped = False
    royalty.is_tax_processed = False


async def transition_royalty(
    db: AsyncSession,
    royalty_id: UUID,
    target: RoyaltyStatus,
    specs: Sequence[SplitSpec] | None = None,
) -> Royalty:
    """
    Move a royalty through its status machine.

    Raises:
        InvalidTransition: transition not in ROYALTY_TRANSITIONS
        ConflictError: leaving 'processed' while a split is attached
    """
    royalty = await get_royalty(db, royalty_id)

    if target not in ROYALTY_TRANSITIONS[royalty.status]:
        raise InvalidTransition("Royalty", royalty.status.value, target.value)

    if target == RoyaltyStatus.PROCESSED:
        if not specs:
            raise ValidationError("Processing a royalty requires its splits")
        return await process_royalty(db, royalty_id, specs)

    if royalty.status == RoyaltyStatus.PROCESSED:
        attached = [s for s in royalty.splits if s.is_attached]
        if attached:
            raise ConflictError(
                f"Royalty {royalty_id} has {len(attached)} split(s) attached to a live payout"
            )
        await _unwind_splits(db, royalty)

    previous = royalty.status
    royalty.status = target
    await db.flush()
    logger.info(f"Royalty {royalty_id} {previous.value} -> {target.value}")
    return royalty


# ---------------------------------------------------------------------------
# Monthly report
# ---------------------------------------------------------------------------

@dataclass
class StoreLine:
    store_name: str
    amount: Decimal = ZERO
    net_amount: Decimal = ZERO
    quantity: int = 0


@dataclass
class TrackLine:
    track_id: UUID
    currency: str
    stores: List[StoreLine] = field(default_factory=list)
    amount: Decimal = ZERO
    net_amount: Decimal = ZERO
    quantity: int = 0


@dataclass
class CurrencyTotal:
    currency: str
    amount: Decimal = ZERO
    net_amount: Decimal = ZERO
    quantity: int = 0


@dataclass
class MonthlyReport:
    recipient_id: UUID
    year: int
    month: int
    tracks: List[TrackLine] = field(default_factory=list)
    totals: List[CurrencyTotal] = field(default_factory=list)


def month_bounds(year: int, month: int) -> tuple[date, date]:
    if not 1 <= month <= 12:
        raise ValidationError(f"month must be in 1..12, got {month}")
    if not 1 <= year <= 9999:
        raise ValidationError(f"year out of range: {year}")
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


async def monthly_report(db: AsyncSession, recipient_id: UUID, year: int, month: int) -> MonthlyReport:
    """
    One recipient's share of the royalties reported in a calendar month.

    Lines are grouped by track and currency, then by store; tracks are
    sorted by amount, highest first. Amounts are the recipient's split
    amounts, quantities the reported units of each royalty.
    """
    start, end = month_bounds(year, month)
    await get_user(db, recipient_id)

    result = await db.execute(
        select(RoyaltySplit, Royalty)
        .join(Royalty, RoyaltySplit.royalty_id == Royalty.id)
        .where(
            RoyaltySplit.recipient_id == recipient_id,
            Royalty.reporting_date >= start,
            Royalty.reporting_date <= end,
        )
        .order_by(Royalty.reporting_date, Royalty.id, RoyaltySplit.position)
    )

    tracks: Dict[tuple, TrackLine] = {}
    stores: Dict[tuple, StoreLine] = {}
    totals: Dict[str, CurrencyTotal] = {}
    for split, royalty in result.all():
        track_key = (royalty.track_id, split.currency)
        track = tracks.setdefault(track_key, TrackLine(track_id=royalty.track_id, currency=split.currency))
        store = stores.get(track_key + (royalty.store_name,))
        if store is None:
            store = StoreLine(store_name=royalty.store_name)
            stores[track_key + (royalty.store_name,)] = store
            track.stores.append(store)
        grand = totals.setdefault(split.currency, CurrencyTotal(currency=split.currency))

        for line in (store, track, grand):
            line.amount += split.amount
            line.net_amount += split.net_amount
            line.quantity += royalty.quantity

    for track in tracks.values():
        track.stores.sort(key=lambda s: (-s.amount, s.store_name))

    report = MonthlyReport(
        recipient_id=recipient_id,
        year=year,
        month=month,
        tracks=sorted(tracks.values(), key=lambda t: (-t.amount, str(t.track_id), t.currency)),
        totals=[totals[c] for c in sorted(totals)],
    )
    logger.debug(f"Monthly report {year}-{month:02d} for {recipient_id}: {len(report.tracks)} track line(s)")
    return report
