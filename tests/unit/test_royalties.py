"""Tests for royalty ingestion, splitting, recoupment and status changes."""

import uuid
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select

from distro.core.errors import (
    ConflictError,
    ExchangeRateUnavailable,
    InvalidTransition,
    NotFoundError,
    ValidationError,
)
from distro.models import RoyaltySplit, RoyaltyStatus
from distro.services import payouts as payout_service
from distro.services import royalties as royalty_service
from distro.services.royalties import SplitSpec, validate_split_percentages


async def _ingest(db, fx, amount="100", currency="USD", tax_rate="0"):
    return await royalty_service.create_royalty(
        db,
        track_id=uuid.uuid4(),
        store_name="Apple Music",
        amount=Decimal(amount),
        currency=currency,
        tax_rate=Decimal(tax_rate),
        period_start=date(2024, 1, 1),
        period_end=date(2024, 1, 31),
        fx=fx,
    )


async def test_ingestion_converts_to_system_currency(db, fx):
    royalty = await _ingest(db, fx, amount="100", currency="EUR", tax_rate="0.10")

    assert royalty.status == RoyaltyStatus.PENDING
    assert royalty.exchange_rate == Decimal("1.10")
    assert royalty.amount_in_system_currency == Decimal("110")
    assert royalty.tax_amount == Decimal("11")
    assert royalty.net_amount == Decimal("99")


async def test_ingestion_without_rate_fails(db, fx):
    with pytest.raises(ExchangeRateUnavailable):
        await _ingest(db, fx, currency="CHF")


async def test_ingestion_rejects_inverted_period(db, fx):
    with pytest.raises(ValidationError):
        await royalty_service.create_royalty(
            db,
            track_id=uuid.uuid4(),
            store_name="Deezer",
            amount=Decimal("1"),
            currency="USD",
            period_start=date(2024, 2, 1),
            period_end=date(2024, 1, 1),
            fx=fx,
        )


def test_split_percentages_over_100_rejected():
    specs = [
        SplitSpec(recipient_id=uuid.uuid4(), percentage=Decimal("60")),
        SplitSpec(recipient_id=uuid.uuid4(), percentage=Decimal("50")),
    ]
    with pytest.raises(ValidationError):
        validate_split_percentages(specs)


@pytest.mark.parametrize("percentage", ["0", "-5", "100.01"])
def test_split_percentage_out_of_range(percentage):
    with pytest.raises(ValidationError):
        validate_split_percentages([SplitSpec(recipient_id=uuid.uuid4(), percentage=Decimal(percentage))])


async def test_process_60_50_leaves_royalty_pending(db, fx, make_user):
    a = await make_user()
    b = await make_user()
    royalty = await _ingest(db, fx)

    with pytest.raises(ValidationError):
        await royalty_service.process_royalty(
            db,
            royalty.id,
            [
                SplitSpec(recipient_id=a.id, percentage=Decimal("60")),
                SplitSpec(recipient_id=b.id, percentage=Decimal("50")),
            ],
        )

    assert royalty.status == RoyaltyStatus.PENDING
    assert a.total_earnings == Decimal("0")


async def test_process_splits_and_credits_recipients(db, fx, make_user):
    a = await make_user()
    b = await make_user()
    royalty = await _ingest(db, fx, amount="200", tax_rate="0.05")

    processed = await royalty_service.process_royalty(
        db,
        royalty.id,
        [
            SplitSpec(recipient_id=a.id, percentage=Decimal("70")),
            SplitSpec(recipient_id=b.id, percentage=Decimal("30")),
        ],
    )

    assert processed.status == RoyaltyStatus.PROCESSED
    assert processed.processed_at is not None
    split_a, split_b = processed.splits
    assert split_a.amount == Decimal("140")
    assert split_a.tax_amount == Decimal("7")
    assert split_a.net_amount == Decimal("133")
    assert split_b.net_amount == Decimal("57")
    assert a.total_earnings == Decimal("133")
    assert a.available_balance == Decimal("133")
    assert b.available_balance == Decimal("57")


async def test_recoupable_split_recoups_advance(db, fx, make_user):
    artist = await make_user()
    await royalty_service.record_advance(db, artist.id, Decimal("50"), "Recording advance")
    royalty = await _ingest(db, fx, amount="80")

    processed = await royalty_service.process_royalty(
        db,
        royalty.id,
        [SplitSpec(recipient_id=artist.id, percentage=Decimal("100"), is_recoupable=True)],
    )

    split = processed.splits[0]
    assert split.advance_recouped == Decimal("50")
    assert split.net_amount == Decimal("30")
    assert processed.is_recouped is True
    assert await royalty_service.get_advance_balance(db, artist.id) == Decimal("0")
    assert artist.available_balance == Decimal("30")


async def test_partial_recoupment_leaves_balance(db, fx, make_user):
    artist = await make_user()
    await royalty_service.record_advance(db, artist.id, Decimal("500"))
    royalty = await _ingest(db, fx, amount="120")

    processed = await royalty_service.process_royalty(
        db,
        royalty.id,
        [SplitSpec(recipient_id=artist.id, percentage=Decimal("100"), is_recoupable=True)],
    )

    assert processed.splits[0].net_amount == Decimal("0")
    assert await royalty_service.get_advance_balance(db, artist.id) == Decimal("380")


async def test_rejected_reconciliation_writes_nothing(db, fx, make_recipient):
    artist = await make_recipient()
    await royalty_service.record_advance(db, artist.id, Decimal("10"))
    royalty = await _ingest(db, fx, amount="100", tax_rate="0.20")

    # A 0% split tax on a royalty taxed at 20% allocates more than its net
    with pytest.raises(ValidationError):
        await royalty_service.process_royalty(
            db,
            royalty.id,
            [
                SplitSpec(
                    recipient_id=artist.id,
                    percentage=Decimal("100"),
                    tax_rate=Decimal("0"),
                    is_recoupable=True,
                )
            ],
        )

    splits = await db.execute(select(RoyaltySplit).where(RoyaltySplit.royalty_id == royalty.id))
    assert splits.scalars().all() == []
    assert await royalty_service.get_advance_balance(db, artist.id) == Decimal("10")

    await royalty_service.process_royalty(
        db, royalty.id, [SplitSpec(recipient_id=artist.id, percentage=Decimal("100"))]
    )
    payout = await payout_service.aggregate_payout(db, artist.id, fx)

    assert payout.amount == Decimal("80.00")
    assert artist.available_balance == Decimal("0")
    assert artist.pending_payouts == Decimal("80")


async def test_recoupable_splits_of_one_recipient_share_the_advance(db, fx, make_user):
    artist = await make_user()
    await royalty_service.record_advance(db, artist.id, Decimal("60"))
    royalty = await _ingest(db, fx, amount="100")

    processed = await royalty_service.process_royalty(
        db,
        royalty.id,
        [
            SplitSpec(recipient_id=artist.id, percentage=Decimal("50"), is_recoupable=True),
            SplitSpec(recipient_id=artist.id, percentage=Decimal("50"), is_recoupable=True),
        ],
    )

    first, second = processed.splits
    assert first.advance_recouped == Decimal("50")
    assert second.advance_recouped == Decimal("10")
    assert await royalty_service.get_advance_balance(db, artist.id) == Decimal("0")
    assert artist.total_earnings == Decimal("40")


async def test_only_pending_can_be_processed(db, fx, make_user):
    artist = await make_user()
    royalty = await _ingest(db, fx)
    await royalty_service.transition_royalty(db, royalty.id, RoyaltyStatus.HOLD)

    with pytest.raises(InvalidTransition):
        await royalty_service.process_royalty(
            db, royalty.id, [SplitSpec(recipient_id=artist.id, percentage=Decimal("100"))]
        )


async def test_void_is_absorbing(db, fx):
    royalty = await _ingest(db, fx)
    await royalty_service.transition_royalty(db, royalty.id, RoyaltyStatus.VOID)

    with pytest.raises(InvalidTransition):
        await royalty_service.transition_royalty(db, royalty.id, RoyaltyStatus.PENDING)


async def test_hold_after_processing_unwinds_credits(db, fx, make_user):
    artist = await make_user()
    await royalty_service.record_advance(db, artist.id, Decimal("10"))
    royalty = await _ingest(db, fx, amount="40")
    await royalty_service.process_royalty(
        db,
        royalty.id,
        [SplitSpec(recipient_id=artist.id, percentage=Decimal("100"), is_recoupable=True)],
    )

    held = await royalty_service.transition_royalty(db, royalty.id, RoyaltyStatus.HOLD)

    assert held.status == RoyaltyStatus.HOLD
    assert held.splits == []
    assert artist.total_earnings == Decimal("0")
    assert artist.available_balance == Decimal("0")
    assert await royalty_service.get_advance_balance(db, artist.id) == Decimal("10")


async def test_cannot_dispute_royalty_attached_to_live_payout(db, fx, make_recipient, make_processed_royalty):
    artist = await make_recipient()
    royalty = await make_processed_royalty(artist.id, "25")
    await payout_service.aggregate_payout(db, artist.id, fx)

    with pytest.raises(ConflictError):
        await royalty_service.transition_royalty(db, royalty.id, RoyaltyStatus.DISPUTED)


async def _reported(db, fx, track_id, store_name, amount, reporting_date, quantity=0, currency="USD"):
    return await royalty_service.create_royalty(
        db,
        track_id=track_id,
        store_name=store_name,
        amount=Decimal(amount),
        currency=currency,
        quantity=quantity,
        period_start=date(2024, 2, 1),
        period_end=date(2024, 2, 29),
        reporting_date=reporting_date,
        fx=fx,
    )


async def test_monthly_report_groups_by_track_and_store(db, fx, make_user):
    artist = await make_user()
    producer = await make_user()
    ballad, anthem = uuid.uuid4(), uuid.uuid4()
    march = date(2024, 3, 15)

    lines = [
        (ballad, "Spotify", "10", march, 1000),
        (ballad, "Spotify", "4", date(2024, 3, 31), 400),
        (ballad, "Apple Music", "5", date(2024, 3, 1), 200),
        (anthem, "Spotify", "30", march, 3000),
        (anthem, "Spotify", "99", date(2024, 4, 1), 9900),
    ]
    for track_id, store_name, amount, reported, quantity in lines:
        royalty = await _reported(db, fx, track_id, store_name, amount, reported, quantity)
        await royalty_service.process_royalty(
            db,
            royalty.id,
            [
                SplitSpec(recipient_id=artist.id, percentage=Decimal("80")),
                SplitSpec(recipient_id=producer.id, percentage=Decimal("20")),
            ],
        )
    # Reported in March but still pending: no split for the artist yet
    await _reported(db, fx, ballad, "Deezer", "50", march)

    report = await royalty_service.monthly_report(db, artist.id, 2024, 3)

    assert [t.track_id for t in report.tracks] == [anthem, ballad]
    anthem_line, ballad_line = report.tracks
    assert anthem_line.amount == Decimal("24")
    assert anthem_line.quantity == 3000
    assert [(s.store_name, s.amount, s.quantity) for s in ballad_line.stores] == [
        ("Spotify", Decimal("11.2"), 1400),
        ("Apple Music", Decimal("4"), 200),
    ]
    assert ballad_line.amount == Decimal("15.2")
    assert [(t.currency, t.amount, t.quantity) for t in report.totals] == [("USD", Decimal("39.2"), 4600)]


async def test_monthly_report_for_an_empty_month(db, make_user):
    artist = await make_user()

    report = await royalty_service.monthly_report(db, artist.id, 2023, 2)

    assert report.tracks == []
    assert report.totals == []


@pytest.mark.parametrize("year, month", [(2024, 0), (2024, 13), (0, 5)])
async def test_monthly_report_rejects_bad_months(db, make_user, year, month):
    artist = await make_user()

    with pytest.raises(ValidationError):
        await royalty_service.monthly_report(db, artist.id, year, month)


async def test_monthly_report_for_unknown_recipient(db):
    with pytest.raises(NotFoundError):
        await royalty_service.monthly_report(db, uuid.uuid4(), 2024, 3)
