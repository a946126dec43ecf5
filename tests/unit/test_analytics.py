"""Tests for analytics event parsing, ingestion and daily summaries."""

import uuid
from datetime import date, datetime
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker

from distro.core.errors import NotFoundError, ValidationError
from distro.models import AnalyticsEventType, AnalyticsSummary
from distro.services import analytics as analytics_service
from distro.services.analytics import DailyRollup, derive_event_id, parse_event

DAY = date(2024, 5, 17)
TRACK = str(uuid.uuid4())
LISTENER = str(uuid.uuid4())


def _play(hour: int = 10, country: str = "fr", user_id: str = LISTENER, **extra) -> dict:
    return {
        "id": str(uuid.uuid4()),
        "event_type": "track_play",
        "occurred_at": f"2024-05-17T{hour:02d}:15:00Z",
        "track_id": TRACK,
        "user_id": user_id,
        "country": country,
        "device_type": "mobile",
        "os": "iOS",
        **extra,
    }


def _royalty(value: str, country: str = "FR") -> dict:
    return {
        "id": str(uuid.uuid4()),
        "event_type": "royalty_calculation",
        "occurred_at": "2024-05-17T23:59:59+00:00",
        "value": value,
        "currency": "USD",
        "country": country,
    }


def _summary_fields(summary) -> dict:
    record = {c: getattr(summary, c) for c in summary.__table__.columns.keys()}
    record.pop("updated_at")
    return record


def test_parse_valid_event():
    event = parse_event(_play(country="de"))

    assert event.malformed is False
    assert event.event_type == AnalyticsEventType.TRACK_PLAY
    assert event.country == "DE"
    assert event.device_type == "mobile"
    assert event.day == DAY
    assert event.occurred_at == datetime(2024, 5, 17, 10, 15)


def test_parse_converts_offsets_to_utc_day():
    raw = _play()
    raw["occurred_at"] = "2024-05-18T01:30:00+02:00"

    event = parse_event(raw)

    assert event.occurred_at == datetime(2024, 5, 17, 23, 30)
    assert event.day == DAY


@pytest.mark.parametrize(
    "raw",
    [
        {"event_type": "track_play", "occurred_at": "2024-05-17T10:00:00Z"},
        {"event_type": "teleport", "occurred_at": "2024-05-17T10:00:00Z"},
        {"event_type": "payout_processed", "occurred_at": "2024-05-17T10:00:00Z", "value": "-1"},
        {"event_type": "other", "occurred_at": "not a date"},
    ],
)
def test_parse_malformed_never_raises(raw):
    event = parse_event(raw, received_at=datetime(2024, 5, 17, 12, 0))

    assert event.malformed is True
    assert event.event_type == AnalyticsEventType.OTHER
    assert event.error_message
    assert event.day == DAY


def test_parse_non_mapping_payload():
    event = parse_event(["not", "an", "object"], received_at=datetime(2024, 5, 17, 12, 0))

    assert event.malformed is True


def test_extra_is_bounded():
    raw = _play(extra={f"k{i}": "v" for i in range(50)})

    assert parse_event(raw).malformed is True


def test_derived_ids_are_deterministic():
    raw = {"event_type": "user_login", "occurred_at": "2024-05-17T10:00:00Z", "user_id": LISTENER}

    assert parse_event(dict(raw)).id == parse_event(dict(reversed(list(raw.items())))).id
    assert derive_event_id(raw) != derive_event_id({**raw, "occurred_at": "2024-05-17T10:00:01Z"})


def test_rollup_breakdowns_sum_to_classified_total():
    events = [
        parse_event(_play(hour=1)),
        parse_event(_play(hour=1, country="US", os="Android")),
        parse_event({k: v for k, v in _play(hour=2).items() if k not in ("country", "device_type")}),
        parse_event(_royalty("12.50")),
        parse_event({"event_type": "bogus", "occurred_at": "2024-05-17T03:00:00Z"}),
    ]

    record = DailyRollup.from_events(events).to_record()

    classified = record["total_events"] - record["total_unclassified"]
    assert record["total_unclassified"] == 1
    assert record["total_plays"] == 3
    assert record["total_other"] == 1
    assert sum(record["by_device"].values()) == classified
    assert sum(record["by_os"].values()) == classified
    assert sum(record["by_hour"].values()) == classified
    assert record["by_device"]["unknown"] == 2
    assert set(record["by_country"]) == {"FR", "US", "unknown"}
    assert record["by_country"]["FR"]["revenue"] == "12.50"
    assert record["total_revenue"] == Decimal("12.50")
    assert record["unique_users"] == 1


def test_rollup_rejects_other_days():
    rollup = DailyRollup.from_events([parse_event(_play())])
    other = _play()
    other["occurred_at"] = "2024-05-18T10:00:00Z"

    with pytest.raises(ValidationError):
        rollup.add(parse_event(other))


async def test_ingest_builds_summary(db):
    report = await analytics_service.ingest_events(
        db, [_play(), _play(hour=11, user_id=str(uuid.uuid4())), _royalty("3.25"), {"bad": True}]
    )

    assert report.accepted == 4
    assert report.duplicates == 0
    assert len(report.malformed) == 1
    assert report.malformed[0].index == 3

    summary = await analytics_service.get_summary(db, DAY)
    # the malformed payload has no timestamp and lands on the day it was received
    assert summary.total_events == 3
    assert summary.total_plays == 2
    assert summary.unique_users == 2
    assert summary.total_revenue == Decimal("3.25")
    assert summary.by_hour == {"10": 1, "11": 1, "23": 1}


async def test_replay_is_idempotent(db):
    batch = [_play(), _play(hour=3, country="GB"), _royalty("7.10")]

    await analytics_service.ingest_events(db, batch)
    first = _summary_fields(await analytics_service.get_summary(db, DAY))

    report = await analytics_service.ingest_events(db, list(reversed(batch)))
    second = _summary_fields(await analytics_service.get_summary(db, DAY))

    assert report.accepted == 0
    assert report.duplicates == 3
    assert first == second


async def test_duplicates_within_one_call(db):
    play = _play()

    report = await analytics_service.ingest_events(db, [play, dict(play)])

    assert report.accepted == 1
    assert report.duplicates == 1


async def test_summary_rebuild_matches_incremental_ingest(db):
    events = [_play(hour=h) for h in range(5)]

    await analytics_service.ingest_events(db, events[:2])
    await analytics_service.ingest_events(db, events[2:])
    incremental = _summary_fields(await analytics_service.get_summary(db, DAY))

    rebuilt = _summary_fields(await analytics_service.rebuild_summary(db, DAY))

    assert incremental == rebuilt
    assert incremental["total_plays"] == 5


async def test_missing_summary(db):
    with pytest.raises(NotFoundError):
        await analytics_service.get_summary(db, date(2020, 1, 1))


async def test_list_summaries_range(db):
    later = _play()
    later["occurred_at"] = "2024-05-19T08:00:00Z"
    await analytics_service.ingest_events(db, [_play(), later])

    summaries = await analytics_service.list_summaries(db, date(2024, 5, 1), date(2024, 5, 31))

    assert [s.day for s in summaries] == [DAY, date(2024, 5, 19)]
    with pytest.raises(ValidationError):
        await analytics_service.list_summaries(db, date(2024, 5, 31), date(2024, 5, 1))


def test_values_rounded_to_storage_precision():
    assert parse_event(_royalty("0.0000004")).value == Decimal("0.000000")
    assert parse_event(_royalty("1.2345675")).value == Decimal("1.234568")


async def test_sub_precision_values_survive_a_rebuild(engine, db):
    await analytics_service.ingest_events(db, [_royalty("0.0000004") for _ in range(3)])
    ingested = _summary_fields(await analytics_service.get_summary(db, DAY))
    await db.commit()

    async with async_sessionmaker(engine, expire_on_commit=False)() as fresh:
        rebuilt = _summary_fields(await analytics_service.rebuild_summary(fresh, DAY))

    assert ingested == rebuilt
    assert rebuilt["total_revenue"] == Decimal("0")


async def test_rebuild_reads_every_stored_event_of_the_day(db):
    await analytics_service.ingest_events(db, [_play()])
    # Stored by a writer whose own rebuild did not land
    db.add(parse_event(_play(hour=12)))
    await db.flush()

    await analytics_service.ingest_events(db, [_play(hour=13)])
    summary = await analytics_service.get_summary(db, DAY)

    assert summary.total_events == 3
    assert summary.by_hour == {"10": 1, "12": 1, "13": 1}


async def test_ingest_over_an_existing_summary_row(db):
    db.add(AnalyticsSummary(day=DAY, total_events=99))
    await db.flush()

    report = await analytics_service.ingest_events(db, [_play()])
    summary = await analytics_service.get_summary(db, DAY)

    assert report.accepted == 1
    assert summary.total_events == 1
    assert summary.total_plays == 1


async def test_rebuild_without_changes_keeps_updated_at(db):
    await analytics_service.ingest_events(db, [_play(), _royalty("2.50")])
    stamp = (await analytics_service.get_summary(db, DAY)).updated_at

    again = await analytics_service.rebuild_summary(db, DAY)
    assert again.updated_at == stamp

    db.add(parse_event(_play(hour=20)))
    await db.flush()
    changed = await analytics_service.rebuild_summary(db, DAY)
    assert changed.total_events == 3
    assert changed.updated_at >= stamp
