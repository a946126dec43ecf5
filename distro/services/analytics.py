"""
Analytics event ingestion and daily rollups.

Events are append-only. A day's summary is always recomputed from every
stored event of that day, so ingesting the same events twice, or in a
different order, gives the same summary.

Classification:
- track_play / track_download / track_like / track_share -> matching total
- user_signup / user_login / content_upload -> matching total
- every other well-formed type -> total_other
- malformed payloads -> total_unclassified (kept out of the breakdowns)

Revenue is the value of royalty_calculation events, payouts the value of
payout_processed events.
"""
import json
import logging
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from distro.core.database import utcnow
from distro.core.errors import NotFoundError, ValidationError
from distro.core.money import ZERO, quantize_storage
from distro.models import AnalyticsEvent, AnalyticsEventType, AnalyticsSummary
from distro.schemas.analytics import event_payload_adapter

logger = logging.getLogger(__name__)

# Namespace for ids derived from payloads that carry none
EVENT_NAMESPACE = uuid.UUID("6f1c7f5e-2b0a-4c84-9d0e-5a3c1e7b9a21")

UNKNOWN = "unknown"

TYPE_COUNTERS = {
    AnalyticsEventType.TRACK_PLAY: "plays",
    AnalyticsEventType.TRACK_DOWNLOAD: "downloads",
    AnalyticsEventType.TRACK_LIKE: "likes",
    AnalyticsEventType.TRACK_SHARE: "shares",
    AnalyticsEventType.USER_SIGNUP: "signups",
    AnalyticsEventType.USER_LOGIN: "logins",
    AnalyticsEventType.CONTENT_UPLOAD: "uploads",
}

COUNTER_NAMES = ("plays", "downloads", "likes", "shares", "signups", "logins", "uploads", "other")


def canonical_payload(raw: Mapping[str, Any]) -> str:
    return json.dumps(raw, sort_keys=True, separators=(",", ":"), default=str)


def derive_event_id(raw: Mapping[str, Any]) -> uuid.UUID:
    """Deterministic id for a payload without one."""
    return uuid.uuid5(EVENT_NAMESPACE, canonical_payload(raw))


def _raw_id(raw: Mapping[str, Any]) -> Optional[uuid.UUID]:
    value = raw.get("id")
    if value is None:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


def _raw_occurred_at(raw: Mapping[str, Any], fallback: datetime) -> datetime:
    """Best-effort timestamp of a malformed payload, naive UTC."""
    value = raw.get("occurred_at")
    if isinstance(value, str):
        try:
            value = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return fallback
    if not isinstance(value, datetime):
        return fallback
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _format_errors(exc: PydanticValidationError) -> str:
    parts = []
    for error in exc.errors():
        loc = ".".join(str(p) for p in error.get("loc", ()))
        parts.append(f"{loc}: {error.get('msg')}" if loc else str(error.get("msg")))
    return "; ".join(parts)


def parse_event(raw: Any, received_at: datetime | None = None) -> AnalyticsEvent:
    """
    Turn a raw payload into an AnalyticsEvent row (not yet added to a session).

    Never raises for bad payloads: they come back with malformed=True and
    the validation errors in error_message.
    """
    received_at = received_at or utcnow()
    if not isinstance(raw, Mapping):
        raw = {"payload": raw}

    event_id = _raw_id(raw) or derive_event_id(raw)

    try:
        payload = event_payload_adapter.validate_python(raw)
    except PydanticValidationError as e:
        occurred_at = _raw_occurred_at(raw, received_at)
        error = _format_errors(e)
        logger.warning(f"Malformed analytics event {event_id}: {error}")
        return AnalyticsEvent(
            id=event_id,
            event_type=AnalyticsEventType.OTHER,
            occurred_at=occurred_at,
            day=occurred_at.date(),
            error_message=error[:2000],
            malformed=True,
        )

    data = payload.model_dump(exclude={"id", "event_type"})
    device_type = data.pop("device_type", None)
    if data.get("value") is not None:
        data["value"] = quantize_storage(data["value"])
    return AnalyticsEvent(
        id=event_id,
        event_type=AnalyticsEventType(payload.event_type),
        day=payload.occurred_at.date(),
        device_type=device_type.value if device_type else None,
        malformed=False,
        **data,
    )


# ---------------------------------------------------------------------------
# Rollup
# ---------------------------------------------------------------------------

@dataclass
class CountryRollup:
    plays: int = 0
    downloads: int = 0
    revenue: Decimal = ZERO
    users: Set[str] = field(default_factory=set)

    def merge(self, other: "CountryRollup") -> "CountryRollup":
        return CountryRollup(
            plays=self.plays + other.plays,
            downloads=self.downloads + other.downloads,
            revenue=self.revenue + other.revenue,
            users=self.users | other.users,
        )


@dataclass
class DailyRollup:
    """
    Fold of analytics events for one day.

    merge() is associative and commutative, so partial rollups can be
    combined in any grouping or order.
    """
    day: Optional[date] = None
    total_events: int = 0
    counters: Counter = field(default_factory=Counter)
    total_unclassified: int = 0
    total_revenue: Decimal = ZERO
    total_payouts: Decimal = ZERO
    user_ids: Set[str] = field(default_factory=set)
    by_country: Dict[str, CountryRollup] = field(default_factory=dict)
    by_device: Counter = field(default_factory=Counter)
    by_os: Counter = field(default_factory=Counter)
    by_browser: Counter = field(default_factory=Counter)
    by_hour: Counter = field(default_factory=Counter)

    def add(self, event: AnalyticsEvent) -> "DailyRollup":
        if self.day is not None and event.day != self.day:
            raise ValidationError(f"Event {event.id} is for {event.day}, rollup is for {self.day}")
        self.day = event.day
        self.total_events += 1

        if event.malformed:
            self.total_unclassified += 1
            return self

        counter = TYPE_COUNTERS.get(event.event_type, "other")
        self.counters[counter] += 1

        value = Decimal(event.value) if event.value is not None else ZERO
        if event.event_type == AnalyticsEventType.ROYALTY_CALCULATION:
            self.total_revenue += value
        elif event.event_type == AnalyticsEventType.PAYOUT_PROCESSED:
            self.total_payouts += value

        user = str(event.user_id) if event.user_id else None
        if user:
            self.user_ids.add(user)

        country = self.by_country.setdefault(event.country or UNKNOWN, CountryRollup())
        if counter == "plays":
            country.plays += 1
        elif counter == "downloads":
            country.downloads += 1
        if event.event_type == AnalyticsEventType.ROYALTY_CALCULATION:
            country.revenue += value
        if user:
            country.users.add(user)

        self.by_device[event.device_type or UNKNOWN] += 1
        self.by_os[event.os or UNKNOWN] += 1
        self.by_browser[event.browser or UNKNOWN] += 1
        self.by_hour[str(event.occurred_at.hour)] += 1
        return self

    def merge(self, other: "DailyRollup") -> "DailyRollup":
        if self.day is not None and other.day is not None and self.day != other.day:
            raise ValidationError(f"Can not merge rollups for {self.day} and {other.day}")

        countries = {}
        for code in set(self.by_country) | set(other.by_country):
            countries[code] = self.by_country.get(code, CountryRollup()).merge(
                other.by_country.get(code, CountryRollup())
            )

        return DailyRollup(
            day=self.day if self.day is not None else other.day,
            total_events=self.total_events + other.total_events,
            counters=self.counters + other.counters,
            total_unclassified=self.total_unclassified + other.total_unclassified,
            total_revenue=self.total_revenue + other.total_revenue,
            total_payouts=self.total_payouts + other.total_payouts,
            user_ids=self.user_ids | other.user_ids,
            by_country=countries,
            by_device=self.by_device + other.by_device,
            by_os=self.by_os + other.by_os,
            by_browser=self.by_browser + other.by_browser,
            by_hour=self.by_hour + other.by_hour,
        )

    @classmethod
    def from_events(cls, events: Iterable[AnalyticsEvent]) -> "DailyRollup":
        rollup = cls()
        for event in events:
            rollup.add(event)
        return rollup

    def to_record(self) -> Dict[str, Any]:
        """Column values for AnalyticsSummary, with deterministic ordering."""
        record: Dict[str, Any] = {
            "total_events": self.total_events,
            "unique_users": len(self.user_ids),
            "total_unclassified": self.total_unclassified,
            "total_revenue": self.total_revenue,
            "total_payouts": self.total_payouts,
            "by_country": {
                code: {
                    "plays": str(c.plays),
                    "downloads": str(c.downloads),
                    "revenue": str(c.revenue),
                    "users": str(len(c.users)),
                }
                for code, c in sorted(self.by_country.items())
            },
            "by_device": dict(sorted(self.by_device.items())),
            "by_os": dict(sorted(self.by_os.items())),
            "by_browser": dict(sorted(self.by_browser.items())),
            "by_hour": dict(sorted(self.by_hour.items(), key=lambda kv: int(kv[0]))),
            "user_ids": sorted(self.user_ids),
        }
        for name in COUNTER_NAMES:
            record[f"total_{name}"] = self.counters[name]
        return record


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

@dataclass
class MalformedEvent:
    index: int
    event_id: uuid.UUID
    error: str


@dataclass
class IngestReport:
    accepted: int = 0
    duplicates: int = 0
    malformed: List[MalformedEvent] = field(default_factory=list)
    days: List[date] = field(default_factory=list)


_DIALECT_INSERTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


async def _lock_summary(db: AsyncSession, day: date) -> AnalyticsSummary:
    """
    Create the day's summary row if missing, then lock it for this transaction.

    Concurrent rebuilds of the same day queue on the row lock, and each one
    reads the day's events only after the previous writer has committed.
    """
    insert = _DIALECT_INSERTS[db.get_bind().dialect.name]
    empty = {"day": day, "updated_at": utcnow(), **DailyRollup(day=day).to_record()}
    await db.execute(insert(AnalyticsSummary).values(**empty).on_conflict_do_nothing(index_elements=["day"]))

    result = await db.execute(
        select(AnalyticsSummary)
        .where(AnalyticsSummary.day == day)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def rebuild_summary(db: AsyncSession, day: date) -> AnalyticsSummary:
    """Recompute and upsert the summary of one day from its raw events."""
    summary = await _lock_summary(db, day)

    result = await db.execute(
        select(AnalyticsEvent).where(AnalyticsEvent.day == day).order_by(AnalyticsEvent.id)
    )
    rollup = DailyRollup.from_events(result.scalars().all())

    changed = False
    for key, value in rollup.to_record().items():
        if getattr(summary, key) != value:
            setattr(summary, key, value)
            changed = True
    if changed:
        summary.updated_at = utcnow()

    await db.flush()
    logger.debug(f"Rebuilt analytics summary for {day}: {rollup.total_events} events (changed={changed})")
    return summary


async def ingest_events(
    db: AsyncSession,
    raws: Iterable[Any],
    received_at: datetime | None = None,
) -> IngestReport:
    """
    Store new events and rebuild the summaries of the days they touch.

    Events whose id is already stored, or repeated within the call, are
    counted as duplicates and ignored.
    """
    received_at = received_at or utcnow()
    report = IngestReport()

    parsed: List[AnalyticsEvent] = []
    seen: Set[uuid.UUID] = set()
    for index, raw in enumerate(raws):
        event = parse_event(raw, received_at)
        if event.id in seen:
            report.duplicates += 1
            continue
        seen.add(event.id)
        parsed.append(event)
        if event.malformed:
            report.malformed.append(MalformedEvent(index, event.id, event.error_message or ""))

    if not parsed:
        return report

    existing_result = await db.execute(
        select(AnalyticsEvent.id).where(AnalyticsEvent.id.in_([e.id for e in parsed]))
    )
    existing = set(existing_result.scalars().all())

    fresh = [e for e in parsed if e.id not in existing]
    report.duplicates += len(parsed) - len(fresh)
    if existing:
        report.malformed = [m for m in report.malformed if m.event_id not in existing]

    db.add_all(fresh)
    await db.flush()
    report.accepted = len(fresh)

    report.days = sorted({e.day for e in fresh})
    for day in report.days:
        await rebuild_summary(db, day)

    logger.info(
        f"Ingested {report.accepted} analytics events "
        f"({report.duplicates} duplicates, {len(report.malformed)} malformed) "
        f"across {len(report.days)} day(s)"
    )
    return report


async def get_summary(db: AsyncSession, day: date) -> AnalyticsSummary:
    summary = await db.get(AnalyticsSummary, day)
    if summary is None:
        raise NotFoundError("AnalyticsSummary", day)
    return summary


async def list_summaries(db: AsyncSession, start: date, end: date) -> List[AnalyticsSummary]:
    if end < start:
        raise ValidationError("end must be >= start")
    result = await db.execute(
        select(AnalyticsSummary)
        .where(AnalyticsSummary.day >= start, AnalyticsSummary.day <= end)
        .order_by(AnalyticsSummary.day)
    )
    return list(result.scalars().all())
