"""Analytics event log and per-day summary models."""
import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from sqlalchemy import JSON, Boolean, Date, DateTime, Integer, Numeric, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from distro.core.database import Base, str_enum, utcnow


class AnalyticsEventType(str, Enum):
    TRACK_PLAY = "track_play"
    TRACK_DOWNLOAD = "track_download"
    TRACK_LIKE = "track_like"
    TRACK_SHARE = "track_share"
    TRACK_ADD_TO_PLAYLIST = "track_add_to_playlist"
    USER_SIGNUP = "user_signup"
    USER_LOGIN = "user_login"
    USER_UPGRADE = "user_upgrade"
    PAYOUT_REQUEST = "payout_request"
    PAYOUT_PROCESSED = "payout_processed"
    CONTENT_UPLOAD = "content_upload"
    CONTENT_APPROVAL = "content_approval"
    CONTENT_REJECTION = "content_rejection"
    STORE_SYNC = "store_sync"
    ROYALTY_CALCULATION = "royalty_calculation"
    ERROR = "error"
    OTHER = "other"


class DeviceType(str, Enum):
    DESKTOP = "desktop"
    MOBILE = "mobile"
    TABLET = "tablet"
    OTHER = "other"


class AnalyticsEvent(Base):
    """
    Immutable fact record of one user or system action.

    Rows are only ever inserted. Malformed payloads are stored too
    (malformed=True, event_type=other) so a day can always be rebuilt
    from the raw log.
    """

    __tablename__ = "analytics_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True)

    event_type: Mapped[AnalyticsEventType] = mapped_column(
        str_enum(AnalyticsEventType),
        nullable=False,
        index=True,
    )
    occurred_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    day: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    user_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True, index=True)
    user_role: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    track_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    store_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    payout_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)
    royalty_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid(as_uuid=True), nullable=True)

    country: Mapped[Optional[str]] = mapped_column(String(2), nullable=True)
    region: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    device_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    os: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)
    browser: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    duration: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    value: Mapped[Optional[Decimal]] = mapped_column(Numeric(precision=15, scale=6), nullable=True)
    currency: Mapped[Optional[str]] = mapped_column(String(3), nullable=True)
    extra: Mapped[Optional[Dict[str, str]]] = mapped_column(JSON, nullable=True)

    error_message: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    malformed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<AnalyticsEvent {self.id} type={self.event_type} day={self.day}>"


class AnalyticsSummary(Base):
    """
    Rollup of every stored event for one UTC day.

    Always rebuilt from the raw events of that day, never incremented in
    place, so replays and out-of-order arrivals give the same row.
    """

    __tablename__ = "analytics_summaries"

    day: Mapped[date] = mapped_column(Date, primary_key=True)

    total_events: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    unique_users: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_plays: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_downloads: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_likes: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_shares: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_signups: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_logins: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_uploads: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_other: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_unclassified: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    total_revenue: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )
    total_payouts: Mapped[Decimal] = mapped_column(
        Numeric(precision=15, scale=6),
        default=Decimal("0"),
        nullable=False,
    )

    by_country: Mapped[Dict[str, Dict[str, str]]] = mapped_column(JSON, default=dict, nullable=False)
    by_device: Mapped[Dict[str, int]] = mapped_column(JSON, default=dict, nullable=False)
    by_os: Mapped[Dict[str, int]] = mapped_column(JSON, default=dict, nullable=False)
    by_browser: Mapped[Dict[str, int]] = mapped_column(JSON, default=dict, nullable=False)
    by_hour: Mapped[Dict[str, int]] = mapped_column(JSON, default=dict, nullable=False)
    user_ids: Mapped[List[str]] = mapped_column(JSON, default=list, nullable=False)

    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<AnalyticsSummary {self.day} events={self.total_events}>"
