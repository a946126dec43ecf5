"""Pydantic schemas for analytics events and daily summaries."""
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Annotated, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, Field, TypeAdapter, field_validator

from distro.core.config import settings
from distro.models import DeviceType

EXTRA_KEY_MAX_LENGTH = 64
EXTRA_VALUE_MAX_LENGTH = 256

# Largest value a Numeric(15, 6) column holds
MAX_EVENT_VALUE = Decimal("999999999.999999")


# Event payloads, one variant per family of event types

class EventBase(BaseModel):
    id: Optional[UUID] = Field(default=None, description="Idempotency key; derived from the payload when absent")
    occurred_at: datetime
    user_id: Optional[UUID] = None
    user_role: Optional[str] = Field(default=None, max_length=32)
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    region: Optional[str] = Field(default=None, max_length=100)
    city: Optional[str] = Field(default=None, max_length=100)
    device_type: Optional[DeviceType] = None
    os: Optional[str] = Field(default=None, max_length=50)
    browser: Optional[str] = Field(default=None, max_length=50)
    extra: Optional[Dict[str, str]] = None

    @field_validator("occurred_at")
    @classmethod
    def to_naive_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value

    @field_validator("country")
    @classmethod
    def upper_country(cls, value: Optional[str]) -> Optional[str]:
        return value.upper() if value else value

    @field_validator("extra")
    @classmethod
    def bounded_extra(cls, value: Optional[Dict[str, str]]) -> Optional[Dict[str, str]]:
        if value is None:
            return value
        if len(value) > settings.ANALYTICS_EXTRA_MAX_KEYS:
            raise ValueError(f"extra has {len(value)} keys, max {settings.ANALYTICS_EXTRA_MAX_KEYS}")
        for key, item in value.items():
            if len(key) > EXTRA_KEY_MAX_LENGTH or len(item) > EXTRA_VALUE_MAX_LENGTH:
                raise ValueError(f"extra entry '{key[:EXTRA_KEY_MAX_LENGTH]}' is too long")
        return value


class TrackEvent(EventBase):
    event_type: Literal[
        "track_play",
        "track_download",
        "track_like",
        "track_share",
        "track_add_to_playlist",
    ]
    track_id: UUID
    store_id: Optional[UUID] = None
    duration: Optional[int] = Field(default=None, ge=0, description="Seconds listened")


class UserEvent(EventBase):
    event_type: Literal["user_signup", "user_login", "user_upgrade"]
    user_id: UUID


class PayoutEvent(EventBase):
    event_type: Literal["payout_request", "payout_processed"]
    payout_id: UUID
    value: Decimal = Field(ge=0, le=MAX_EVENT_VALUE)
    currency: str = Field(min_length=3, max_length=3)


class ContentEvent(EventBase):
    event_type: Literal["content_upload", "content_approval", "content_rejection"]
    track_id: Optional[UUID] = None


class StoreSyncEvent(EventBase):
    event_type: Literal["store_sync"]
    store_id: UUID
    track_id: Optional[UUID] = None


class RoyaltyEvent(EventBase):
    event_type: Literal["royalty_calculation"]
    royalty_id: Optional[UUID] = None
    track_id: Optional[UUID] = None
    value: Decimal = Field(ge=0, le=MAX_EVENT_VALUE, description="Revenue in the system currency")
    currency: Optional[str] = Field(default=None, min_length=3, max_length=3)


class ErrorEvent(EventBase):
    event_type: Literal["error"]
    error_message: str = Field(min_length=1)


class OtherEvent(EventBase):
    event_type: Literal["other"]


EventPayload = Annotated[
    Union[
        TrackEvent,
        UserEvent,
        PayoutEvent,
        ContentEvent,
        StoreSyncEvent,
        RoyaltyEvent,
        ErrorEvent,
        OtherEvent,
    ],
    Field(discriminator="event_type"),
]

event_payload_adapter = TypeAdapter(EventPayload)


# Responses

class MalformedEventResponse(BaseModel):
    index: int
    event_id: UUID
    error: str


class IngestResponse(BaseModel):
    """Outcome of one ingestion call."""
    accepted: int = Field(description="Events stored by this call, malformed ones included")
    duplicates: int = Field(description="Events already stored, ignored")
    malformed: List[MalformedEventResponse] = Field(default_factory=list)
    days: List[date] = Field(default_factory=list, description="Days whose summary was rebuilt")


class AnalyticsSummaryResponse(BaseModel):
    day: date
    total_events: int
    unique_users: int
    total_plays: int
    total_downloads: int
    total_likes: int
    total_shares: int
    total_signups: int
    total_logins: int
    total_uploads: int
    total_other: int
    total_unclassified: int
    total_revenue: Decimal
    total_payouts: Decimal
    by_country: Dict[str, Dict[str, str]]
    by_device: Dict[str, int]
    by_os: Dict[str, int]
    by_browser: Dict[str, int]
    by_hour: Dict[str, int]
    updated_at: datetime

    class Config:
        from_attributes = True
