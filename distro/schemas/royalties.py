"""Pydantic schemas for royalties API."""
from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from distro.models import RecipientType, RoyaltyStatus, RoyaltyType


# Request schemas

class RoyaltyCreate(BaseModel):
    """One store-report line."""
    track_id: UUID
    store_id: Optional[UUID] = None
    store_name: str = Field(..., min_length=1, max_length=100)
    type: RoyaltyType = RoyaltyType.STREAM
    quantity: int = Field(default=0, ge=0)
    rate: Decimal = Field(default=Decimal("0"), ge=0)
    amount: Decimal = Field(..., ge=0, description="Gross amount in the store's currency")
    currency: str = Field(..., min_length=3, max_length=3)
    tax_rate: Decimal = Field(default=Decimal("0"), ge=0, lt=1)
    period_start: date = Field(description="Start of the reporting period (inclusive)")
    period_end: date = Field(description="End of the reporting period (inclusive)")
    reporting_date: Optional[date] = None
    notes: Optional[str] = None


class SplitCreate(BaseModel):
    recipient_id: UUID
    percentage: Decimal = Field(..., description="Share of the royalty, (0, 100]")
    recipient_type: RecipientType = RecipientType.USER
    is_recoupable: bool = False
    tax_rate: Optional[Decimal] = Field(None, description="Overrides the royalty tax rate")
    name: Optional[str] = Field(None, max_length=255)
    email: Optional[str] = Field(None, max_length=255)


class RoyaltyProcess(BaseModel):
    splits: List[SplitCreate] = Field(..., description="Split definitions, percentages total at most 100")


class RoyaltyStatusUpdate(BaseModel):
    status: RoyaltyStatus
    splits: Optional[List[SplitCreate]] = Field(None, description="Required when moving to 'processed'")


# Response schemas

class SplitResponse(BaseModel):
    id: UUID
    recipient_id: UUID
    recipient_type: RecipientType
    name: Optional[str] = None
    percentage: Decimal
    amount: Decimal
    currency: str
    is_recoupable: bool
    tax_amount: Decimal
    advance_recouped: Decimal
    net_amount: Decimal
    payout_id: Optional[UUID] = None
    eligible_after: Optional[datetime] = None

    class Config:
        from_attributes = True


class RoyaltyResponse(BaseModel):
    id: UUID
    track_id: UUID
    store_id: Optional[UUID] = None
    store_name: str
    type: RoyaltyType
    status: RoyaltyStatus
    quantity: int
    amount: Decimal
    currency: str
    exchange_rate: Decimal
    amount_in_system_currency: Decimal
    system_currency: str
    tax_rate: Decimal
    tax_amount: Decimal
    net_amount: Decimal
    is_recouped: bool
    is_tax_processed: bool
    period_start: date
    period_end: date
    reporting_date: date
    splits: List[SplitResponse] = Field(default_factory=list)
    created_at: datetime
    processed_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StoreLineResponse(BaseModel):
    store_name: str
    amount: Decimal
    net_amount: Decimal
    quantity: int

    class Config:
        from_attributes = True


class TrackLineResponse(BaseModel):
    track_id: UUID
    currency: str
    stores: List[StoreLineResponse]
    amount: Decimal
    net_amount: Decimal
    quantity: int

    class Config:
        from_attributes = True


class CurrencyTotalResponse(BaseModel):
    currency: str
    amount: Decimal
    net_amount: Decimal
    quantity: int

    class Config:
        from_attributes = True


class MonthlyReportResponse(BaseModel):
    """A recipient's royalty shares for one calendar month."""
    recipient_id: UUID
    year: int
    month: int
    tracks: List[TrackLineResponse]
    totals: List[CurrencyTotalResponse]

    class Config:
        from_attributes = True
