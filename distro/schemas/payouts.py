"""Schemas for payouts and payout batches."""
from datetime import datetime
from decimal import Decimal
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from distro.models import PayoutBatchStatus, PayoutCurrency, PayoutMethod, PayoutStatus


class AggregateRequest(BaseModel):
    recipient_id: UUID
    payout_currency: Optional[PayoutCurrency] = Field(None, description="Defaults to the recipient's currency")
    minimum_payout_amount: Optional[Decimal] = Field(None, ge=0, description="Defaults to the recipient's minimum")


class TransitionRequest(BaseModel):
    status: PayoutStatus
    actor_id: Optional[UUID] = None
    payment_reference: Optional[str] = Field(None, max_length=255)
    reason: Optional[str] = None


class ExecuteRequest(BaseModel):
    gateway: Literal["manual", "http"] = "manual"
    actor_id: Optional[UUID] = None


class PayoutItemResponse(BaseModel):
    id: UUID
    royalty_id: UUID
    amount: Decimal
    currency: str
    exchange_rate: Decimal
    amount_in_payout_currency: Decimal
    tax_amount: Decimal
    fee_amount: Decimal
    net_amount: Decimal
    split_ids: List[UUID] = Field(default_factory=list)

    class Config:
        from_attributes = True


class PayoutResponse(BaseModel):
    id: UUID
    recipient_id: UUID
    batch_id: Optional[UUID] = None
    reference: str
    status: PayoutStatus
    amount: Decimal
    currency: PayoutCurrency
    exchange_rate: Decimal
    amount_in_system_currency: Decimal
    fee_amount: Decimal
    tax_amount: Decimal
    net_amount: Decimal
    payment_method: PayoutMethod
    payment_reference: Optional[str] = None
    payment_date: Optional[datetime] = None
    failure_reason: Optional[str] = None
    processed_by: Optional[UUID] = None
    processed_at: Optional[datetime] = None
    items: List[PayoutItemResponse] = Field(default_factory=list)
    created_at: datetime

    class Config:
        from_attributes = True


class ThresholdSkipResponse(BaseModel):
    """Aggregation created nothing: eligible total below the minimum."""
    skipped: Literal[True] = True
    recipient_id: UUID
    candidate_amount: Decimal
    minimum_payout_amount: Decimal
    currency: str


class PayoutBatchResponse(BaseModel):
    id: UUID
    status: PayoutBatchStatus
    attempts: int
    payouts_created: int
    recipients_skipped: int
    recipients_conflicted: int
    total_amount: Decimal
    system_currency: str
    payout_ids: List[UUID] = Field(default_factory=list)
    error_message: Optional[str] = None
    created_at: datetime
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        from_attributes = True
