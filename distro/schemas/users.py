"""Schemas for users, payout recipients and advances."""
from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator

from distro.models import (
    LedgerEntryType,
    PayoutCurrency,
    PayoutMethod,
    UserRole,
    UserStatus,
    VerificationStatus,
)


class UserCreate(BaseModel):
    """Signup payload."""
    email: str = Field(..., max_length=255)
    display_name: str = Field(..., min_length=1, max_length=255)
    role: UserRole = UserRole.ARTIST
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, min_length=2, max_length=2)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v):
        if "@" not in v or v.startswith("@") or v.endswith("@"):
            raise ValueError("Invalid email address")
        return v.strip().lower()


class UserUpdate(BaseModel):
    display_name: Optional[str] = Field(None, min_length=1, max_length=255)
    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    country: Optional[str] = Field(None, min_length=2, max_length=2)


class VerificationUpdate(BaseModel):
    status: VerificationStatus
    notes: Optional[str] = None


class UserResponse(BaseModel):
    id: UUID
    email: str
    email_verified: bool
    display_name: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    country: Optional[str] = None
    role: UserRole
    status: UserStatus
    verification_status: VerificationStatus
    verified_at: Optional[datetime] = None
    total_earnings: Decimal
    available_balance: Decimal
    pending_payouts: Decimal
    last_payout_date: Optional[datetime] = None
    is_deleted: bool
    created_at: datetime

    class Config:
        from_attributes = True


class RecipientUpsert(BaseModel):
    """Payout details for a user. Omitted fields keep their current value."""
    name: Optional[str] = Field(None, max_length=255)
    email: Optional[str] = Field(None, max_length=255)
    tax_id: Optional[str] = Field(None, max_length=50)
    tax_form_submitted: Optional[bool] = None
    withholding_rate: Optional[Decimal] = Field(None, ge=0, lt=1)
    payment_method: Optional[PayoutMethod] = None
    payout_currency: Optional[PayoutCurrency] = None
    minimum_payout_amount: Optional[Decimal] = Field(None, ge=0)
    bank_account: Optional[dict] = None
    paypal: Optional[dict] = None
    address: Optional[dict] = None


class RecipientResponse(BaseModel):
    id: UUID
    user_id: UUID
    name: str
    email: str
    tax_id: Optional[str] = None
    tax_form_submitted: bool
    withholding_rate: Decimal
    payment_method: PayoutMethod
    payout_currency: PayoutCurrency
    minimum_payout_amount: Decimal

    class Config:
        from_attributes = True


class AdvanceCreate(BaseModel):
    amount: Decimal = Field(..., gt=0, description="Advance amount in the system currency")
    description: Optional[str] = Field(None, max_length=500)
    reference: Optional[str] = Field(None, max_length=100)


class AdvanceEntryResponse(BaseModel):
    id: UUID
    recipient_id: UUID
    entry_type: LedgerEntryType
    amount: Decimal
    currency: str
    description: Optional[str] = None
    reference: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class AdvanceBalanceResponse(BaseModel):
    recipient_id: UUID
    balance: Decimal
    currency: str
